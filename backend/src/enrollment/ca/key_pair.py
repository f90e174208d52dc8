"""Key pair generation, import and export.

A KeyPair wraps a private key (and the public key derived from it) or, after
importing public material, a public key only. It is immutable; every export
returns fresh bytes. Private material is never part of `repr()` and a KeyPair
refuses to be pickled or copied.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from opentelemetry import trace

from enrollment.ca.key_config import RSA_PUBLIC_EXPONENT, KeyConfig
from enrollment.domain.states import DigestAlgorithm, KeyAlgorithm
from enrollment.errors import (
    ExportFailed,
    IncorrectPassphrase,
    InvalidArgument,
    InvalidConfig,
    KeyGenerationFailed,
    KeyImportFailed,
    PassphraseRequired,
)
from enrollment.metrics import enrollment_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
PublicKey = rsa.RSAPublicKey | ec.EllipticCurvePublicKey

PrivateLoader = Callable[..., Any]


def _normalize_passphrase(passphrase: str | None) -> bytes | None:
    """An absent passphrase and an empty passphrase both mean "no passphrase"."""
    if not passphrase:
        return None
    return passphrase.encode("utf-8")


def _is_encrypted(material: bytes, loader: PrivateLoader) -> bool:
    try:
        loader(material, password=None)
    except TypeError:
        return True
    except (ValueError, UnsupportedAlgorithm):
        return False
    return False


def _config_for(key: PrivateKey | PublicKey) -> KeyConfig:
    """Derive the KeyConfig describing an imported key."""
    if isinstance(key, (rsa.RSAPrivateKey, rsa.RSAPublicKey)):
        return KeyConfig(algorithm=KeyAlgorithm.RSA, key_size=key.key_size)
    digest = DigestAlgorithm.SHA384 if key.curve.key_size >= 384 else DigestAlgorithm.SHA256
    return KeyConfig(algorithm=KeyAlgorithm.EC, curve=key.curve.name, digest=digest)


class KeyPair:
    """Owned handle over private/public key material."""

    __slots__ = ("_private_key", "_public_key", "_config", "_closed")

    def __init__(
        self,
        private_key: PrivateKey | None = None,
        public_key: PublicKey | None = None,
        config: KeyConfig | None = None,
    ) -> None:
        if private_key is None and public_key is None:
            raise InvalidArgument("A key pair needs a private or a public key")
        if private_key is not None:
            public_key = private_key.public_key()
        assert public_key is not None
        self._private_key = private_key
        self._public_key = public_key
        self._config = config or _config_for(public_key)
        self._closed = False

        expected = KeyAlgorithm.RSA if isinstance(public_key, rsa.RSAPublicKey) else KeyAlgorithm.EC
        if self._config.algorithm != expected:
            raise InvalidConfig(
                f"{expected} key does not match {self._config.algorithm} configuration"
            )

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def generate(cls, config: KeyConfig) -> "KeyPair":
        """Generate a new private key.

        Args:
            config: Validated key configuration.

        Returns:
            A KeyPair holding the new private key.

        Raises:
            KeyGenerationFailed: If the primitive fails. Parameters are never
                replaced by defaults.
        """
        with tracer.start_as_current_span("KeyPair.generate") as span:
            span.set_attribute("algorithm", config.algorithm.value)

            start_time = time.time()
            private_key: PrivateKey
            try:
                if config.algorithm == KeyAlgorithm.RSA:
                    assert config.key_size is not None
                    private_key = rsa.generate_private_key(
                        public_exponent=RSA_PUBLIC_EXPONENT,
                        key_size=config.key_size,
                    )
                else:
                    private_key = ec.generate_private_key(config.ec_curve())
            except Exception as e:
                logger.error(
                    "key_generation_failed",
                    extra={"algorithm": config.algorithm.value, "error": str(e)},
                )
                raise KeyGenerationFailed.from_exception("Failed to generate key pair", e) from e

            key_pair = cls(private_key, config=config)
            enrollment_metrics.record_key_generated(
                key_pair.algorithm_name, time.time() - start_time
            )
            span.set_attribute("key", key_pair.algorithm_name)
            return key_pair

    @classmethod
    def import_key(
        cls,
        material: bytes | str,
        passphrase: str | None = None,
        config: KeyConfig | None = None,
    ) -> "KeyPair":
        """Import an existing key from PEM or DER.

        Private keys are tried first, then public keys.

        Args:
            material: PEM or DER encoded key.
            passphrase: Passphrase for an encrypted private key. None and ""
                both mean no passphrase.
            config: Digest/format preferences; derived from the key if omitted.

        Raises:
            PassphraseRequired: The key is encrypted and no passphrase was given.
            IncorrectPassphrase: The key is encrypted and the passphrase is wrong.
            KeyImportFailed: The material is not a supported key.
        """
        if isinstance(material, str):
            material = material.encode("utf-8")
        if not material:
            raise KeyImportFailed("No key material given")

        password = _normalize_passphrase(passphrase)
        is_pem = material.lstrip().startswith(b"-----")
        private_loader: PrivateLoader = (
            serialization.load_pem_private_key if is_pem else serialization.load_der_private_key
        )
        public_loader: PrivateLoader = (
            serialization.load_pem_public_key if is_pem else serialization.load_der_public_key
        )

        try:
            key = private_loader(material, password=password)
        except TypeError as e:
            if password is None:
                raise PassphraseRequired.from_exception(
                    "Key is encrypted but no passphrase was given", e
                ) from e
            # Passphrase given for an unencrypted key; it gates nothing
            key = private_loader(material, password=None)
        except (ValueError, UnsupportedAlgorithm) as e:
            if password is not None and _is_encrypted(material, private_loader):
                raise IncorrectPassphrase.from_exception("Incorrect passphrase for key", e) from e
            try:
                public_key = public_loader(material)
            except (ValueError, UnsupportedAlgorithm):
                raise KeyImportFailed.from_exception("Failed to import key", e) from e
            if not isinstance(public_key, (rsa.RSAPublicKey, ec.EllipticCurvePublicKey)):
                raise KeyImportFailed(f"Unsupported public key type: {type(public_key).__name__}")
            try:
                return cls(public_key=public_key, config=config)
            except InvalidConfig as e:
                raise KeyImportFailed(f"Imported key does not satisfy key policy: {e}") from e

        if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise KeyImportFailed(f"Unsupported private key type: {type(key).__name__}")
        try:
            return cls(key, config=config)
        except InvalidConfig as e:
            raise KeyImportFailed(f"Imported key does not satisfy key policy: {e}") from e

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> KeyConfig:
        return self._config

    @property
    def has_private_key(self) -> bool:
        return self._private_key is not None

    @property
    def private_key(self) -> PrivateKey:
        """The private key object, for signing inside the enrollment core only."""
        self._check_open()
        if self._private_key is None:
            raise ExportFailed("Key pair holds no private key")
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        self._check_open()
        return self._public_key

    @property
    def algorithm_name(self) -> str:
        if self._config.algorithm == KeyAlgorithm.RSA:
            return f"RSA-{self._config.key_size}"
        return f"EC-{self._config.curve}"

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_public(self) -> bytes:
        """SubjectPublicKeyInfo PEM of the public key."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def export_private_unencrypted(self, config: KeyConfig | None = None) -> bytes:
        """Unencrypted PEM of the private key. Treat the result as secret."""
        return self._export_private(serialization.NoEncryption(), config)

    def export_private_encrypted(self, passphrase: str, config: KeyConfig | None = None) -> bytes:
        """Passphrase-protected PEM of the private key.

        Raises:
            InvalidArgument: If the passphrase is empty.
            ExportFailed: If the primitive fails.
        """
        if not passphrase:
            raise InvalidArgument("Passphrase cannot be empty")
        return self._export_private(
            serialization.BestAvailableEncryption(passphrase.encode("utf-8")), config
        )

    def _export_private(
        self,
        encryption: serialization.KeySerializationEncryption,
        config: KeyConfig | None,
    ) -> bytes:
        key = self.private_key
        config = config or self._config
        try:
            return key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=config.serialization_format(),
                encryption_algorithm=encryption,
            )
        except Exception as e:
            logger.error(
                "private_key_export_failed",
                extra={"algorithm": self.algorithm_name, "error": type(e).__name__},
            )
            raise ExportFailed.from_exception("Failed to export private key", e) from e

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    def sign(self, data: bytes) -> bytes:
        key = self.private_key
        hash_algorithm = self._config.hash_algorithm()
        if isinstance(key, rsa.RSAPrivateKey):
            return key.sign(data, padding.PKCS1v15(), hash_algorithm)
        return key.sign(data, ec.ECDSA(hash_algorithm))

    def verify(self, signature: bytes, data: bytes) -> bool:
        key = self.public_key
        hash_algorithm = self._config.hash_algorithm()
        try:
            if isinstance(key, rsa.RSAPublicKey):
                key.verify(signature, data, padding.PKCS1v15(), hash_algorithm)
            else:
                key.verify(signature, data, ec.ECDSA(hash_algorithm))
        except InvalidSignature:
            return False
        return True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Drop the key references; the KeyPair is unusable afterwards."""
        self._private_key = None
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise InvalidArgument("Key pair has been closed")

    def __enter__(self) -> "KeyPair":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __reduce__(self) -> Any:
        raise TypeError("KeyPair cannot be serialized implicitly; use an export method")

    def __repr__(self) -> str:
        return f"KeyPair({self.algorithm_name}, private={self.has_private_key})"
