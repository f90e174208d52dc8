"""CA key management for loading and generating CA keys and certificates.

Supports multiple storage backends:
- File-based (CA_KEY_PATH, CA_CERT_PATH)
- Environment variable (CA_KEY_PEM, CA_CERT_PEM as base64)

Generates new CA on first startup if no key is found. Key files may be
passphrase-protected (CA_KEY_PASSPHRASE).
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID
from opentelemetry import trace

from enrollment.ca.key_config import KeyConfig
from enrollment.ca.key_pair import KeyPair
from enrollment.errors import EnrollmentError
from enrollment.metrics import enrollment_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class KeyManagerError(Exception):
    """Raised when CA key management fails."""

    pass


@dataclass
class CAKeyPair:
    """Holds CA key pair, certificate and any intermediate chain above it."""

    key_pair: KeyPair
    certificate: x509.Certificate
    storage_type: str  # "file", "env", or "generated"
    chain: list[x509.Certificate] = field(default_factory=list)

    @property
    def certificate_pem(self) -> bytes:
        """Get CA certificate as PEM."""
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    @property
    def subject_name(self) -> str:
        return self.certificate.subject.rfc4514_string()


class KeyManager:
    """Manages CA key loading and generation.

    Storage priority:
    1. File (CA_KEY_PATH, CA_CERT_PATH)
    2. Environment (CA_KEY_PEM, CA_CERT_PEM - base64 encoded)
    3. Generate new (writes to CA_KEY_PATH if writable)
    """

    # Configuration
    CA_KEY_PATH_ENV = "CA_KEY_PATH"
    CA_CERT_PATH_ENV = "CA_CERT_PATH"
    CA_KEY_PEM_ENV = "CA_KEY_PEM"
    CA_CERT_PEM_ENV = "CA_CERT_PEM"
    CA_KEY_PASSPHRASE_ENV = "CA_KEY_PASSPHRASE"
    CA_ALGORITHM_ENV = "CA_ALGORITHM"  # "RSA" or "EC"
    CA_COMMON_NAME_ENV = "CA_COMMON_NAME"

    # Defaults
    DEFAULT_CA_VALIDITY_YEARS = 10
    DEFAULT_ALGORITHM = "RSA"
    DEFAULT_COMMON_NAME = "Certificate Enrollment CA"
    RSA_KEY_SIZE = 4096
    EC_CURVE = "secp384r1"

    def __init__(self) -> None:
        self._key_pair: CAKeyPair | None = None

    @property
    def key_pair(self) -> CAKeyPair:
        """Get loaded CA key pair. Raises if not loaded."""
        if self._key_pair is None:
            raise KeyManagerError("CA key not loaded. Call load_or_generate() first.")
        return self._key_pair

    def load_or_generate(self) -> CAKeyPair:
        """Load CA key from configured source or generate new one.

        Returns:
            Loaded or generated CAKeyPair.

        Raises:
            KeyManagerError: If loading/generation fails.
        """
        with tracer.start_as_current_span("KeyManager.load_ca_key") as span:
            key_pair = self._try_load_from_file() or self._try_load_from_env()
            if key_pair is None:
                key_pair = self._generate_new()

            span.set_attribute("storage_type", key_pair.storage_type)
            span.set_attribute("algorithm", key_pair.key_pair.algorithm_name)
            span.set_attribute(
                "ca_cert_expires", key_pair.certificate.not_valid_after_utc.isoformat()
            )
            self._key_pair = key_pair
            self._log_loaded(key_pair)
            return key_pair

    def _passphrase(self) -> str | None:
        return os.environ.get(self.CA_KEY_PASSPHRASE_ENV) or None

    def _build(self, key_pem: bytes, cert_pem: bytes, storage_type: str) -> CAKeyPair:
        key_pair = KeyPair.import_key(key_pem, self._passphrase())
        certificates = x509.load_pem_x509_certificates(cert_pem)
        certificate, chain = certificates[0], certificates[1:]

        if certificate.public_key() != key_pair.public_key:
            raise KeyManagerError("CA certificate does not match CA private key")
        if not key_pair.has_private_key:
            raise KeyManagerError("CA key material holds no private key")

        return CAKeyPair(
            key_pair=key_pair,
            certificate=certificate,
            storage_type=storage_type,
            chain=chain,
        )

    def _try_load_from_file(self) -> CAKeyPair | None:
        """Try loading CA key from file paths."""
        key_path = os.environ.get(self.CA_KEY_PATH_ENV)
        cert_path = os.environ.get(self.CA_CERT_PATH_ENV)

        if not key_path or not cert_path:
            return None

        key_file = Path(key_path)
        cert_file = Path(cert_path)

        if not key_file.exists() or not cert_file.exists():
            logger.debug(
                "CA key/cert files not found",
                extra={"key_path": key_path, "cert_path": cert_path},
            )
            return None

        try:
            return self._build(key_file.read_bytes(), cert_file.read_bytes(), "file")
        except KeyManagerError:
            raise
        except (EnrollmentError, ValueError, OSError) as e:
            logger.error(
                "ca_key_load_failed",
                extra={"storage_type": "file", "error": str(e)},
            )
            raise KeyManagerError(f"Failed to load CA from file: {e}") from e

    def _try_load_from_env(self) -> CAKeyPair | None:
        """Try loading CA key from environment variables (base64 encoded)."""
        key_b64 = os.environ.get(self.CA_KEY_PEM_ENV)
        cert_b64 = os.environ.get(self.CA_CERT_PEM_ENV)

        if not key_b64 or not cert_b64:
            return None

        try:
            key_pem = base64.b64decode(key_b64, validate=True)
            cert_pem = base64.b64decode(cert_b64, validate=True)
            return self._build(key_pem, cert_pem, "env")
        except KeyManagerError:
            raise
        except (EnrollmentError, ValueError, binascii.Error) as e:
            logger.error(
                "ca_key_load_failed",
                extra={"storage_type": "env", "error": str(e)},
            )
            raise KeyManagerError(f"Failed to load CA from environment: {e}") from e

    def _generate_new(self) -> CAKeyPair:
        """Generate a new CA key pair with a self-signed certificate."""
        algorithm = os.environ.get(self.CA_ALGORITHM_ENV, self.DEFAULT_ALGORITHM).upper()
        common_name = os.environ.get(self.CA_COMMON_NAME_ENV, self.DEFAULT_COMMON_NAME)

        logger.info("Generating new CA key pair", extra={"algorithm": algorithm})

        try:
            if algorithm in ("EC", "ECDSA"):
                config = KeyConfig.ec(curve=self.EC_CURVE)
            else:
                config = KeyConfig.rsa(key_size=self.RSA_KEY_SIZE)
            key_pair = KeyPair.generate(config)
        except EnrollmentError as e:
            raise KeyManagerError(f"Failed to generate CA key: {e}") from e

        now = datetime.now(timezone.utc)
        subject = issuer = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, common_name),
            ]
        )

        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(key_pair.public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=365 * self.DEFAULT_CA_VALIDITY_YEARS))
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=0),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_cert_sign=True,
                    crl_sign=True,
                    key_encipherment=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(key_pair.public_key),
                critical=False,
            )
            .sign(key_pair.private_key, config.hash_algorithm())
        )

        ca_key_pair = CAKeyPair(
            key_pair=key_pair,
            certificate=certificate,
            storage_type="generated",
        )

        # Try to save to file if path is configured
        self._try_save_to_file(ca_key_pair)

        return ca_key_pair

    def _try_save_to_file(self, ca_key_pair: CAKeyPair) -> None:
        """Try saving generated key pair to file."""
        key_path = os.environ.get(self.CA_KEY_PATH_ENV)
        cert_path = os.environ.get(self.CA_CERT_PATH_ENV)

        if not key_path or not cert_path:
            logger.warning(
                "CA key generated but not saved - set CA_KEY_PATH and CA_CERT_PATH to persist"
            )
            return

        try:
            passphrase = self._passphrase()
            if passphrase:
                key_pem = ca_key_pair.key_pair.export_private_encrypted(passphrase)
            else:
                key_pem = ca_key_pair.key_pair.export_private_unencrypted()

            key_file = Path(key_path)
            key_file.write_bytes(key_pem)
            key_file.chmod(0o600)
            Path(cert_path).write_bytes(ca_key_pair.certificate_pem)

            logger.info(
                "CA key pair saved to file",
                extra={"key_path": key_path, "cert_path": cert_path},
            )
        except (EnrollmentError, OSError) as e:
            logger.warning(
                "Failed to save CA key pair to file",
                extra={"error": str(e)},
            )

    def _log_loaded(self, ca_key_pair: CAKeyPair) -> None:
        """Log successful key loading and record metrics."""
        logger.info(
            "ca_key_loaded",
            extra={
                "storage_type": ca_key_pair.storage_type,
                "algorithm": ca_key_pair.key_pair.algorithm_name,
                "ca_cert_expires": ca_key_pair.certificate.not_valid_after_utc.isoformat(),
            },
        )

        enrollment_metrics.record_ca_key_loaded(ca_key_pair.storage_type)
