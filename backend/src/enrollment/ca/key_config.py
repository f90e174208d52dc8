"""Validated key generation and export parameters."""

from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from enrollment.domain.states import DigestAlgorithm, KeyAlgorithm, PrivateKeyFormat
from enrollment.errors import InvalidConfig

RSA_MIN_KEY_SIZE = 2048
RSA_MAX_KEY_SIZE = 16384
RSA_PUBLIC_EXPONENT = 65537
DEFAULT_RSA_KEY_SIZE = 2048
DEFAULT_EC_CURVE = "secp384r1"

EC_CURVES: dict[str, type[ec.EllipticCurve]] = {
    "secp256r1": ec.SECP256R1,
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}

_DIGESTS: dict[DigestAlgorithm, type[hashes.HashAlgorithm]] = {
    DigestAlgorithm.SHA256: hashes.SHA256,
    DigestAlgorithm.SHA384: hashes.SHA384,
    DigestAlgorithm.SHA512: hashes.SHA512,
}


def hash_algorithm_for(digest: DigestAlgorithm) -> hashes.HashAlgorithm:
    return _DIGESTS[DigestAlgorithm(digest)]()


_PRIVATE_FORMATS = {
    PrivateKeyFormat.PKCS8: serialization.PrivateFormat.PKCS8,
    PrivateKeyFormat.TRADITIONAL: serialization.PrivateFormat.TraditionalOpenSSL,
}


@dataclass(frozen=True)
class KeyConfig:
    """Key algorithm, size or curve, and digest.

    Validation runs in the constructor, so a KeyConfig that exists is valid.
    `key_size` applies to RSA only and `curve` to EC only.
    """

    algorithm: KeyAlgorithm = KeyAlgorithm.RSA
    key_size: int | None = None
    curve: str | None = None
    digest: DigestAlgorithm = DigestAlgorithm.SHA256
    private_format: PrivateKeyFormat = PrivateKeyFormat.PKCS8

    def __post_init__(self) -> None:
        # Accept plain strings from settings/env
        try:
            object.__setattr__(self, "algorithm", KeyAlgorithm(str(self.algorithm).upper()))
            object.__setattr__(self, "digest", DigestAlgorithm(str(self.digest).upper()))
            object.__setattr__(
                self, "private_format", PrivateKeyFormat(str(self.private_format).upper())
            )
        except ValueError as e:
            raise InvalidConfig(f"Invalid key configuration: {e}") from e
        if self.algorithm == KeyAlgorithm.RSA and self.key_size is None:
            object.__setattr__(self, "key_size", DEFAULT_RSA_KEY_SIZE)
        if self.algorithm == KeyAlgorithm.EC and self.curve is None:
            object.__setattr__(self, "curve", DEFAULT_EC_CURVE)
        self.validate()

    def validate(self) -> None:
        """Check the algorithm/size/digest combination.

        Raises:
            InvalidConfig: If the combination is not accepted.
        """
        if self.algorithm == KeyAlgorithm.RSA:
            if self.curve is not None:
                raise InvalidConfig("RSA keys do not take a curve")
            if not isinstance(self.key_size, int) or isinstance(self.key_size, bool):
                raise InvalidConfig("RSA keys require an integer key_size")
            if not RSA_MIN_KEY_SIZE <= self.key_size <= RSA_MAX_KEY_SIZE:
                raise InvalidConfig(
                    f"RSA key_size must be between {RSA_MIN_KEY_SIZE} and {RSA_MAX_KEY_SIZE}, "
                    f"got {self.key_size}"
                )
            if self.key_size % 256:
                raise InvalidConfig(f"RSA key_size must be a multiple of 256, got {self.key_size}")
        else:
            if self.key_size is not None:
                raise InvalidConfig("EC keys take a curve, not a key_size")
            if self.curve not in EC_CURVES:
                raise InvalidConfig(
                    f"Unsupported EC curve {self.curve!r}, expected one of {sorted(EC_CURVES)}"
                )

    @classmethod
    def rsa(
        cls, key_size: int = DEFAULT_RSA_KEY_SIZE, digest: DigestAlgorithm = DigestAlgorithm.SHA256
    ) -> "KeyConfig":
        return cls(algorithm=KeyAlgorithm.RSA, key_size=key_size, digest=digest)

    @classmethod
    def ec(
        cls, curve: str = DEFAULT_EC_CURVE, digest: DigestAlgorithm = DigestAlgorithm.SHA384
    ) -> "KeyConfig":
        return cls(algorithm=KeyAlgorithm.EC, curve=curve, digest=digest)

    @classmethod
    def from_settings(cls) -> "KeyConfig":
        """Build the default client key configuration from application settings."""
        from shared.config import settings

        if settings.KEY_ALGORITHM.upper() == KeyAlgorithm.EC:
            return cls(algorithm=KeyAlgorithm.EC, curve=settings.KEY_CURVE, digest=settings.KEY_DIGEST)  # type: ignore[arg-type]
        return cls(
            algorithm=settings.KEY_ALGORITHM,  # type: ignore[arg-type]
            key_size=settings.KEY_SIZE,
            digest=settings.KEY_DIGEST,  # type: ignore[arg-type]
        )

    def hash_algorithm(self) -> hashes.HashAlgorithm:
        return hash_algorithm_for(self.digest)

    def ec_curve(self) -> "ec.EllipticCurve":
        assert self.curve is not None
        return EC_CURVES[self.curve]()

    def serialization_format(self) -> serialization.PrivateFormat:
        return _PRIVATE_FORMATS[self.private_format]
