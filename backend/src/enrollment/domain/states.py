from enum import IntEnum, StrEnum


class KeyAlgorithm(StrEnum):
    RSA = "RSA"
    EC = "EC"


class DigestAlgorithm(StrEnum):
    SHA256 = "SHA256"
    SHA384 = "SHA384"
    SHA512 = "SHA512"


class PrivateKeyFormat(StrEnum):
    PKCS8 = "PKCS8"
    TRADITIONAL = "TRADITIONAL"


class ExportFormat(StrEnum):
    """Downloadable profile formats."""

    PEM = "pem"
    PKCS12 = "pkcs12"
    MOBILECONFIG = "mobileconfig"
    EAP_METADATA = "eap-metadata"


class EapMethod(IntEnum):
    """IANA EAP method type numbers."""

    TLS = 13
    TTLS = 21
    PEAP = 25
