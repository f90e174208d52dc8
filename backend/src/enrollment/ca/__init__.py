"""Certificate Authority module for the enrollment core.

This module provides:
- Key configuration, generation, import and export
- CA key management (loading, generation, storage)
- Certificate requests and signing with unique serials
"""

from enrollment.ca.authority import Certificate, CertificateAuthority
from enrollment.ca.certificate_request import CertificateRequest, Validity
from enrollment.ca.key_config import KeyConfig
from enrollment.ca.key_manager import CAKeyPair, KeyManager
from enrollment.ca.key_pair import KeyPair

__all__ = [
    "CAKeyPair",
    "Certificate",
    "CertificateAuthority",
    "CertificateRequest",
    "KeyConfig",
    "KeyManager",
    "KeyPair",
    "Validity",
]
