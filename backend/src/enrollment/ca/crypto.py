"""Cryptographic helpers shared by the CA and the profile exporter."""

import hashlib
import secrets

from cryptography import x509
from cryptography.hazmat.primitives import serialization

# One-time passphrases for profiles whose container carries the passphrase itself
GENERATED_PASSPHRASE_BYTES = 18


def compute_thumbprint(certificate: x509.Certificate) -> str:
    """Lowercase hexadecimal SHA-256 thumbprint of a certificate's DER encoding."""
    der_bytes = certificate.public_bytes(serialization.Encoding.DER)
    return hashlib.sha256(der_bytes).hexdigest().lower()


def generate_passphrase() -> str:
    """Random URL-safe passphrase."""
    return secrets.token_urlsafe(GENERATED_PASSPHRASE_BYTES)
