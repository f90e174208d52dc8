"""Certificate Authority: signs certificate requests into client certificates."""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from opentelemetry import trace

from enrollment.ca.certificate_request import CertificateRequest
from enrollment.ca.crypto import compute_thumbprint
from enrollment.ca.key_config import hash_algorithm_for
from enrollment.ca.key_manager import CAKeyPair
from enrollment.ca.key_pair import PublicKey
from enrollment.ca.serials import SerialAllocator
from enrollment.domain.states import DigestAlgorithm
from enrollment.errors import PolicyViolation, SigningFailed
from enrollment.metrics import enrollment_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# RFC 5280: serials are positive and at most 20 octets
MAX_SERIAL = (1 << 159) - 1


@dataclass(frozen=True)
class Certificate:
    """A certificate issued by the CA."""

    serial: int
    subject_identity: str
    issuer_identity: str
    not_before: datetime
    not_after: datetime
    signature: bytes = field(repr=False)
    signature_algorithm: str
    x509_certificate: x509.Certificate = field(repr=False)

    @property
    def pem(self) -> bytes:
        return self.x509_certificate.public_bytes(serialization.Encoding.PEM)

    @property
    def der(self) -> bytes:
        return self.x509_certificate.public_bytes(serialization.Encoding.DER)

    @property
    def serial_hex(self) -> str:
        return format(self.serial, "x")

    @property
    def thumbprint(self) -> str:
        return compute_thumbprint(self.x509_certificate)

    def verify(self, issuer_public_key: PublicKey) -> bool:
        """Check the signature against the issuer's public key."""
        cert = self.x509_certificate
        hash_algorithm = cert.signature_hash_algorithm
        assert hash_algorithm is not None
        try:
            if isinstance(issuer_public_key, rsa.RSAPublicKey):
                issuer_public_key.verify(
                    cert.signature, cert.tbs_certificate_bytes, padding.PKCS1v15(), hash_algorithm
                )
            else:
                issuer_public_key.verify(
                    cert.signature, cert.tbs_certificate_bytes, ec.ECDSA(hash_algorithm)
                )
        except InvalidSignature:
            return False
        return True


class CertificateAuthority:
    """Signs CertificateRequests with the CA key.

    Policy (checked before a serial is consumed):
    - Validity may not start before the CA certificate is valid
    - Validity may not end after the CA certificate expires
    - Validity may not exceed max_validity_days

    The CA key and certificate are read-only; the serial allocator is the only
    mutable state and is guarded by a lock.
    """

    DEFAULT_MAX_VALIDITY_DAYS = 825

    def __init__(
        self,
        ca_key_pair: CAKeyPair,
        serial_allocator: SerialAllocator,
        digest: DigestAlgorithm | None = None,
        max_validity_days: int | None = None,
    ) -> None:
        """Initialize the CA.

        Args:
            ca_key_pair: The CA's key pair and certificate for signing.
            serial_allocator: Source of unique serial numbers.
            digest: Signature digest (defaults to the CA key's configured digest).
            max_validity_days: Upper bound on certificate lifetime.
        """
        self._ca = ca_key_pair
        self._serials = serial_allocator
        self._serial_lock = threading.Lock()
        self._digest = digest or ca_key_pair.key_pair.config.digest
        self._max_validity_days = max_validity_days or self.DEFAULT_MAX_VALIDITY_DAYS

    @property
    def certificate(self) -> x509.Certificate:
        return self._ca.certificate

    @property
    def chain(self) -> list[x509.Certificate]:
        """CA certificate followed by any intermediates above it."""
        return [self._ca.certificate, *self._ca.chain]

    @property
    def public_key(self) -> PublicKey:
        return self._ca.key_pair.public_key

    @property
    def issuer_identity(self) -> str:
        return self._ca.subject_name

    def sign(self, request: CertificateRequest) -> Certificate:
        """Issue a certificate for a request.

        Raises:
            PolicyViolation: If the validity window breaks CA policy.
            SigningFailed: If serial allocation or the signing primitive fails.
        """
        with tracer.start_as_current_span("CertificateAuthority.sign") as span:
            span.set_attribute("subject", request.subject_identity)

            start_time = time.time()
            self._enforce_policy(request)

            serial = self._allocate_serial()
            span.set_attribute("serial", format(serial, "x"))

            try:
                x509_certificate = self._build(request, serial).sign(
                    self._ca.key_pair.private_key,
                    hash_algorithm_for(self._digest),
                )
            except Exception as e:
                logger.error(
                    "certificate_signing_failed",
                    extra={"subject": request.subject_identity, "serial": serial, "error": str(e)},
                )
                raise SigningFailed.from_exception("Failed to sign certificate", e) from e

            certificate = Certificate(
                serial=serial,
                subject_identity=request.subject_identity,
                issuer_identity=self.issuer_identity,
                not_before=x509_certificate.not_valid_before_utc,
                not_after=x509_certificate.not_valid_after_utc,
                signature=x509_certificate.signature,
                signature_algorithm=self._signature_algorithm_name(),
                x509_certificate=x509_certificate,
            )

            enrollment_metrics.record_certificate_signed()
            logger.info(
                "certificate_signed",
                extra={
                    "subject": request.subject_identity,
                    "serial": certificate.serial_hex,
                    "not_after": certificate.not_after.isoformat(),
                    "duration_seconds": time.time() - start_time,
                },
            )
            return certificate

    def _enforce_policy(self, request: CertificateRequest) -> None:
        ca_not_before = self._ca.certificate.not_valid_before_utc
        ca_not_after = self._ca.certificate.not_valid_after_utc

        if request.not_before < ca_not_before:
            self._reject(
                "not_before",
                f"Validity starts {request.not_before.isoformat()}, "
                f"before the CA certificate is valid ({ca_not_before.isoformat()})",
            )
        if request.not_after > ca_not_after:
            self._reject(
                "not_after",
                f"Validity ends {request.not_after.isoformat()}, "
                f"after the CA certificate expires ({ca_not_after.isoformat()})",
            )
        days = (request.not_after - request.not_before).total_seconds() / 86400
        if days > self._max_validity_days:
            self._reject(
                "max_validity",
                f"Certificate validity cannot exceed {self._max_validity_days} days",
            )

    def _reject(self, rule: str, message: str) -> None:
        enrollment_metrics.record_policy_violation(rule)
        logger.warning("certificate_policy_violation", extra={"rule": rule})
        raise PolicyViolation(message)

    def _allocate_serial(self) -> int:
        # A consumed serial is never handed back, even if signing fails later
        try:
            with self._serial_lock:
                serial = self._serials.next_serial()
        except Exception as e:
            raise SigningFailed.from_exception("Failed to allocate serial number", e) from e

        if not 0 < serial <= MAX_SERIAL:
            raise SigningFailed(f"Serial allocator returned out-of-range serial {serial}")

        enrollment_metrics.record_serial_allocated()
        return serial

    def _build(self, request: CertificateRequest, serial: int) -> x509.CertificateBuilder:
        is_rsa = isinstance(request.public_key, rsa.RSAPublicKey)
        subject = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, request.subject_identity),
            ]
        )
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(self._ca.certificate.subject)
            .public_key(request.public_key)
            .serial_number(serial)
            .not_valid_before(request.not_before)
            .not_valid_after(request.not_after)
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    key_encipherment=is_rsa,
                    key_cert_sign=False,
                    crl_sign=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(request.public_key),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(self.public_key),
                critical=False,
            )
        )

    def _signature_algorithm_name(self) -> str:
        key_type = "RSA" if isinstance(self.public_key, rsa.RSAPublicKey) else "ECDSA"
        return f"{key_type}-{self._digest.value}"
