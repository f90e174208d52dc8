"""Export a key pair and its certificate as a downloadable profile.

Formats:
- PEM: certificate block followed by the private key block
- PKCS12: key, certificate and CA chain in one archive
- MOBILECONFIG: Apple configuration profile with PKCS12, CA and Wi-Fi payloads
- EAP_METADATA: eap-config XML with PKCS12, CA and SSID

Metadata and passphrase checks (`validate`) never touch key material, so the
issuance service runs them before generating a key.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12
from opentelemetry import trace
from pydantic import ValidationError

from enrollment.ca.authority import Certificate
from enrollment.ca.crypto import generate_passphrase
from enrollment.ca.key_pair import KeyPair
from enrollment.domain.states import ExportFormat
from enrollment.errors import (
    EnrollmentError,
    ExportFailed,
    InvalidArgument,
    UnsupportedFormat,
    ValidationFailed,
)
from enrollment.export.eap_metadata import build_eap_config
from enrollment.export.mobileconfig import build_mobileconfig
from enrollment.export.schemas import NetworkProfile
from enrollment.metrics import enrollment_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CONTENT_TYPES = {
    ExportFormat.PEM: "application/x-pem-file",
    ExportFormat.PKCS12: "application/x-pkcs12",
    ExportFormat.MOBILECONFIG: "application/x-apple-aspen-config",
    ExportFormat.EAP_METADATA: "application/eap-config",
}

EXTENSIONS = {
    ExportFormat.PEM: ".pem",
    ExportFormat.PKCS12: ".p12",
    ExportFormat.MOBILECONFIG: ".mobileconfig",
    ExportFormat.EAP_METADATA: ".eap-config",
}

# Apple and most supplicants only read PKCS12 with legacy PBE
LEGACY_PKCS12_KDF_ROUNDS = 2048

NetworkInput = NetworkProfile | Mapping[str, Any] | None


@dataclass(frozen=True)
class ExportedProfile:
    """Exported bytes plus what the transport layer needs to deliver them."""

    format: ExportFormat
    payload: bytes = field(repr=False)
    content_type: str
    extension: str
    passphrase: str | None = field(default=None, repr=False)

    def filename(self, stem: str) -> str:
        return f"{stem}{self.extension}"


def parse_format(value: ExportFormat | str) -> ExportFormat:
    """Map a format name (`pem`, `pkcs12`, `mobileconfig`, `eap-metadata`) to ExportFormat.

    Raises:
        UnsupportedFormat: If the name is unknown.
    """
    if isinstance(value, ExportFormat):
        return value
    try:
        return ExportFormat(str(value).strip().lower())
    except ValueError as e:
        raise UnsupportedFormat(
            f"Unsupported export format {value!r}, expected one of "
            f"{[member.value for member in ExportFormat]}"
        ) from e


class ProfileExporter:
    """Encodes (KeyPair, Certificate) into ExportedProfiles."""

    def __init__(
        self,
        ca_chain: list[x509.Certificate],
        allow_empty_pkcs12_passphrase: bool = False,
        default_network: NetworkProfile | None = None,
    ) -> None:
        """Initialize exporter.

        Args:
            ca_chain: Issuing CA certificate first, then any intermediates.
            allow_empty_pkcs12_passphrase: Permit unprotected PKCS12 archives.
            default_network: Network metadata used when a request gives none.
        """
        self._ca_chain = list(ca_chain)
        self._allow_empty_pkcs12_passphrase = allow_empty_pkcs12_passphrase
        self._default_network = default_network

    def validate(
        self,
        export_format: ExportFormat | str,
        passphrase: str | None = None,
        network: NetworkInput = None,
    ) -> tuple[ExportFormat, NetworkProfile | None]:
        """Check format, passphrase policy and network metadata.

        Returns:
            The parsed format and the resolved network profile (Wi-Fi formats only).

        Raises:
            UnsupportedFormat: Unknown format.
            InvalidArgument: Empty PKCS12 passphrase without configuration allowing it.
            ValidationFailed: Missing or malformed network metadata.
        """
        fmt = parse_format(export_format)

        if fmt == ExportFormat.PKCS12 and not passphrase and not self._allow_empty_pkcs12_passphrase:
            raise InvalidArgument("PKCS12 export requires a non-empty passphrase")

        if fmt in (ExportFormat.MOBILECONFIG, ExportFormat.EAP_METADATA):
            return fmt, self._resolve_network(network)
        return fmt, None

    def export(
        self,
        key_pair: KeyPair,
        certificate: Certificate,
        export_format: ExportFormat | str,
        passphrase: str | None = None,
        network: NetworkInput = None,
    ) -> ExportedProfile:
        """Encode the key pair and certificate in the requested format.

        Raises:
            UnsupportedFormat, InvalidArgument, ValidationFailed: See `validate`.
            ExportFailed: If a serialization primitive fails.
        """
        fmt, profile = self.validate(export_format, passphrase, network)

        with tracer.start_as_current_span("ProfileExporter.export") as span:
            span.set_attribute("format", fmt.value)
            span.set_attribute("serial", certificate.serial_hex)

            try:
                if fmt == ExportFormat.PEM:
                    payload, used = self._export_pem(key_pair, certificate, passphrase)
                elif fmt == ExportFormat.PKCS12:
                    payload, used = self._export_pkcs12(key_pair, certificate, passphrase)
                else:
                    assert profile is not None
                    payload, used = self._export_wifi(fmt, key_pair, certificate, passphrase, profile)
            except EnrollmentError:
                raise
            except Exception as e:
                logger.error(
                    "profile_export_failed",
                    extra={"format": fmt.value, "serial": certificate.serial_hex, "error": str(e)},
                )
                raise ExportFailed.from_exception(f"Failed to export {fmt.value} profile", e) from e

            enrollment_metrics.record_profile_exported(fmt.value)
            logger.info(
                "profile_exported",
                extra={"format": fmt.value, "serial": certificate.serial_hex, "size": len(payload)},
            )
            return ExportedProfile(
                format=fmt,
                payload=payload,
                content_type=CONTENT_TYPES[fmt],
                extension=EXTENSIONS[fmt],
                passphrase=used,
            )

    def _resolve_network(self, network: NetworkInput) -> NetworkProfile:
        if network is None:
            if self._default_network is None:
                raise ValidationFailed("Network metadata is required for Wi-Fi profiles")
            return self._default_network
        if isinstance(network, NetworkProfile):
            return network
        try:
            return NetworkProfile.model_validate(dict(network))
        except (ValidationError, TypeError, ValueError) as e:
            raise ValidationFailed(f"Invalid network metadata: {e}") from e

    def _export_pem(
        self, key_pair: KeyPair, certificate: Certificate, passphrase: str | None
    ) -> tuple[bytes, str | None]:
        if passphrase:
            key_pem = key_pair.export_private_encrypted(passphrase)
        else:
            key_pem = key_pair.export_private_unencrypted()
        return certificate.pem + key_pem, passphrase or None

    def _export_pkcs12(
        self,
        key_pair: KeyPair,
        certificate: Certificate,
        passphrase: str | None,
        legacy: bool = False,
    ) -> tuple[bytes, str | None]:
        encryption: serialization.KeySerializationEncryption
        if not passphrase:
            encryption = serialization.NoEncryption()
        elif legacy:
            encryption = (
                serialization.PrivateFormat.PKCS12.encryption_builder()
                .kdf_rounds(LEGACY_PKCS12_KDF_ROUNDS)
                .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
                .hmac_hash(hashes.SHA1())
                .build(passphrase.encode("utf-8"))
            )
        else:
            encryption = serialization.BestAvailableEncryption(passphrase.encode("utf-8"))

        data = pkcs12.serialize_key_and_certificates(
            name=certificate.subject_identity.encode("utf-8"),
            key=key_pair.private_key,
            cert=certificate.x509_certificate,
            cas=self._ca_chain or None,
            encryption_algorithm=encryption,
        )
        return data, passphrase or None

    def _export_wifi(
        self,
        fmt: ExportFormat,
        key_pair: KeyPair,
        certificate: Certificate,
        passphrase: str | None,
        network: NetworkProfile,
    ) -> tuple[bytes, str]:
        # The profile carries the passphrase next to the archive
        passphrase = passphrase or generate_passphrase()
        pkcs12_data, _ = self._export_pkcs12(key_pair, certificate, passphrase, legacy=True)
        trust_anchors = network.server_ca_certificates() or self._ca_chain

        if fmt == ExportFormat.MOBILECONFIG:
            payload = build_mobileconfig(
                identity=certificate.subject_identity,
                pkcs12_data=pkcs12_data,
                passphrase=passphrase,
                trust_anchors=trust_anchors,
                network=network,
            )
        else:
            payload = build_eap_config(
                identity=certificate.subject_identity,
                pkcs12_data=pkcs12_data,
                passphrase=passphrase,
                trust_anchors=trust_anchors,
                network=network,
                valid_until=certificate.not_after,
            )
        return payload, passphrase
