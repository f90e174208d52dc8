"""Apple configuration profile (.mobileconfig) encoding."""

import plistlib
import re
import uuid

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID

from enrollment.domain.states import EapMethod
from enrollment.export.schemas import NetworkProfile

PAYLOAD_VERSION = 1

# Characters allowed in the embedded PKCS12 file name
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._@-]")


def _common_name(certificate: x509.Certificate) -> str:
    attributes = certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attributes[0].value) if attributes else certificate.subject.rfc4514_string()


def _uuid() -> str:
    return str(uuid.uuid4()).upper()


def _file_stem(identity: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", identity).lstrip(".") or "client"


def build_mobileconfig(
    identity: str,
    pkcs12_data: bytes,
    passphrase: str,
    trust_anchors: list[x509.Certificate],
    network: NetworkProfile,
) -> bytes:
    """Build an XML plist profile with CA, client identity and Wi-Fi payloads.

    Args:
        identity: Certificate subject, used for the PKCS12 file name.
        pkcs12_data: Client key + certificate archive.
        passphrase: Passphrase protecting `pkcs12_data`; embedded in the profile.
        trust_anchors: Certificates the device trusts for the RADIUS server.
        network: Network metadata.
    """
    prefix = network.identifier_prefix

    anchor_payloads = []
    for index, certificate in enumerate(trust_anchors):
        anchor_payloads.append(
            {
                "PayloadType": "com.apple.security.root",
                "PayloadVersion": PAYLOAD_VERSION,
                "PayloadIdentifier": f"{prefix}.ca.{index}",
                "PayloadUUID": _uuid(),
                "PayloadDisplayName": _common_name(certificate),
                "PayloadCertificateFileName": f"ca-{index}.cer",
                "PayloadContent": certificate.public_bytes(serialization.Encoding.DER),
            }
        )

    identity_uuid = _uuid()
    identity_payload = {
        "PayloadType": "com.apple.security.pkcs12",
        "PayloadVersion": PAYLOAD_VERSION,
        "PayloadIdentifier": f"{prefix}.client",
        "PayloadUUID": identity_uuid,
        "PayloadDisplayName": identity,
        "PayloadCertificateFileName": f"{_file_stem(identity)}.p12",
        "PayloadContent": pkcs12_data,
        "Password": passphrase,
    }

    eap_configuration: dict[str, object] = {
        "AcceptEAPTypes": [int(EapMethod.TLS)],
        "TLSTrustedServerNames": list(network.server_names),
        "PayloadCertificateAnchorUUID": [payload["PayloadUUID"] for payload in anchor_payloads],
    }
    if network.realm:
        eap_configuration["OuterIdentity"] = f"anonymous@{network.realm}"

    wifi_payload = {
        "PayloadType": "com.apple.wifi.managed",
        "PayloadVersion": PAYLOAD_VERSION,
        "PayloadIdentifier": f"{prefix}.wifi",
        "PayloadUUID": _uuid(),
        "PayloadDisplayName": network.ssid,
        "SSID_STR": network.ssid,
        "AutoJoin": True,
        "HIDDEN_NETWORK": False,
        "EncryptionType": "WPA2",
        "PayloadCertificateUUID": identity_uuid,
        "EAPClientConfiguration": eap_configuration,
    }

    profile = {
        "PayloadType": "Configuration",
        "PayloadVersion": PAYLOAD_VERSION,
        "PayloadIdentifier": prefix,
        "PayloadUUID": _uuid(),
        "PayloadDisplayName": network.display_name,
        "PayloadOrganization": network.organization,
        "PayloadDescription": f"Wi-Fi profile for {identity}",
        "PayloadRemovalDisallowed": False,
        "PayloadContent": [*anchor_payloads, identity_payload, wifi_payload],
    }
    return plistlib.dumps(profile, fmt=plistlib.FMT_XML)
