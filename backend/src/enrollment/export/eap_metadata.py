"""EAP metadata (eap-config XML) encoding."""

import base64
import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from enrollment.domain.states import EapMethod
from enrollment.export.schemas import NetworkProfile

XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
SCHEMA_LOCATION = "eap-metadata.xsd"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def build_eap_config(
    identity: str,
    pkcs12_data: bytes,
    passphrase: str,
    trust_anchors: list[x509.Certificate],
    network: NetworkProfile,
    valid_until: datetime,
) -> bytes:
    """Build an `EAPIdentityProviderList` document for EAP-TLS."""
    ET.register_namespace("xsi", XSI_NAMESPACE)
    root = ET.Element(
        "EAPIdentityProviderList",
        {f"{{{XSI_NAMESPACE}}}noNamespaceSchemaLocation": SCHEMA_LOCATION},
    )
    provider = ET.SubElement(
        root,
        "EAPIdentityProvider",
        {
            "ID": network.realm or network.identifier_prefix,
            "namespace": "urn:RFC4282:realm",
            "lang": "en",
            "version": "1",
        },
    )
    ET.SubElement(provider, "ValidUntil").text = (
        valid_until.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    )

    methods = ET.SubElement(provider, "AuthenticationMethods")
    method = ET.SubElement(methods, "AuthenticationMethod")
    eap_method = ET.SubElement(method, "EAPMethod")
    ET.SubElement(eap_method, "Type").text = str(int(EapMethod.TLS))

    server_credential = ET.SubElement(method, "ServerSideCredential")
    for certificate in trust_anchors:
        ca = ET.SubElement(server_credential, "CA", {"format": "X.509", "encoding": "base64"})
        ca.text = _b64(certificate.public_bytes(serialization.Encoding.DER))
    for server_name in network.server_names:
        ET.SubElement(server_credential, "ServerID").text = server_name

    client_credential = ET.SubElement(method, "ClientSideCredential")
    if network.realm:
        ET.SubElement(client_credential, "OuterIdentity").text = f"anonymous@{network.realm}"
    client_certificate = ET.SubElement(
        client_credential, "ClientCertificate", {"format": "PKCS12", "encoding": "base64"}
    )
    client_certificate.text = _b64(pkcs12_data)
    ET.SubElement(client_credential, "Passphrase").text = passphrase

    applicability = ET.SubElement(provider, "CredentialApplicability")
    ieee80211 = ET.SubElement(applicability, "IEEE80211")
    ET.SubElement(ieee80211, "SSID").text = network.ssid
    ET.SubElement(ieee80211, "MinRSNProto").text = "CCMP"

    provider_info = ET.SubElement(provider, "ProviderInfo")
    ET.SubElement(provider_info, "DisplayName").text = network.display_name
    ET.SubElement(provider_info, "Description").text = f"{network.organization} ({identity})"

    return ET.tostring(root, encoding="utf-8", xml_declaration=True)
