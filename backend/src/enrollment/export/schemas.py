"""Network metadata for Wi-Fi profile formats."""

import re
from typing import Optional

from cryptography import x509
from pydantic import BaseModel, ConfigDict, Field, field_validator

from enrollment.domain.states import EapMethod

MAX_SSID_BYTES = 32

_HOSTNAME = re.compile(
    r"^(\*\.)?(?=.{1,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)
_REVERSE_DNS = re.compile(r"^[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")


class NetworkProfile(BaseModel):
    """Wi-Fi network description embedded in mobileconfig and eap-metadata profiles."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ssid: str = Field(..., min_length=1, description="Network name (at most 32 UTF-8 bytes)")
    display_name: str = Field(..., min_length=1, max_length=128, description="Profile display name")
    organization: str = Field(..., min_length=1, max_length=128, description="Issuing organization")
    eap_method: EapMethod = Field(default=EapMethod.TLS, description="EAP method (EAP-TLS only)")
    server_names: list[str] = Field(
        ..., min_length=1, description="RADIUS server names trusted by the client"
    )
    realm: Optional[str] = Field(None, description="Home realm, e.g. example.org")
    identifier_prefix: str = Field(
        default="com.example.enrollment", description="Reverse-DNS profile identifier prefix"
    )
    server_ca_pem: Optional[bytes] = Field(
        None, description="PEM trust anchors for the RADIUS server (defaults to the issuing CA)"
    )

    @field_validator("ssid")
    @classmethod
    def _check_ssid(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_SSID_BYTES:
            raise ValueError(f"SSID exceeds {MAX_SSID_BYTES} bytes")
        if any(ord(char) < 0x20 for char in value):
            raise ValueError("SSID contains control characters")
        return value

    @field_validator("display_name", "organization")
    @classmethod
    def _check_printable(cls, value: str) -> str:
        if any(ord(char) < 0x20 or ord(char) == 0x7F for char in value):
            raise ValueError("Value contains control characters")
        return value

    @field_validator("eap_method")
    @classmethod
    def _check_eap_method(cls, value: EapMethod) -> EapMethod:
        if value != EapMethod.TLS:
            raise ValueError(f"EAP method {value.name} does not use a client certificate")
        return value

    @field_validator("server_names")
    @classmethod
    def _check_server_names(cls, value: list[str]) -> list[str]:
        for name in value:
            if not _HOSTNAME.match(name):
                raise ValueError(f"Invalid server name: {name!r}")
        return value

    @field_validator("realm")
    @classmethod
    def _check_realm(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _HOSTNAME.match(value):
            raise ValueError(f"Invalid realm: {value!r}")
        return value

    @field_validator("identifier_prefix")
    @classmethod
    def _check_identifier_prefix(cls, value: str) -> str:
        if not _REVERSE_DNS.match(value):
            raise ValueError(f"Identifier prefix must be reverse-DNS, got {value!r}")
        return value

    @field_validator("server_ca_pem")
    @classmethod
    def _check_server_ca(cls, value: Optional[bytes]) -> Optional[bytes]:
        if value is not None:
            x509.load_pem_x509_certificates(value)
        return value

    def server_ca_certificates(self) -> list[x509.Certificate]:
        if self.server_ca_pem is None:
            return []
        return x509.load_pem_x509_certificates(self.server_ca_pem)

    @classmethod
    def from_settings(cls) -> "NetworkProfile":
        """Default network profile from application settings."""
        from shared.config import settings

        return cls(
            ssid=settings.NETWORK_SSID,
            display_name=settings.NETWORK_DISPLAY_NAME,
            organization=settings.NETWORK_ORGANIZATION,
            server_names=[
                name.strip() for name in settings.NETWORK_SERVER_NAMES.split(",") if name.strip()
            ],
            realm=settings.NETWORK_REALM,
            identifier_prefix=settings.PROFILE_IDENTIFIER_PREFIX,
        )
