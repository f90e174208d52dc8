from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    APP_NAME: str = "Certificate Enrollment"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./enrollment.db"

    # Client key defaults
    KEY_ALGORITHM: str = "RSA"
    KEY_SIZE: int = 2048
    KEY_CURVE: str = "secp384r1"
    KEY_DIGEST: str = "SHA256"

    # Certificate policy
    CERT_VALIDITY_DAYS: int = 365
    CERT_MAX_VALIDITY_DAYS: int = 825
    CA_NAME: str = "default"

    # Issuance
    ISSUANCE_TIMEOUT_SECONDS: float = 30.0
    PKCS12_ALLOW_EMPTY_PASSPHRASE: bool = False

    # Network profile defaults (mobileconfig / eap-metadata)
    NETWORK_SSID: str = "eduroam"
    NETWORK_DISPLAY_NAME: str = "eduroam"
    NETWORK_ORGANIZATION: str = "Certificate Enrollment"
    NETWORK_SERVER_NAMES: str = "radius.example.com"
    NETWORK_REALM: Optional[str] = None
    PROFILE_IDENTIFIER_PREFIX: str = "com.example.enrollment"


settings = Settings()
