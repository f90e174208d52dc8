"""Shared fixtures for enrollment tests."""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from enrollment.ca.authority import CertificateAuthority
from enrollment.ca.key_config import KeyConfig
from enrollment.ca.key_manager import CAKeyPair
from enrollment.ca.key_pair import KeyPair
from enrollment.ca.serials import InMemorySerialAllocator
from enrollment.export.profile_exporter import ProfileExporter
from enrollment.export.schemas import NetworkProfile
from shared.database import Base

CA_ENV_VARS = (
    "CA_KEY_PATH",
    "CA_CERT_PATH",
    "CA_KEY_PEM",
    "CA_CERT_PEM",
    "CA_KEY_PASSPHRASE",
    "CA_ALGORITHM",
    "CA_COMMON_NAME",
)


def make_ca(
    config: KeyConfig | None = None,
    common_name: str = "Test Enrollment CA",
    not_before: datetime | None = None,
    validity_days: int = 3650,
) -> CAKeyPair:
    """Build a self-signed CA without touching the environment."""
    key_pair = KeyPair.generate(config or KeyConfig.ec())
    not_before = not_before or datetime.now(timezone.utc) - timedelta(days=1)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key_pair.public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=validity_days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(key_pair.private_key, key_pair.config.hash_algorithm())
    )
    return CAKeyPair(key_pair=key_pair, certificate=certificate, storage_type="generated")


@pytest.fixture
def clean_ca_env(monkeypatch):
    """Remove every CA_* variable so KeyManager falls through to generation."""
    for name in CA_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture(scope="session")
def ca_key_pair() -> CAKeyPair:
    return make_ca()


@pytest.fixture(scope="session")
def rsa_key_pair() -> KeyPair:
    return KeyPair.generate(KeyConfig.rsa(2048))


@pytest.fixture(scope="session")
def ec_key_pair() -> KeyPair:
    return KeyPair.generate(KeyConfig.ec("secp256r1"))


@pytest.fixture
def serial_allocator() -> InMemorySerialAllocator:
    return InMemorySerialAllocator()


@pytest.fixture
def authority(ca_key_pair, serial_allocator) -> CertificateAuthority:
    return CertificateAuthority(ca_key_pair, serial_allocator)


@pytest.fixture
def network_profile() -> NetworkProfile:
    return NetworkProfile(
        ssid="CorpWiFi",
        display_name="Corp Wi-Fi",
        organization="Example Corp",
        server_names=["radius.example.com"],
        realm="example.com",
        identifier_prefix="com.example.corp",
    )


@pytest.fixture
def exporter(authority, network_profile) -> ProfileExporter:
    return ProfileExporter(ca_chain=authority.chain, default_network=network_profile)


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker[Session]:
    """File-backed SQLite database shared across threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'enrollment.db'}",
        connect_args={"check_same_thread": False},
    )
    # Register models with Base.metadata
    from enrollment.domain import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)
    yield factory
    engine.dispose()
