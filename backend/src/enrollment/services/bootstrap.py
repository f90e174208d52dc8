"""Wiring of the issuance core from application settings."""

import logging

from sqlalchemy.orm import Session, sessionmaker

from enrollment.ca.authority import CertificateAuthority
from enrollment.ca.key_config import KeyConfig
from enrollment.ca.key_manager import CAKeyPair
from enrollment.export.profile_exporter import ProfileExporter
from enrollment.export.schemas import NetworkProfile
from enrollment.repository.repositories import SqlCertificateRecorder, SqlSerialAllocator
from enrollment.services.issuance_service import IssuanceService
from shared.config import settings

logger = logging.getLogger(__name__)


def build_issuance_service(
    ca_key_pair: CAKeyPair,
    session_factory: sessionmaker[Session],
) -> IssuanceService:
    """Assemble CA, exporter and service around a loaded CA key pair.

    Serials and the issued certificate ledger live in the database behind
    `session_factory`, so they survive restarts.
    """
    ca_name = settings.CA_NAME

    authority = CertificateAuthority(
        ca_key_pair,
        SqlSerialAllocator(session_factory, ca_name),
        max_validity_days=settings.CERT_MAX_VALIDITY_DAYS,
    )
    exporter = ProfileExporter(
        ca_chain=authority.chain,
        allow_empty_pkcs12_passphrase=settings.PKCS12_ALLOW_EMPTY_PASSPHRASE,
        default_network=NetworkProfile.from_settings(),
    )
    service = IssuanceService(
        authority=authority,
        exporter=exporter,
        recorder=SqlCertificateRecorder(session_factory, ca_name),
        key_config=KeyConfig.from_settings(),
        validity_days=settings.CERT_VALIDITY_DAYS,
        timeout_seconds=settings.ISSUANCE_TIMEOUT_SECONDS,
    )

    logger.info(
        "issuance_service_ready",
        extra={
            "ca_name": ca_name,
            "ca_subject": ca_key_pair.subject_name,
            "key_algorithm": service.key_config.algorithm.value,
        },
    )
    return service
