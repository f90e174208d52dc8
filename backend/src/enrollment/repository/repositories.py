"""Repository layer for serial counters and the issued certificate ledger."""

import logging
import threading

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from enrollment.ca.authority import Certificate
from enrollment.domain.models import IssuedCertificate, SerialCounter
from enrollment.domain.states import ExportFormat

logger = logging.getLogger(__name__)


class SerialCounterRepository:
    """Transactional serial counter per CA."""

    def __init__(self, db: Session):
        self.db = db

    def ensure(self, ca_name: str) -> None:
        """Create the counter row if it does not exist yet."""
        if self.db.get(SerialCounter, ca_name) is not None:
            return
        self.db.add(SerialCounter(ca_name=ca_name, last_serial=0))
        try:
            self.db.flush()
        except IntegrityError:
            # Another process created it first
            self.db.rollback()
            logger.debug("serial_counter_exists", extra={"ca_name": ca_name})

    def allocate(self, ca_name: str) -> int:
        """Increment and return the counter in a single statement."""
        result = self.db.execute(
            update(SerialCounter)
            .where(SerialCounter.ca_name == ca_name)
            .values(last_serial=SerialCounter.last_serial + 1)
            .returning(SerialCounter.last_serial)
        )
        serial = result.scalar_one_or_none()
        if serial is None:
            raise LookupError(f"No serial counter for CA {ca_name!r}")
        return serial

    def current(self, ca_name: str) -> int:
        result = self.db.execute(
            select(SerialCounter.last_serial).where(SerialCounter.ca_name == ca_name)
        )
        return result.scalar_one_or_none() or 0


class IssuedCertificateRepository:
    """Repository for IssuedCertificate records."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, cert: IssuedCertificate) -> IssuedCertificate:
        self.db.add(cert)
        self.db.flush()
        return cert

    def get_by_serial(self, ca_name: str, serial: str) -> IssuedCertificate | None:
        result = self.db.execute(
            select(IssuedCertificate)
            .where(IssuedCertificate.ca_name == ca_name)
            .where(IssuedCertificate.serial_number == serial)
        )
        return result.scalar_one_or_none()

    def list_by_subject(self, subject_identity: str) -> list[IssuedCertificate]:
        result = self.db.execute(
            select(IssuedCertificate)
            .where(IssuedCertificate.subject_identity == subject_identity)
            .order_by(IssuedCertificate.issued_at.desc())
        )
        return list(result.scalars().all())

    def count(self) -> int:
        result = self.db.execute(select(func.count()).select_from(IssuedCertificate))
        return result.scalar_one()


class SqlSerialAllocator:
    """SerialAllocator backed by the serial_counters table.

    Each call commits its own transaction, so an allocated serial stays
    consumed whatever happens to the issuance afterwards.
    """

    def __init__(self, session_factory: sessionmaker[Session], ca_name: str):
        self._session_factory = session_factory
        self._ca_name = ca_name
        self._lock = threading.Lock()

        with self._session_factory() as db:
            SerialCounterRepository(db).ensure(ca_name)
            db.commit()

    def next_serial(self) -> int:
        with self._lock, self._session_factory() as db:
            serial = SerialCounterRepository(db).allocate(self._ca_name)
            db.commit()
            return serial


class SqlCertificateRecorder:
    """Records delivered certificates in the issued_certificates table."""

    def __init__(self, session_factory: sessionmaker[Session], ca_name: str):
        self._session_factory = session_factory
        self._ca_name = ca_name

    def record(self, certificate: Certificate, export_format: ExportFormat) -> None:
        with self._session_factory() as db:
            IssuedCertificateRepository(db).create(
                IssuedCertificate(
                    ca_name=self._ca_name,
                    serial_number=certificate.serial_hex,
                    subject_identity=certificate.subject_identity,
                    thumbprint=certificate.thumbprint,
                    export_format=export_format.value,
                    not_before=certificate.not_before,
                    not_after=certificate.not_after,
                )
            )
            db.commit()

        logger.info(
            "issued_certificate_recorded",
            extra={"ca_name": self._ca_name, "serial": certificate.serial_hex},
        )
