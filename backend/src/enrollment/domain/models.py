from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shared.database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SerialCounter(Base):
    """Last serial handed out per CA; only ever incremented."""

    __tablename__ = "serial_counters"

    ca_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    last_serial: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class IssuedCertificate(Base):
    """Ledger of delivered certificates (no key material)."""

    __tablename__ = "issued_certificates"

    certificate_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ca_name: Mapped[str] = mapped_column(String(100), nullable=False)
    serial_number: Mapped[str] = mapped_column(String(40), nullable=False)  # hex
    subject_identity: Mapped[str] = mapped_column(String(64), nullable=False)
    thumbprint: Mapped[str] = mapped_column(String(64), nullable=False)
    export_format: Mapped[str] = mapped_column(String(20), nullable=False)  # ExportFormat

    not_before: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    not_after: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("ca_name", "serial_number", name="uq_issued_certificates_ca_serial"),
        Index("ix_issued_certificates_subject", "subject_identity"),
    )
