from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings

# Create Engine
engine = create_engine(
    settings.DATABASE_URL, echo=settings.LOG_LEVEL == "DEBUG", future=True, pool_pre_ping=True
)

# Session Factory
SessionLocal = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def get_session() -> Iterator[Session]:
    """Context manager for getting a session (one per issuance)."""
    with SessionLocal() as session:
        yield session


def init_db() -> None:
    """Create tables for all registered models."""
    # Models must be imported so they register with Base.metadata
    from enrollment.domain import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
