from enrollment.ca.key_manager import KeyManager
from enrollment.services.bootstrap import build_issuance_service
from enrollment.services.issuance_service import IssuanceService
from opentelemetry import trace
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from shared.config import settings
from shared.database import SessionLocal, engine, init_db
from shared.logging import setup_logging
from shared.metrics import setup_metrics

# Global instances, set by startup()
_key_manager: KeyManager | None = None
_issuance_service: IssuanceService | None = None


def get_key_manager() -> KeyManager:
    """Get the initialized key manager."""
    if _key_manager is None:
        raise RuntimeError("KeyManager not initialized")
    return _key_manager


def get_issuance_service() -> IssuanceService:
    """Get the initialized issuance service (shared by all request threads)."""
    if _issuance_service is None:
        raise RuntimeError("IssuanceService not initialized")
    return _issuance_service


# Setup OpenTelemetry Tracing
def setup_tracing() -> None:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)

    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)


def startup() -> IssuanceService:
    """Initialize observability, storage and the CA; return the issuance service."""
    global _key_manager, _issuance_service

    setup_logging()
    setup_tracing()
    setup_metrics(settings.APP_NAME)

    LoggingInstrumentor().instrument(set_logging_format=True)
    SQLAlchemyInstrumentor().instrument(engine=engine)

    init_db()

    # Initialize Certificate Authority
    _key_manager = KeyManager()
    ca_key_pair = _key_manager.load_or_generate()

    _issuance_service = build_issuance_service(ca_key_pair, SessionLocal)
    return _issuance_service


def shutdown() -> None:
    global _issuance_service
    if _issuance_service is not None:
        _issuance_service.close()
        _issuance_service = None
