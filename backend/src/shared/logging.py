import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter

from .config import settings

# Record attributes that may only ever hold secret material
SECRET_ATTRIBUTES = frozenset({"passphrase", "password", "private_key", "private_key_pem", "payload"})
REDACTED = "[REDACTED]"


class SecretRedactingFilter(logging.Filter):
    """Blank out secret-bearing `extra` fields before any handler sees them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in SECRET_ATTRIBUTES:
            if name in record.__dict__:
                setattr(record, name, REDACTED)
        return True


def setup_logging() -> None:
    """Configure OpenTelemetry logging with a console exporter."""

    # 1. Setup OpenTelemetry Logger Provider
    logger_provider = LoggerProvider()

    console_exporter = ConsoleLogRecordExporter()
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(console_exporter))

    set_logger_provider(logger_provider)

    redactor = SecretRedactingFilter()

    # 2. Attach OTel LoggingHandler to Python's root logger
    handler = LoggingHandler(
        level=getattr(logging, settings.LOG_LEVEL), logger_provider=logger_provider
    )
    handler.addFilter(redactor)

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(settings.LOG_LEVEL)

    # Plain stream handler for immediate feedback while OTel batches
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    stream_handler.addFilter(redactor)
    root.addHandler(stream_handler)

    # Silence noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


logger = logging.getLogger("enrollment")
