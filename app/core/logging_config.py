"""
Structured JSON logging configuration.

Every record carries:
- timestamp (ISO 8601)
- level (INFO, WARNING, ERROR, etc.)
- service (service name)
- request_id (per-request identifier set by the request middleware)
- message (log message)

Modules log through the standard library once main.py has called
configure_logging():
    logger = logging.getLogger(__name__)
    logger.info("Post created", extra={"post_id": 12, "owner_id": 3})
"""
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Any
from pythonjsonlogger import jsonlogger

# Request correlation id, set by RequestIDMiddleware for the lifetime of a request
request_id_var: ContextVar[str] = ContextVar("request_id", default="no-request")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter adding the mandatory observability fields.

    Extra attributes passed with ``extra=`` are emitted as additional keys.
    """

    def __init__(self, service_name: str = "propertysell", *args, **kwargs):
        self.service_name = service_name
        super().__init__(*args, **kwargs)

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['service'] = self.service_name
        log_record['message'] = record.getMessage()
        log_record['request_id'] = getattr(record, 'request_id', request_id_var.get())
        log_record['logger'] = record.name

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


class RequestContextFilter(logging.Filter):
    """Copies the current request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'request_id'):
            record.request_id = request_id_var.get()
        return True


def configure_logging(
    service_name: str = "propertysell",
    level: str = "INFO",
    enable_json: bool = True
) -> None:
    """
    Configure root logging for the application.

    Args:
        service_name: Name of the service emitting logs
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: JSON output for production, plain text otherwise
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(RequestContextFilter())

    if enable_json:
        formatter = CustomJsonFormatter(
            service_name=service_name,
            fmt='%(timestamp)s %(level)s %(service)s %(request_id)s %(message)s'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Suppress noisy third-party loggers
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

