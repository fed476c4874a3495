"""
Structured logging configuration for production use.

Provides JSON-formatted logs for better parsing and aggregation, plus a
batch-scoped adapter so every record emitted during one workload computation
carries the same correlation fields.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Tuple
from core.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields if present
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class BatchLoggerAdapter(logging.LoggerAdapter):
    """
    Stamps batch correlation fields onto every record.

    Per-call ``extra={"extra_fields": {...}}`` is merged on top of the batch
    fields instead of replacing them.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        fields = dict(self.extra.get("extra_fields", {}))
        call_extra = kwargs.get("extra") or {}
        fields.update(call_extra.get("extra_fields", {}))
        kwargs["extra"] = {**call_extra, "extra_fields": fields}
        return msg, kwargs


def get_batch_logger(name: str, **fields: Any) -> BatchLoggerAdapter:
    """Return a logger that tags every record with the given fields."""
    return BatchLoggerAdapter(logging.getLogger(name), {"extra_fields": fields})


def setup_logging():
    """
    Configure application-wide logging.

    Uses JSON format in production, text format in development.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    # Create formatter
    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return root_logger
