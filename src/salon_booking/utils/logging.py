"""Logging configuration for the booking core.

Every record carries the id of the user action that produced it and the
signed-in user, taken from context variables so concurrent actions on one
event loop stay apart.
"""

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

from salon_booking.config import Settings, get_settings
from salon_booking.utils.errors import BookingException

# Set per user action by the booking state machine, sent as X-Request-ID
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
# Set by the session manager while a session is active
user_id_var: ContextVar[Optional[int]] = ContextVar("user_id", default=None)

_logger: Optional[logging.Logger] = None

_CONTEXT_FIELDS = ("request_id", "user_id")

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", (), None))
).union({"message", "asctime", "taskName", "extra_fields"}, _CONTEXT_FIELDS)


def _context(record: logging.LogRecord) -> Dict[str, Any]:
    """Action and user for a record, preferring values stamped by the filter."""
    user_id = getattr(record, "user_id", None)
    return {
        "request_id": getattr(record, "request_id", None) or request_id_var.get(),
        "user_id": user_id if user_id is not None else user_id_var.get(),
    }


class BookingContextFilter(logging.Filter):
    """Stamp the current action and user on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _context(record).items():
            setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update((k, v) for k, v in _context(record).items() if v is not None)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(getattr(record, "extra_fields", None) or {})
        log_data.update(
            (k, v) for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS
        )
        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Readable single-line format for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s [%(request_id)s user=%(user_id)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        context = _context(record)
        record.request_id = context["request_id"] or "-"
        record.user_id = context["user_id"] if context["user_id"] is not None else "-"
        return super().format(record)


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Configure the ``salon_booking`` logger once per process.

    Args:
        settings: Settings of the booking core being started (defaults to
            the global settings). Later calls return the configured logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    settings = settings or get_settings()
    level = getattr(logging, settings.log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(BookingContextFilter())
    handler.setFormatter(JSONFormatter() if settings.is_production else StandardFormatter())

    logger = logging.getLogger("salon_booking")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _logger = logger
    logger.info(
        f"Logging configured: level={settings.log_level}, "
        f"environment={settings.environment.value}"
    )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the ``salon_booking`` namespace."""
    if name:
        return logging.getLogger(f"salon_booking.{name}")
    return logging.getLogger("salon_booking")


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_user_id(user_id: Optional[int]) -> None:
    user_id_var.set(user_id)


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    **kwargs: Any,
) -> None:
    """Log an unexpected failure of a booking action.

    Booking errors add their code, HTTP status and details to the record.
    """
    extra_fields: Dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context or {},
    }
    if isinstance(error, BookingException):
        extra_fields.update(
            error_code=error.code,
            status_code=error.status_code,
            details=error.details,
        )
    extra_fields.update(kwargs)

    get_logger("error").error(
        f"{extra_fields['error_type']}: {error}",
        exc_info=True,
        extra={"extra_fields": extra_fields},
    )
