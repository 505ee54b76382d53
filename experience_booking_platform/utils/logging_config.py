"""
Logging configuration for the Experience Booking Platform.

Every handler carries two filters: one stamping the current request ID on the
record and one masking guest emails and credential-like fields. Production
adds JSON output, a rotating file and a separate error file.
"""

import json
import logging
import logging.config
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..config import get_settings
from ..middleware.logging import request_id_var

MODULE = "experience_booking_platform.utils.logging_config"

ROTATE_BYTES = 10 * 1024 * 1024

# Third-party loggers routed through our handlers, with their floor level
LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
    "sqlalchemy.engine": "WARNING",
    "sqlalchemy.pool": "WARNING",
    "redis": "WARNING",
    "celery": "INFO",
}

FILTERS = ["request_id", "sensitive_data"]


def _stream_handler(level: str, formatter: str) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "stream": sys.stdout,
        "filters": FILTERS,
    }


def _file_handler(path: str, level: str, formatter: str, backups: int) -> Dict[str, Any]:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": formatter,
        "filename": path,
        "maxBytes": ROTATE_BYTES,
        "backupCount": backups,
        "filters": FILTERS,
    }


def _logger(level: str, handlers: Iterable[str]) -> Dict[str, Any]:
    return {"level": level, "handlers": list(handlers), "propagate": False}


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_json_logging: bool = False
) -> None:
    """
    Apply the logging configuration.

    Args:
        log_level: Level for the application loggers and the root logger
        log_file: Optional path of a rotating log file
        enable_json_logging: Emit one JSON object per record instead of text
    """
    settings = get_settings()
    formatter = "json" if enable_json_logging else "detailed"

    handlers = {"console": _stream_handler(log_level, formatter)}
    if log_file:
        handlers["file"] = _file_handler(log_file, log_level, formatter, backups=5)

    shared: List[str] = list(handlers)
    app_handlers = list(shared)

    if settings.environment == "production":
        error_file = log_file.replace(".log", "_errors.log") if log_file else "logs/errors.log"
        handlers["error_file"] = _file_handler(error_file, "ERROR", formatter, backups=10)
        app_handlers.append("error_file")

    loggers = {"experience_booking_platform": _logger(log_level, app_handlers)}
    for name, level in LIBRARY_LEVELS.items():
        loggers[name] = _logger(level, shared)

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s %(levelname)-8s %(name)s [%(request_id)s] %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "json": {"()": f"{MODULE}.JSONFormatter"},
        },
        "filters": {
            "request_id": {"()": f"{MODULE}.RequestIDFilter"},
            "sensitive_data": {"()": f"{MODULE}.SensitiveDataFilter"},
        },
        "handlers": handlers,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": shared},
    })


class RequestIDFilter(logging.Filter):
    """Stamp records with the ID of the request being served."""

    def filter(self, record):
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get()
        return True


class SensitiveDataFilter(logging.Filter):
    """Mask guest emails everywhere and values of credential-like keys in extras."""

    SENSITIVE_KEYS = ("password", "token", "secret", "authorization", "cookie", "api_key")

    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = self.mask_emails(record.msg)

        for key, value in list(record.__dict__.items()):
            if isinstance(value, dict):
                setattr(record, key, self.sanitize(value))
        return True

    def mask_emails(self, text: str) -> str:
        return self.EMAIL_PATTERN.sub("***EMAIL***", text)

    def sanitize(self, data):
        if isinstance(data, dict):
            return {
                key: "***MASKED***" if self._is_sensitive(key) else self.sanitize(value)
                for key, value in data.items()
            }
        if isinstance(data, str):
            return self.mask_emails(data)
        if isinstance(data, (list, tuple)):
            return type(data)(self.sanitize(item) for item in data)
        return data

    def _is_sensitive(self, key) -> bool:
        lowered = str(key).lower()
        return any(marker in lowered for marker in self.SENSITIVE_KEYS)


class JSONFormatter(logging.Formatter):
    """One JSON object per record; non-standard attributes land under "extra"."""

    STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
        "message", "asctime", "request_id",
    }

    def format(self, record):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {
            key: value for key, value in record.__dict__.items()
            if key not in self.STANDARD_ATTRS
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str, ensure_ascii=False)


business_logger = logging.getLogger("experience_booking_platform.business")


def log_business_event(event_type: str, details: Dict[str, Any], business_id: Optional[str] = None) -> None:
    """Record a committed booking change for auditing and analytics."""
    business_logger.info(
        f"Business event: {event_type}",
        extra={
            "event_type": event_type,
            "business_id": business_id,
            "details": details,
        }
    )
