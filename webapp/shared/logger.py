"""
Structured logging for the webapp service.

Every record is rendered as a single JSON object so the output can be shipped
as-is to CloudWatch (or any log collector) and filtered by field. Development
mode switches the console to a plain text format.

Extra fields are passed with the standard ``extra=`` mechanism, e.g.::

    logger.info("File uploaded", extra={"action": "upload", "metadata": {...}})
"""

import json
import logging
import logging.config
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from webapp.shared.config import Settings

SERVICE_NAME = "webapp"

# Optional attributes copied from the LogRecord when present
_EXTRA_FIELDS = ("action", "method", "path", "status_code", "duration_ms", "metadata")


class StructuredFormatter(logging.Formatter):
    """JSON formatter producing one searchable line per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "component": record.name,
            "message": record.getMessage(),
        }
        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                entry[field] = getattr(record, field)

        if record.levelno >= logging.ERROR and record.exc_info:
            exc_type, exc, _ = record.exc_info
            entry["error"] = {
                "type": exc_type.__name__ if exc_type else "Unknown",
                "message": str(exc) if exc else "",
                "traceback": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(entry, default=str, separators=(",", ":"))


def get_logging_config(settings: Settings) -> dict[str, Any]:
    level = settings.log_level
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "simple" if settings.ENV == "development" else "structured",
            "stream": "ext://sys.stdout",
        },
    }

    if settings.LOG_DIR:
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["application_file"] = {
            "class": "logging.FileHandler",
            "level": level,
            "formatter": "structured",
            "filename": str(log_dir / "application.log"),
        }
        handlers["error_file"] = {
            "class": "logging.FileHandler",
            "level": "ERROR",
            "formatter": "structured",
            "filename": str(log_dir / "error.log"),
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {"()": StructuredFormatter},
            "simple": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
        },
        "handlers": handlers,
        "loggers": {
            SERVICE_NAME: {
                "level": level,
                "handlers": list(handlers),
                "propagate": False,
            },
            # AWS client libraries are chatty at INFO/DEBUG
            "boto3": {"level": "WARNING"},
            "botocore": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        },
    }


def setup_logging(settings: Settings) -> None:
    logging.config.dictConfig(get_logging_config(settings))


def get_logger(name: str | None = None) -> logging.Logger:
    if not name:
        return logging.getLogger(SERVICE_NAME)
    return logging.getLogger(f"{SERVICE_NAME}.{name}")
