"""
Structured logging for the MedGuard Interaction Engine.

Every record is stamped with the correlation id of the interaction check (or
HTTP request) it belongs to, so the fan-out of one check across normalizer,
checker and assessor tasks can be followed in the logs.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from medguard.config import get_settings

correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


def new_correlation_id() -> str:
    return uuid.uuid4().hex[:12]


def _structured_fields(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and value is not None
    }


class CorrelationIdFilter(logging.Filter):
    """Attach the active correlation id to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = correlation_id.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, `extra` fields promoted to top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_structured_fields(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        fields = _structured_fields(record)
        cid = fields.pop("correlation_id", None)

        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelname, "")
        prefix = f"{color}{stamp} {record.levelname:<8}{self.RESET}"
        if cid:
            prefix += f" <{cid}>"

        line = f"{prefix} {record.name}: {record.getMessage()}"
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging() -> None:
    """Install a single stdout handler on the root logger."""
    settings = get_settings()
    level = logging.DEBUG if settings.DEBUG else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(ConsoleFormatter() if settings.DEBUG else JSONFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with ``__name__``."""
    return logging.getLogger(name)
