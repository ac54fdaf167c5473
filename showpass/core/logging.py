"""
Root logging setup. Records carry booking, payment and payout identifiers as
``extra`` fields so one order or transfer can be followed across modules.
"""
import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from showpass.core.config import settings

# Identifiers passed through ``extra={...}`` by the services and routers
EXTRA_FIELDS = (
    "booking_id", "purchase_id", "order_id", "gateway",
    "withdrawal_id", "transfer_id", "event",
)


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in EXTRA_FIELDS if getattr(record, name, None) is not None}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(record_extras(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs, identifiers appended as key=value."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = record_extras(record)
        if extras:
            line += " [" + " ".join(f"{k}={v}" for k, v in extras.items()) + "]"
        return line


def build_formatter(fmt: Optional[str] = None) -> logging.Formatter:
    fmt = (fmt or settings.LOG_FORMAT).lower()
    if fmt == "text":
        return TextFormatter()
    if fmt != "json":
        raise ValueError(f"Unknown LOG_FORMAT {fmt!r}; use json or text")
    return JsonFormatter()


def configure_logging(fmt: Optional[str] = None, log_file: Optional[str] = None) -> None:
    formatter = build_formatter(fmt)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handlers = [handler]
    log_file = log_file if log_file is not None else settings.LOG_FILE
    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers = handlers
    # httpx logs every provider call at INFO, including URLs with ids
    logging.getLogger("httpx").setLevel(logging.WARNING)
