"""JSON log lines tagged with the request and wizard session they belong to."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="")
SESSION_ID_CTX: ContextVar[str] = ContextVar("session_id", default="")

# Record attributes copied into the line when a call site passes them as extras.
WIZARD_EXTRAS = ("session_id", "slot", "step")
HTTP_EXTRAS = ("path", "method", "status_code")

# HTTP client libraries log every connection at DEBUG.
NOISY_LOGGERS = ("urllib3", "requests")


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record; request context fills gaps in the extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": CORRELATION_ID_CTX.get(),
        }
        for key in (*WIZARD_EXTRAS, *HTTP_EXTRAS):
            value = getattr(record, key, None)
            if value not in (None, ""):
                payload[key] = value
        if "session_id" not in payload and SESSION_ID_CTX.get():
            payload["session_id"] = SESSION_ID_CTX.get()

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route every logger through a single stdout JSON handler."""
    root_level = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(root_level)
    root_logger.addHandler(handler)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def set_correlation_id(correlation_id: str) -> None:
    CORRELATION_ID_CTX.set(correlation_id)


def set_session_id(session_id: str) -> None:
    """Tag the rest of the current request with a wizard session id."""
    SESSION_ID_CTX.set(session_id)
