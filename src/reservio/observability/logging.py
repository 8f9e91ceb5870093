"""Structured JSON logging.

One JSON object per line on stdout, shaped for Cloud Logging: "severity"
is picked up as the entry level and "correlationId" ties together the
lines of one request or sweep run. Call sites pass structured data as
extra={"extra_fields": {...}}, already redacted.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .correlation import get_correlation_id

SERVICE_NAME = "reservio"

# Loggers too chatty at INFO for production
_QUIET_LOGGERS = ("uvicorn.access", "urllib3.connectionpool")


class JsonFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def _payload(self, record: logging.LogRecord) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "severity": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            payload["correlationId"] = correlation_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return payload

    def format(self, record: logging.LogRecord) -> str:
        payload = self._payload(record)
        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        return json.dumps(payload, default=str)


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    return handler


def configure_root_logging(level: str | None = None) -> None:
    """Send every logger, domain modules included, through JsonFormatter.

    Level comes from the argument, else LOG_LEVEL, else INFO. Calling it
    again only changes the level.
    """
    root = logging.getLogger()
    root.setLevel(level or os.environ.get("LOG_LEVEL", "INFO"))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if not any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        root.addHandler(_json_handler())


def get_logger(name: str) -> logging.Logger:
    """Logger with its own JSON handler, for API modules imported before
    configure_root_logging() runs."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.addHandler(_json_handler())
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger
