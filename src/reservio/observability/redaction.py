"""Redaction helpers for safe logging.

Customer names, phones, emails and Pix payloads never reach the logs.
Identifiers, amounts and dates do: they are what an operator needs to
follow a reservation through the booking, payment and sweep paths.
"""

import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# EMV "copia e cola" payloads start with the 000201 header
_PIX_PATTERN = re.compile(r"000201\d{2}\S+")

_REDACTED = "[REDACTED]"

_PLAIN_TYPES = (Decimal, datetime, date, time, UUID)

# Reservation columns safe to log verbatim
_RESERVATION_LOG_FIELDS = (
    "id",
    "merchant_id",
    "resource_id",
    "staff_id",
    "status",
    "booking_date",
    "start_time",
    "end_time",
    "total_amount",
    "deposit_amount",
    "deposit_expires_at",
)


def redact_string(value: str) -> str:
    """Replace Pix payloads, phone numbers and emails with a marker."""
    for pattern in (_PIX_PATTERN, _PHONE_PATTERN, _EMAIL_PATTERN):
        value = pattern.sub(_REDACTED, value)
    return value


def redact_value(value: Any) -> str:
    """Render a value for a log line without leaking customer data."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float) + _PLAIN_TYPES):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, Mapping):
        # structure only
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build an extra_fields dict where every value went through redact_value."""
    return {k: redact_value(v) for k, v in kwargs.items()}


def reservation_log_fields(reservation: Mapping[str, Any]) -> dict[str, str]:
    """Loggable subset of a reservation row (no customer columns)."""
    return {
        f"reservation_{key}" if key == "id" else key: redact_value(reservation[key])
        for key in _RESERVATION_LOG_FIELDS
        if key in reservation
    }
