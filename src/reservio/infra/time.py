"""Time utilities for consistent timestamp handling."""

import os
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "America/Sao_Paulo"


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def default_timezone() -> str:
    """Merchant timezone used when the merchant row has none."""
    return os.environ.get("DEFAULT_MERCHANT_TIMEZONE", DEFAULT_TIMEZONE)


def local_instant(
    booking_date: date,
    minute_of_day: int,
    tz_name: str,
) -> datetime:
    """Turn a calendar date plus minutes-since-midnight into an aware instant.

    minute_of_day may be negative or >= 1440 (buffer spill-over); the
    result then lands on the previous/next calendar day.
    """
    midnight = datetime.combine(booking_date, time(0, 0), tzinfo=ZoneInfo(tz_name))
    return midnight + timedelta(minutes=minute_of_day)


def local_today(tz_name: str, now: datetime | None = None) -> date:
    """Calendar date "today" as seen by a merchant in tz_name."""
    current = now or utc_now()
    return current.astimezone(ZoneInfo(tz_name)).date()
