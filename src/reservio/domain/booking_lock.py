"""Serialization gate for booking creation and rescheduling.

Two requests for the same (resource-or-staff, date) must not both observe
"available" and both insert. Before the availability check runs, the
transaction takes pg_advisory_xact_lock on a 64-bit key derived from
"{id}:{date}". The lock is transaction-scoped: commit or rollback releases
it; there is no unlock call.

Waiting is bounded by lock_timeout (BOOKING_LOCK_TIMEOUT_MS, default 5000;
0 waits indefinitely). A timeout surfaces as BookingBusyError.

Keys are acquired in ascending order so that requests touching several
dates (cross-midnight windows) or both a staff member and a resource cannot
deadlock each other.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Iterable, Iterator

from psycopg2 import errors as pg_errors
from psycopg2.extensions import cursor as PgCursor

from reservio.domain.errors import BookingBusyError
from reservio.domain.time_window import TimeWindow
from reservio.infra.db import set_local
from reservio.infra.hashing import lock_key

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_MS = 5000


def lock_timeout_ms() -> int:
    raw = os.environ.get("BOOKING_LOCK_TIMEOUT_MS", "")
    return int(raw) if raw.isdigit() else DEFAULT_LOCK_TIMEOUT_MS


def booking_lock_key(target_id: str, booking_date: date) -> int:
    """Deterministic advisory lock key for (resource-or-staff, date)."""
    return lock_key(f"{target_id}:{booking_date.isoformat()}")


def window_dates(booking_date: date, window: TimeWindow) -> list[date]:
    """Calendar dates the conflict window touches."""
    return [booking_date + timedelta(days=offset) for offset in window.day_offsets()]


def acquire_booking_locks(
    cur: PgCursor,
    *,
    target_ids: Iterable[str],
    dates: Iterable[date],
    timeout_ms: int | None = None,
) -> list[int]:
    """Take transaction-scoped advisory locks for every (target, date) pair.

    Args:
        cur: Cursor inside the booking transaction.
        target_ids: Staff and/or resource identifiers.
        dates: Calendar dates touched by the window.
        timeout_ms: Override for BOOKING_LOCK_TIMEOUT_MS.

    Returns:
        The acquired keys, in acquisition order.

    Raises:
        psycopg2.errors.LockNotAvailable: When the wait exceeds the timeout
            (translated by booking_gate()).
    """
    date_list = list(dates)
    keys = sorted({booking_lock_key(t, d) for t in target_ids for d in date_list})

    timeout = lock_timeout_ms() if timeout_ms is None else timeout_ms
    if timeout > 0:
        set_local(cur, "lock_timeout", f"{timeout}ms")

    for key in keys:
        cur.execute("SELECT pg_advisory_xact_lock(%s)", (key,))

    return keys


@contextmanager
def booking_gate(
    cur: PgCursor,
    *,
    target_ids: Iterable[str],
    dates: Iterable[date],
    timeout_ms: int | None = None,
) -> Iterator[list[int]]:
    """Hold the serialization gate for the rest of the transaction.

    Lock waits inside the block (the gate itself, or a row lock taken while
    holding it) that exceed lock_timeout, or that Postgres aborts as a
    deadlock, become BookingBusyError.
    Leaving the block does NOT release the locks; the enclosing txn() does.
    """
    targets = [t for t in target_ids if t]
    try:
        keys = acquire_booking_locks(cur, target_ids=targets, dates=dates, timeout_ms=timeout_ms)
        yield keys
    except (pg_errors.LockNotAvailable, pg_errors.DeadlockDetected) as exc:
        logger.warning(
            "booking gate wait aborted",
            extra={"extra_fields": {"targets": targets, "reason": type(exc).__name__}},
        )
        raise BookingBusyError(
            "Another booking for this time is being processed, please try again"
        ) from exc
