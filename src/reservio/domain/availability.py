"""Availability resolver.

Decides whether a candidate conflict window can be booked:

- staff_id present: per-staff exclusivity. Available iff no active
  reservation of that staff member overlaps the window.
- staff_id absent: per-resource concurrency. Available iff the number of
  overlapping active reservations is strictly below max_concurrent_bookings.
- Staff blocks (vacation, day off...) veto availability independently.

The new request's CONFLICT window (buffers included) is compared against
each existing reservation's BOOKED window [start, end). Rows from the
previous/next calendar day are mapped onto the booking date's minute axis,
so cross-midnight windows are checked, not truncated.

Booking paths run it inside the transaction holding the booking gate;
availability lookups run it read-only without the gate. Candidate rows
are read without row locks: every path that adds occupancy takes the gate
for the same keys, and row locks taken here would invert the gate-then-row
order of reschedules and retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, time, timedelta

from psycopg2.extensions import cursor as PgCursor

from reservio.domain.booking_lock import window_dates
from reservio.domain.errors import SlotUnavailableError, StaffBlockedError
from reservio.domain.status import ACTIVE_STATUSES
from reservio.domain.time_window import (
    MINUTES_PER_DAY,
    TimeWindow,
    compute_window,
    full_day_window,
    overlaps,
    row_interval,
)
from reservio.infra.repositories.catalog_repository import (
    Resource,
    find_staff_block,
    get_max_concurrent_bookings,
)
from reservio.infra.repositories.reservations_repository import list_overlap_candidates
from reservio.infra.time import local_instant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of a capacity check."""

    available: bool
    capacity: int
    conflicting_ids: tuple[str, ...]


def requested_window(resource: Resource, start: str | time | None) -> TimeWindow:
    """Window for a new booking of resource starting at start.

    Full-day resources (or requests without a start) occupy the whole day
    and carry no buffers.
    """
    if resource.is_full_day or start is None:
        return full_day_window()
    return compute_window(
        start,
        resource.duration_minutes,
        resource.buffer_before_minutes,
        resource.buffer_after_minutes,
    )


def stored_window(resource: Resource, start_time: time | None, end_time: time | None) -> TimeWindow:
    """Window of an existing reservation row, buffers taken from its resource."""
    if start_time is None:
        return full_day_window()
    start, end = row_interval(start_time, end_time)
    return compute_window(
        start,
        end - start,
        resource.buffer_before_minutes,
        resource.buffer_after_minutes,
    )


def candidate_dates(booking_date: date, window: TimeWindow) -> list[date]:
    """Dates whose reservations can reach into the window.

    Includes the day before the earliest touched date: a booking there may
    run past midnight.
    """
    touched = window_dates(booking_date, window)
    return [touched[0] - timedelta(days=1), *touched]


def overlapping_ids(
    candidates: list[tuple[str, date, object, object]],
    booking_date: date,
    window: TimeWindow,
) -> list[str]:
    """Filter candidate rows down to those overlapping the conflict window."""
    result = []
    for reservation_id, row_date, start_time, end_time in candidates:
        offset = (row_date - booking_date).days * MINUTES_PER_DAY
        row_start, row_end = row_interval(start_time, end_time)
        if overlaps(
            window.conflict_start,
            window.conflict_end,
            row_start + offset,
            row_end + offset,
        ):
            result.append(reservation_id)
    return result


def check_availability(
    cur: PgCursor,
    *,
    resource_id: str,
    staff_id: str | None,
    booking_date: date,
    window: TimeWindow,
    exclude_reservation_id: str | None = None,
    lock: bool = False,
) -> AvailabilityResult:
    """Evaluate capacity for the window.

    Args:
        cur: Cursor inside the gated transaction.
        resource_id: Bookable resource.
        staff_id: Staff member (switches to per-staff exclusivity).
        booking_date: Calendar date of the booking.
        window: Booked + conflict window.
        exclude_reservation_id: Own row when rescheduling.
        lock: Lock candidate rows FOR UPDATE (off by default).

    Returns:
        AvailabilityResult.
    """
    dates = candidate_dates(booking_date, window)

    if staff_id is not None:
        capacity = 1
        candidates = list_overlap_candidates(
            cur,
            staff_id=staff_id,
            dates=dates,
            active_statuses=ACTIVE_STATUSES,
            exclude_reservation_id=exclude_reservation_id,
            lock=lock,
        )
    else:
        capacity = get_max_concurrent_bookings(cur, resource_id)
        candidates = list_overlap_candidates(
            cur,
            resource_id=resource_id,
            dates=dates,
            active_statuses=ACTIVE_STATUSES,
            exclude_reservation_id=exclude_reservation_id,
            lock=lock,
        )

    conflicting = overlapping_ids(candidates, booking_date, window)
    return AvailabilityResult(
        available=len(conflicting) < capacity,
        capacity=capacity,
        conflicting_ids=tuple(conflicting),
    )


def assert_slot_available(
    cur: PgCursor,
    *,
    resource_id: str,
    staff_id: str | None,
    booking_date: date,
    window: TimeWindow,
    exclude_reservation_id: str | None = None,
) -> None:
    """Raise SlotUnavailableError if capacity is exhausted for the window."""
    result = check_availability(
        cur,
        resource_id=resource_id,
        staff_id=staff_id,
        booking_date=booking_date,
        window=window,
        exclude_reservation_id=exclude_reservation_id,
    )
    if result.available:
        return

    target_id = staff_id or resource_id
    logger.warning(
        "slot conflict detected",
        extra={
            "extra_fields": {
                "resource_id": resource_id,
                "staff_id": staff_id,
                "booking_date": booking_date.isoformat(),
                "window": window.render(),
                "capacity": result.capacity,
                "conflicting_reservation_ids": list(result.conflicting_ids),
            },
        },
    )
    raise SlotUnavailableError(
        target_id,
        conflicting_reservation_ids=list(result.conflicting_ids),
    )


def assert_staff_not_blocked(
    cur: PgCursor,
    *,
    staff_id: str | None,
    booking_date: date,
    window: TimeWindow,
    tz_name: str,
) -> None:
    """Raise StaffBlockedError if a staff block overlaps the conflict window."""
    if staff_id is None:
        return

    block_id = find_staff_block(
        cur,
        staff_id=staff_id,
        starts_at=local_instant(booking_date, window.conflict_start, tz_name),
        ends_at=local_instant(booking_date, window.conflict_end, tz_name),
    )
    if block_id is not None:
        logger.info(
            "staff block vetoed booking",
            extra={"extra_fields": {"staff_id": staff_id, "block_id": block_id}},
        )
        raise StaffBlockedError(staff_id, block_id)
