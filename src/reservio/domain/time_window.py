"""Booked window and buffer-padded conflict window arithmetic.

All values are minutes since midnight of the booking date. Values are kept
UNWRAPPED: a buffer may push the conflict window below 0 (into the previous
day) or above 1440 (into the next day). Overlap math always runs on the
unwrapped axis; only rendering wraps modulo 1440.

Overlap formula (half-open):  a.start < b.end AND a.end > b.start
Touching windows (a.end == b.start) do not overlap.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import time

MINUTES_PER_DAY = 1440

_HHMM = re.compile(r"^(\d{2}):(\d{2})(?::\d{2})?$")


def parse_hhmm(value: str) -> int:
    """Parse "HH:MM" (or "HH:MM:SS") into minutes since midnight.

    Raises:
        ValueError: If the string is not a valid time of day.
    """
    match = _HHMM.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid time of day: {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time of day: {value!r}")
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    """Render minutes as "HH:MM", wrapping negative/overflow values into 00:00-23:59."""
    wrapped = minutes % MINUTES_PER_DAY
    return f"{wrapped // 60:02d}:{wrapped % 60:02d}"


def to_minutes(value: str | time | int) -> int:
    """Normalize a time-of-day given as string, datetime.time or minutes."""
    if isinstance(value, int):
        return value
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    return parse_hhmm(value)


def to_time(minutes: int) -> time:
    """datetime.time for a (wrapped) minute value, for TIME columns."""
    wrapped = minutes % MINUTES_PER_DAY
    return time(wrapped // 60, wrapped % 60)


def overlaps(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
    """Half-open interval overlap test."""
    return a_start < b_end and a_end > b_start


def row_interval(start_time: time | None, end_time: time | None) -> tuple[int, int]:
    """Booked interval of a stored reservation on its own date's axis.

    A row without times is a full-day booking. A stored end that is not after
    the start wrapped past midnight and is extended into the next day.
    """
    if start_time is None:
        return 0, MINUTES_PER_DAY
    start = to_minutes(start_time)
    if end_time is None:
        return start, MINUTES_PER_DAY
    end = to_minutes(end_time)
    if end <= start:
        end += MINUTES_PER_DAY
    return start, end


@dataclass(frozen=True)
class TimeWindow:
    """A booked window plus its buffer-padded conflict window."""

    start: int
    booked_end: int
    conflict_start: int
    conflict_end: int
    full_day: bool = False

    @property
    def crosses_midnight(self) -> bool:
        """True when the conflict window spills into the previous or next day."""
        return self.conflict_start < 0 or self.conflict_end > MINUTES_PER_DAY

    def day_offsets(self) -> list[int]:
        """Calendar-day offsets (relative to the booking date) the conflict window touches.

        Example: 23:50-00:50 -> [0, 1]; -00:10-00:50 -> [-1, 0].
        """
        first = self.conflict_start // MINUTES_PER_DAY
        last = (max(self.conflict_end, self.conflict_start + 1) - 1) // MINUTES_PER_DAY
        return list(range(first, last + 1))

    @property
    def start_time(self) -> time | None:
        return None if self.full_day else to_time(self.start)

    @property
    def end_time(self) -> time | None:
        return None if self.full_day else to_time(self.booked_end)

    def render(self) -> dict[str, str | bool]:
        """HH:MM rendering; wrapped values are flagged, never truncated."""
        return {
            "start": format_hhmm(self.start),
            "end": format_hhmm(self.booked_end),
            "conflict_start": format_hhmm(self.conflict_start),
            "conflict_end": format_hhmm(self.conflict_end),
            "crosses_midnight": self.crosses_midnight,
        }


def compute_window(
    start: str | time | int,
    duration_minutes: int,
    buffer_before_minutes: int = 0,
    buffer_after_minutes: int = 0,
) -> TimeWindow:
    """Compute booked and conflict windows for a start time.

    bookedEnd = start + duration
    conflictStart = start - bufferBefore
    conflictEnd = bookedEnd + bufferAfter

    Raises:
        ValueError: On a malformed start time, non-positive duration or
            negative buffers.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")
    if buffer_before_minutes < 0 or buffer_after_minutes < 0:
        raise ValueError("buffers cannot be negative")

    start_min = to_minutes(start)
    booked_end = start_min + duration_minutes
    return TimeWindow(
        start=start_min,
        booked_end=booked_end,
        conflict_start=start_min - buffer_before_minutes,
        conflict_end=booked_end + buffer_after_minutes,
    )


def full_day_window() -> TimeWindow:
    """Window for bookings priced per day (no start time, no buffers)."""
    return TimeWindow(
        start=0,
        booked_end=MINUTES_PER_DAY,
        conflict_start=0,
        conflict_end=MINUTES_PER_DAY,
        full_day=True,
    )
