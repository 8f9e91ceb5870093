"""Typed failures raised by the reservation engine.

Routes translate these into HTTP status codes; nothing in the domain layer
retries on them.
"""

from __future__ import annotations


class ReservationError(Exception):
    """Base class for business failures surfaced to callers."""


class NotFoundError(ReservationError):
    """Reservation, resource, staff member or merchant does not exist."""


class ConflictError(ReservationError):
    """Requested window cannot be booked."""


class SlotUnavailableError(ConflictError):
    """Capacity for the window is exhausted (staff busy or resource full)."""

    def __init__(
        self,
        target_id: str,
        *,
        conflicting_reservation_ids: list[str] | None = None,
        message: str | None = None,
    ) -> None:
        self.target_id = target_id
        self.conflicting_reservation_ids = conflicting_reservation_ids or []
        super().__init__(message or "Selected date/time is not available")


class StaffBlockedError(ConflictError):
    """Staff member is blocked (vacation, day off, maintenance) for the window."""

    def __init__(self, staff_id: str, block_id: str) -> None:
        self.staff_id = staff_id
        self.block_id = block_id
        super().__init__("Staff member is unavailable for the selected time")


class BookingBusyError(ConflictError):
    """Serialization gate could not be acquired within the configured timeout."""


class InvalidTransitionError(ReservationError):
    """Status change not allowed by the booking state machine."""

    def __init__(self, source: str, target: str) -> None:
        self.source = source
        self.target = target
        super().__init__(f"Cannot change reservation status from '{source}' to '{target}'")


class InvalidArgumentError(ReservationError):
    """Business-rule violation (advance window, deadline, phone mismatch...)."""


class UpstreamPaymentError(ReservationError):
    """Payment gateway call failed or returned malformed data."""

    def __init__(self, message: str, *, reservation_id: str | None = None) -> None:
        self.reservation_id = reservation_id
        super().__init__(message)
