"""Public availability lookups for the booking page.

Read-only: the answer is advisory and a later booking can still be refused
with 409 when someone else takes the slot first.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Path, Query

from reservio.api.errors import http_error
from reservio.domain.errors import ReservationError
from reservio.domain.reservations import query_availability

router = APIRouter(prefix="/public/resources", tags=["public"])


@router.get("/{resource_id}/availability")
def get_availability(
    resource_id: str = Path(..., description="Resource UUID"),
    merchant_id: str = Query(...),
    booking_date: date = Query(..., alias="date"),
    start_time: str | None = Query(None, description="Local time of day, HH:MM"),
    staff_id: str | None = Query(None),
) -> dict:
    """Whether a booking starting at start_time on date would fit.

    Omit start_time for full-day resources.
    """
    try:
        return query_availability(
            merchant_id,
            resource_id,
            booking_date,
            start_time,
            staff_id,
        )
    except ReservationError as exc:
        raise http_error(exc) from exc
