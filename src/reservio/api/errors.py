"""Domain failure -> HTTP status mapping shared by routes."""

from __future__ import annotations

from fastapi import HTTPException

from reservio.domain.errors import (
    ConflictError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    ReservationError,
    UpstreamPaymentError,
)

_STATUS_BY_ERROR: list[tuple[type[ReservationError], int]] = [
    (NotFoundError, 404),
    (ConflictError, 409),
    (InvalidTransitionError, 409),
    (InvalidArgumentError, 422),
    (UpstreamPaymentError, 502),
]


def http_error(exc: ReservationError) -> HTTPException:
    """HTTPException carrying the domain message as detail."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            detail: str | dict = str(exc)
            if isinstance(exc, UpstreamPaymentError) and exc.reservation_id:
                detail = {"message": str(exc), "reservation_id": exc.reservation_id}
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=400, detail=str(exc))
