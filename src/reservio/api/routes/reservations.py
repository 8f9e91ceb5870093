"""Reservation endpoints for the merchant dashboard.

Every route is scoped by ?merchant_id= and guarded by merchant RBAC:
viewer for reads, staff for actions.
"""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from reservio.api.errors import http_error
from reservio.api.rbac import MerchantRoleContext, require_merchant_role
from reservio.api.schemas import (
    ChangeStatusRequest,
    RescheduleRequest,
    serialize_reservation,
    serialize_retry,
)
from reservio.domain.errors import ReservationError
from reservio.domain.payments import refresh_payment_status, retry_payment
from reservio.domain.reservations import ACTOR_STAFF, ActorContext, change_status, reschedule
from reservio.domain.status import ALL_STATUSES
from reservio.infra.db import txn
from reservio.infra.repositories import reservations_repository
from reservio.observability.correlation import get_correlation_id
from reservio.observability.logging import get_logger
from reservio.observability.redaction import safe_log_context

router = APIRouter(prefix="/reservations", tags=["reservations"])

logger = get_logger(__name__)


def _staff_actor(ctx: MerchantRoleContext) -> ActorContext:
    return ActorContext(kind=ACTOR_STAFF, user_id=ctx.user.id)


@router.get("")
def list_reservations(
    ctx: MerchantRoleContext = Depends(require_merchant_role("viewer")),
    from_date: date | None = Query(None, alias="from", description="booking_date >= date"),
    to_date: date | None = Query(None, alias="to", description="booking_date <= date"),
    status: str | None = Query(None, description="Filter by status"),
) -> dict:
    """List reservations for a merchant. Requires viewer role or higher."""
    if status is not None and status not in ALL_STATUSES:
        raise HTTPException(status_code=422, detail="Unknown status filter")

    with txn(read_only=True) as cur:
        rows = reservations_repository.list_reservations(
            cur,
            merchant_id=ctx.merchant_id,
            from_date=from_date,
            to_date=to_date,
            status=status,
        )
    return {"reservations": [serialize_reservation(r) for r in rows]}


@router.get("/{reservation_id}")
def get_reservation(
    reservation_id: str = Path(..., description="Reservation UUID"),
    ctx: MerchantRoleContext = Depends(require_merchant_role("viewer")),
) -> dict:
    """Get one reservation. Requires viewer role or higher."""
    with txn(read_only=True) as cur:
        reservation = reservations_repository.get_reservation(
            cur, reservation_id, merchant_id=ctx.merchant_id
        )
    if reservation is None:
        raise HTTPException(status_code=404, detail="Reservation not found")
    return serialize_reservation(reservation)


@router.patch("/{reservation_id}/status")
def update_reservation_status(
    body: ChangeStatusRequest,
    reservation_id: str = Path(..., description="Reservation UUID"),
    ctx: MerchantRoleContext = Depends(require_merchant_role("staff")),
) -> dict:
    """Move a reservation through the state machine. Requires staff role.

    Cancelling reports the refund due; 409 for transitions the state machine
    does not allow.
    """
    try:
        result = change_status(
            reservation_id,
            body.status,
            _staff_actor(ctx),
            merchant_id=ctx.merchant_id,
            internal_notes=body.internal_notes,
            reason=body.reason,
        )
    except ReservationError as exc:
        raise http_error(exc) from exc

    logger.info(
        "dashboard status change",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                merchant_id=ctx.merchant_id,
                reservation_id_prefix=reservation_id[:8],
                status=body.status,
            )
        },
    )
    return result


@router.post("/{reservation_id}/actions/reschedule")
def reschedule_reservation(
    body: RescheduleRequest,
    reservation_id: str = Path(..., description="Reservation UUID"),
    ctx: MerchantRoleContext = Depends(require_merchant_role("staff")),
) -> dict:
    """Move a reservation to a new date/time/staff. Requires staff role."""
    try:
        updated = reschedule(
            reservation_id,
            body.booking_date,
            body.start_time,
            body.staff_id,
            actor=_staff_actor(ctx),
            merchant_id=ctx.merchant_id,
        )
    except ReservationError as exc:
        raise http_error(exc) from exc
    return serialize_reservation(updated)


@router.post("/{reservation_id}/actions/retry-payment")
def retry_reservation_payment(
    reservation_id: str = Path(..., description="Reservation UUID"),
    ctx: MerchantRoleContext = Depends(require_merchant_role("staff")),
) -> dict:
    """New deposit attempt. Requires staff role."""
    try:
        result = retry_payment(reservation_id, merchant_id=ctx.merchant_id)
    except ReservationError as exc:
        raise http_error(exc) from exc
    return serialize_retry(result)


@router.post("/{reservation_id}/actions/refresh-payment")
def refresh_reservation_payment(
    reservation_id: str = Path(..., description="Reservation UUID"),
    ctx: MerchantRoleContext = Depends(require_merchant_role("staff")),
) -> dict:
    """Poll the provider and reconcile the latest payment. Requires staff role."""
    try:
        return refresh_payment_status(reservation_id, merchant_id=ctx.merchant_id)
    except ReservationError as exc:
        raise http_error(exc) from exc
