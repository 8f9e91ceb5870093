"""Public booking endpoints used by the customer-facing booking page.

No dashboard auth: customers identify themselves with the phone number on
the reservation for every follow-up action.
"""

from __future__ import annotations

from fastapi import APIRouter, Path

from reservio.api.errors import http_error
from reservio.api.schemas import (
    CreateReservationRequest,
    CustomerCancelRequest,
    CustomerIdentity,
    CustomerRescheduleRequest,
    serialize_created,
    serialize_reservation,
    serialize_retry,
)
from reservio.domain.errors import ReservationError, UpstreamPaymentError
from reservio.domain.payments import retry_payment
from reservio.domain.reservations import (
    ACTOR_CUSTOMER,
    ActorContext,
    ReservationInput,
    change_status,
    reschedule,
)
from reservio.domain.reservations import create_reservation as create_reservation_op
from reservio.domain.status import CANCELLED
from reservio.observability.correlation import get_correlation_id
from reservio.observability.logging import get_logger
from reservio.observability.redaction import safe_log_context

router = APIRouter(prefix="/public/reservations", tags=["public"])

logger = get_logger(__name__)


@router.post("", status_code=201)
def create_reservation(body: CreateReservationRequest) -> dict:
    """Book a slot.

    Returns 201 with the reservation and, when a deposit is due, the PIX
    payment data. A failed deposit charge returns 502 with the
    reservation_id so the client can call retry-payment.
    """
    correlation_id = get_correlation_id()
    data = ReservationInput(**body.model_dump())

    try:
        result = create_reservation_op(data)
    except UpstreamPaymentError as exc:
        logger.warning(
            "reservation created but deposit charge failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    reservation_id_prefix=(exc.reservation_id or "")[:8],
                )
            },
        )
        raise http_error(exc) from exc
    except ReservationError as exc:
        raise http_error(exc) from exc

    logger.info(
        "public reservation created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                merchant_id=body.merchant_id,
                status=result["status"],
            )
        },
    )
    return serialize_created(result)


@router.post("/{reservation_id}/cancel")
def cancel_reservation(
    body: CustomerCancelRequest,
    reservation_id: str = Path(..., description="Reservation UUID"),
) -> dict:
    """Customer cancellation; reports the refund due under the merchant policy."""
    actor = ActorContext(kind=ACTOR_CUSTOMER, phone=body.phone)
    try:
        return change_status(reservation_id, CANCELLED, actor, reason=body.reason)
    except ReservationError as exc:
        raise http_error(exc) from exc


@router.post("/{reservation_id}/reschedule")
def reschedule_reservation(
    body: CustomerRescheduleRequest,
    reservation_id: str = Path(..., description="Reservation UUID"),
) -> dict:
    """Customer reschedule; refused once inside the cancellation deadline."""
    actor = ActorContext(kind=ACTOR_CUSTOMER, phone=body.phone)
    try:
        updated = reschedule(
            reservation_id,
            body.booking_date,
            body.start_time,
            body.staff_id,
            actor=actor,
        )
    except ReservationError as exc:
        raise http_error(exc) from exc

    return serialize_reservation(updated, include_internal=False)


@router.post("/{reservation_id}/retry-payment")
def retry_reservation_payment(
    body: CustomerIdentity,
    reservation_id: str = Path(..., description="Reservation UUID"),
) -> dict:
    """New deposit attempt for a pending or cancelled reservation."""
    try:
        result = retry_payment(reservation_id, customer_phone=body.phone)
    except ReservationError as exc:
        raise http_error(exc) from exc
    return serialize_retry(result)
