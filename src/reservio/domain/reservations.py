"""Reservation lifecycle - creation, status changes and rescheduling.

Creation and rescheduling follow the same pipeline inside one transaction:

    booking_gate (advisory locks, sorted)
      -> availability (overlapping rows, capacity)
      -> staff block veto
      -> insert / update

The deposit charge is made after commit, outside the gate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from reservio.domain.availability import (
    assert_slot_available,
    assert_staff_not_blocked,
    check_availability,
    requested_window,
)
from reservio.domain.booking_lock import booking_gate, window_dates
from reservio.domain.cancellation import RefundInfo, calculate_refund, hours_until, phone_matches
from reservio.domain.deposit import compute_deposit, round2
from reservio.domain.errors import InvalidArgumentError, NotFoundError, StaffBlockedError
from reservio.domain.payments import create_deposit_payment
from reservio.domain.status import (
    CANCELLED,
    CONFIRMED,
    PENDING_PAYMENT,
    REFUNDABLE_SOURCES,
    assert_transition,
    initial_status,
)
from reservio.domain.time_window import TimeWindow, to_minutes
from reservio.infra.db import txn
from reservio.infra.merchant_settings import MerchantSettings, get_merchant_settings
from reservio.infra.repositories.catalog_repository import Resource, get_resource, staff_exists
from reservio.infra.repositories.payments_repository import expire_pending_payments
from reservio.infra.repositories.reservations_repository import (
    get_reservation,
    insert_reservation,
    insert_status_log,
    update_schedule,
    update_status,
)
from reservio.infra.time import local_instant, local_today, utc_now
from reservio.observability.redaction import reservation_log_fields
from reservio.payments.gateway import PaymentGateway

logger = logging.getLogger(__name__)

ACTOR_STAFF = "staff"
ACTOR_CUSTOMER = "customer"

RESCHEDULABLE_STATUSES = frozenset({PENDING_PAYMENT, CONFIRMED})


@dataclass(frozen=True)
class ReservationInput:
    """Validated booking request."""

    merchant_id: str
    resource_id: str
    booking_date: date
    customer_name: str
    customer_phone: str
    start_time: str | None = None
    staff_id: str | None = None
    customer_email: str | None = None
    people_count: int = 1
    notes: str | None = None


@dataclass(frozen=True)
class ActorContext:
    """Who is asking for a change.

    Customers identify themselves by phone; staff by user id.
    """

    kind: str = ACTOR_STAFF
    user_id: str | None = None
    phone: str | None = None

    @property
    def label(self) -> str:
        if self.kind == ACTOR_STAFF and self.user_id:
            return f"staff:{self.user_id}"
        return self.kind

    @property
    def is_customer(self) -> bool:
        return self.kind == ACTOR_CUSTOMER


def scheduled_instant(
    booking_date: date,
    start_time,
    tz_name: str,
) -> datetime:
    """Start instant of a reservation; full-day bookings start at local midnight."""
    minute = to_minutes(start_time) if start_time is not None else 0
    return local_instant(booking_date, minute, tz_name)


def _assert_bookable_time(
    booking_date: date,
    window: TimeWindow,
    settings: MerchantSettings,
    now: datetime,
) -> None:
    """Reject past bookings and starts inside the minimum advance window."""
    if window.full_day:
        if booking_date < local_today(settings.timezone, now):
            raise InvalidArgumentError("Cannot book a date in the past")
        return

    starts_at = local_instant(booking_date, window.start, settings.timezone)
    earliest = now + timedelta(minutes=settings.min_advance_minutes)
    if starts_at < earliest:
        if settings.min_advance_minutes:
            raise InvalidArgumentError(
                f"Bookings must be made at least {settings.min_advance_minutes} minutes in advance"
            )
        raise InvalidArgumentError("Cannot book a time in the past")


def _load_settings(cur, merchant_id: str) -> MerchantSettings:
    settings = get_merchant_settings(cur, merchant_id)
    if settings is None:
        raise NotFoundError("Merchant not found")
    return settings


def _load_resource(cur, merchant_id: str, resource_id: str) -> Resource:
    resource = get_resource(cur, merchant_id=merchant_id, resource_id=resource_id)
    if resource is None:
        raise NotFoundError("Resource not found")
    return resource


def _gate_and_check(
    cur,
    *,
    resource_id: str,
    staff_id: str | None,
    booking_date: date,
    window: TimeWindow,
    tz_name: str,
    exclude_reservation_id: str | None = None,
) -> dict[str, Any] | None:
    """Gate the window and run the conflict checks.

    When rescheduling (exclude_reservation_id set) the own row is re-read
    under its lock before the gate block ends, and returned.
    """
    with booking_gate(
        cur,
        target_ids=[resource_id, staff_id],
        dates=window_dates(booking_date, window),
    ):
        assert_slot_available(
            cur,
            resource_id=resource_id,
            staff_id=staff_id,
            booking_date=booking_date,
            window=window,
            exclude_reservation_id=exclude_reservation_id,
        )
        assert_staff_not_blocked(
            cur,
            staff_id=staff_id,
            booking_date=booking_date,
            window=window,
            tz_name=tz_name,
        )
        if exclude_reservation_id is not None:
            return get_reservation(cur, exclude_reservation_id, lock=True)
    return None


def create_reservation(
    data: ReservationInput,
    *,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Book a slot.

    This function:
    1. Loads merchant settings, the resource and (optionally) the staff member
    2. Computes the booked/conflict window and validates advance rules
    3. Computes total and deposit
    4. Under the booking gate: checks availability and staff blocks, inserts
    5. After commit, charges the deposit when one is due

    Args:
        data: Validated booking request.
        gateway: Override for gateway selection (tests).
        now: Override for the current instant (tests).

    Returns:
        Dict with id, status, deposit_amount, total_amount, window and
        payment (None when no deposit is due).

    Raises:
        NotFoundError: Merchant, resource or staff member missing.
        InvalidArgumentError: Malformed start, past booking or inside the
            minimum advance window, or more people than the
            resource admits.
        ConflictError: Slot unavailable, staff blocked or gate busy.
        UpstreamPaymentError: Reservation was created but the deposit charge
            failed (carries reservation_id; use retry_payment).
    """
    current_time = now or utc_now()

    with txn() as cur:
        settings = _load_settings(cur, data.merchant_id)
        resource = _load_resource(cur, data.merchant_id, data.resource_id)
        if not resource.admits(data.people_count):
            raise InvalidArgumentError(
                f"People count exceeds resource capacity ({resource.max_people})"
            )
        if data.staff_id is not None and not staff_exists(
            cur, merchant_id=data.merchant_id, staff_id=data.staff_id
        ):
            raise NotFoundError("Staff member not found")

        try:
            window = requested_window(resource, data.start_time)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        _assert_bookable_time(data.booking_date, window, settings, current_time)

        total_amount = round2(resource.price)
        deposit_amount = compute_deposit(total_amount, resource.deposit_rule, settings.deposit_rule)
        status = initial_status(deposit_amount)
        deposit_expires_at = (
            current_time + timedelta(minutes=settings.deposit_deadline_minutes)
            if status == PENDING_PAYMENT
            else None
        )

        _gate_and_check(
            cur,
            resource_id=data.resource_id,
            staff_id=data.staff_id,
            booking_date=data.booking_date,
            window=window,
            tz_name=settings.timezone,
        )

        reservation_id = insert_reservation(
            cur,
            merchant_id=data.merchant_id,
            resource_id=data.resource_id,
            staff_id=data.staff_id,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            customer_email=data.customer_email,
            booking_date=data.booking_date,
            start_time=window.start_time,
            end_time=window.end_time,
            status=status,
            total_amount=total_amount,
            deposit_amount=deposit_amount,
            deposit_expires_at=deposit_expires_at,
            notes=data.notes,
            people_count=data.people_count,
        )
        insert_status_log(
            cur,
            reservation_id=reservation_id,
            from_status=None,
            to_status=status,
            actor=ACTOR_CUSTOMER,
            reason="created",
        )

    logger.info(
        "reservation created",
        extra={
            "extra_fields": {
                "reservation_id": reservation_id,
                "merchant_id": data.merchant_id,
                "resource_id": data.resource_id,
                "staff_id": data.staff_id,
                "status": status,
                "deposit_amount": str(deposit_amount),
                "crosses_midnight": window.crosses_midnight,
            },
        },
    )

    payment = None
    if status == PENDING_PAYMENT:
        reservation = {
            "id": reservation_id,
            "merchant_id": data.merchant_id,
            "deposit_amount": deposit_amount,
            "customer_name": data.customer_name,
            "customer_phone": data.customer_phone,
            "customer_email": data.customer_email,
        }
        payment = create_deposit_payment(reservation, settings, gateway=gateway, attempt=1)

    return {
        "id": reservation_id,
        "status": status,
        "deposit_amount": deposit_amount,
        "total_amount": total_amount,
        "deposit_expires_at": deposit_expires_at,
        "window": window.render(),
        "payment": payment,
    }

def query_availability(
    merchant_id: str,
    resource_id: str,
    booking_date: date,
    start_time: str | None = None,
    staff_id: str | None = None,
) -> dict[str, Any]:
    """Answer "can this slot be booked right now?" without booking it.

    Runs the same capacity and staff-block checks as create_reservation in
    a read-only transaction. No gate is taken, so the answer may be stale
    by the time the customer books; create_reservation decides.

    Returns:
        Dict with available, capacity, booked (overlapping active
        reservations), staff_blocked and window.

    Raises:
        NotFoundError: Merchant, resource or staff member missing.
        InvalidArgumentError: Malformed start time.
    """
    with txn(read_only=True) as cur:
        settings = _load_settings(cur, merchant_id)
        resource = _load_resource(cur, merchant_id, resource_id)
        if staff_id is not None and not staff_exists(
            cur, merchant_id=merchant_id, staff_id=staff_id
        ):
            raise NotFoundError("Staff member not found")

        try:
            window = requested_window(resource, start_time)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e

        result = check_availability(
            cur,
            resource_id=resource_id,
            staff_id=staff_id,
            booking_date=booking_date,
            window=window,
            lock=False,
        )
        staff_blocked = False
        if result.available:
            try:
                assert_staff_not_blocked(
                    cur,
                    staff_id=staff_id,
                    booking_date=booking_date,
                    window=window,
                    tz_name=settings.timezone,
                )
            except StaffBlockedError:
                staff_blocked = True

    return {
        "available": result.available and not staff_blocked,
        "capacity": result.capacity,
        "booked": len(result.conflicting_ids),
        "staff_blocked": staff_blocked,
        "window": window.render(),
    }



def change_status(
    reservation_id: str,
    target_status: str,
    actor: ActorContext,
    *,
    merchant_id: str | None = None,
    internal_notes: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Move a reservation through the booking state machine.

    Customers may only cancel, and only with the phone number on file.
    Cancelling from pending_payment or confirmed reports the refund due under
    the merchant's cancellation policy; no money is moved here.

    Returns:
        {"ok": True, "status": target_status, "refund": dict | None}

    Raises:
        NotFoundError: Reservation missing (or outside merchant_id).
        InvalidArgumentError: Customer not allowed to make this change.
        InvalidTransitionError: Transition not in the state machine.
    """
    with txn() as cur:
        reservation = get_reservation(cur, reservation_id, merchant_id=merchant_id, lock=True)
        if reservation is None:
            raise NotFoundError("Reservation not found")

        if actor.is_customer:
            if target_status != CANCELLED:
                raise InvalidArgumentError("Customers can only cancel reservations")
            if not phone_matches(actor.phone, reservation["customer_phone"]):
                raise InvalidArgumentError("Phone number does not match the reservation")

        source = reservation["status"]
        assert_transition(source, target_status)

        refund: RefundInfo | None = None
        if target_status == CANCELLED:
            if source in REFUNDABLE_SOURCES:
                settings = _load_settings(cur, reservation["merchant_id"])
                refund = calculate_refund(
                    reservation["deposit_amount"],
                    scheduled_instant(
                        reservation["booking_date"],
                        reservation["start_time"],
                        settings.timezone,
                    ),
                    settings.cancellation_policy,
                    now=now,
                )
            expire_pending_payments(cur, reservation_id)

        update_status(cur, reservation_id, status=target_status, internal_notes=internal_notes)
        insert_status_log(
            cur,
            reservation_id=reservation_id,
            from_status=source,
            to_status=target_status,
            actor=actor.label,
            reason=reason,
        )

    logger.info(
        "reservation status changed",
        extra={
            "extra_fields": {
                **reservation_log_fields(reservation),
                "from_status": source,
                "to_status": target_status,
                "actor": actor.kind,
                "refund_amount": str(refund.refund_amount) if refund else None,
            },
        },
    )

    return {
        "ok": True,
        "status": target_status,
        "refund": refund.as_dict() if refund else None,
    }


def _assert_reschedulable(
    reservation: dict[str, Any],
    actor: ActorContext,
    settings: MerchantSettings,
    now: datetime,
) -> None:
    if reservation["status"] not in RESCHEDULABLE_STATUSES:
        raise InvalidArgumentError(
            f"Reservation in status '{reservation['status']}' cannot be rescheduled"
        )
    if not actor.is_customer:
        return

    if not phone_matches(actor.phone, reservation["customer_phone"]):
        raise InvalidArgumentError("Phone number does not match the reservation")
    current_start = scheduled_instant(
        reservation["booking_date"], reservation["start_time"], settings.timezone
    )
    if hours_until(current_start, now) < settings.cancellation_deadline_hours:
        raise InvalidArgumentError(
            f"Reservations can only be rescheduled up to "
            f"{settings.cancellation_deadline_hours} hours in advance"
        )


def reschedule(
    reservation_id: str,
    new_date: date,
    new_start: str | None = None,
    new_staff_id: str | None = None,
    *,
    actor: ActorContext | None = None,
    merchant_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Move a pending or confirmed reservation to a new date/time/staff.

    Re-runs the full conflict pipeline for the new window, excluding the
    reservation's own row. Customers must supply the phone on file and can
    no longer reschedule once inside the cancellation deadline.

    Returns:
        The updated reservation dict.

    Raises:
        NotFoundError: Reservation, resource or new staff member missing.
        InvalidArgumentError: Wrong status, advance rule, deadline or phone.
        ConflictError: New slot unavailable, staff blocked or gate busy.
    """
    actor = actor or ActorContext()
    current_time = now or utc_now()

    with txn() as cur:
        reservation = get_reservation(cur, reservation_id, merchant_id=merchant_id)
        if reservation is None:
            raise NotFoundError("Reservation not found")

        settings = _load_settings(cur, reservation["merchant_id"])
        _assert_reschedulable(reservation, actor, settings, current_time)
        resource = _load_resource(cur, reservation["merchant_id"], reservation["resource_id"])

        staff_id = new_staff_id or reservation["staff_id"]
        if new_staff_id is not None and not staff_exists(
            cur, merchant_id=reservation["merchant_id"], staff_id=new_staff_id
        ):
            raise NotFoundError("Staff member not found")

        if new_start is None and not resource.is_full_day and reservation["start_time"] is not None:
            new_start = reservation["start_time"]
        try:
            window = requested_window(resource, new_start)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        _assert_bookable_time(new_date, window, settings, current_time)

        # Own row re-read under its lock; status may have moved while we waited
        reservation = _gate_and_check(
            cur,
            resource_id=reservation["resource_id"],
            staff_id=staff_id,
            booking_date=new_date,
            window=window,
            tz_name=settings.timezone,
            exclude_reservation_id=reservation_id,
        )
        _assert_reschedulable(reservation, actor, settings, current_time)

        update_schedule(
            cur,
            reservation_id,
            booking_date=new_date,
            start_time=window.start_time,
            end_time=window.end_time,
            staff_id=staff_id,
        )
        updated = get_reservation(cur, reservation_id)

    logger.info(
        "reservation rescheduled",
        extra={
            "extra_fields": {
                "reservation_id": reservation_id,
                "booking_date": new_date.isoformat(),
                "window": window.render(),
                "actor": actor.kind,
            },
        },
    )
    return updated
