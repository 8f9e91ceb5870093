"""Payment orchestrator - deposit charges, retries and reconciliation.

Provider calls never run while the booking gate or row locks are held: the
reservation is committed first, then the gateway is called, then the
resulting payment row is stored in a short second transaction.

Reconciliation is idempotent. Replaying a provider report leaves the
reservation and its payment rows unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from reservio.domain.availability import (
    assert_slot_available,
    assert_staff_not_blocked,
    stored_window,
)
from reservio.domain.booking_lock import booking_gate, window_dates
from reservio.domain.cancellation import phone_matches
from reservio.domain.errors import (
    InvalidArgumentError,
    NotFoundError,
    SlotUnavailableError,
    StaffBlockedError,
    UpstreamPaymentError,
)
from reservio.domain.status import CANCELLED, CONFIRMED, PENDING_PAYMENT
from reservio.infra.db import txn
from reservio.infra.merchant_settings import MerchantSettings, get_merchant_settings
from reservio.infra.repositories.catalog_repository import get_resource
from reservio.infra.repositories.payments_repository import (
    count_payments,
    expire_pending_payments,
    get_latest_payment,
    get_payment_by_provider_ref,
    has_approved_payment,
    insert_payment,
    mark_approved,
    update_payment_status,
)
from reservio.infra.repositories.reservations_repository import (
    attach_payment,
    get_reservation,
    insert_status_log,
    reopen_for_payment,
    update_status,
)
from reservio.infra.time import utc_now
from reservio.payments.gateway import REPORTED_STATUSES, DepositRequest, PaymentGateway
from reservio.payments.selection import gateway_for_merchant, gateway_for_provider

logger = logging.getLogger(__name__)

ACTOR_PAYMENTS = "system:payments"

RETRYABLE_STATUSES = frozenset({PENDING_PAYMENT, CANCELLED})


def create_deposit_payment(
    reservation: dict[str, Any],
    settings: MerchantSettings,
    *,
    gateway: PaymentGateway | None = None,
    attempt: int = 1,
) -> dict[str, Any]:
    """Charge the deposit of a committed reservation.

    Args:
        reservation: Reservation dict (id, merchant_id, deposit_amount, customer_*).
        settings: Owning merchant's settings (gateway selection, deadline).
        gateway: Override for gateway selection (tests).
        attempt: 1-based attempt number, part of the provider idempotency key.

    Returns:
        Dict with payment_id, provider, provider_ref, qr_code,
        copy_paste_code and expires_at.

    Raises:
        UpstreamPaymentError: Gateway call failed; the reservation stays
            pending_payment and may be retried.
    """
    gateway = gateway or gateway_for_merchant(settings)
    reservation_id = reservation["id"]

    request = DepositRequest(
        reservation_id=reservation_id,
        amount=reservation["deposit_amount"],
        customer_name=reservation["customer_name"],
        customer_phone=reservation["customer_phone"],
        customer_email=reservation.get("customer_email"),
        attempt=attempt,
        expires_in_minutes=settings.deposit_deadline_minutes,
    )
    try:
        intent = gateway.create_deposit(request)
    except UpstreamPaymentError as e:
        if e.reservation_id is None:
            e.reservation_id = reservation_id
        raise

    with txn() as cur:
        payment_id = insert_payment(
            cur,
            reservation_id=reservation_id,
            merchant_id=reservation["merchant_id"],
            amount=reservation["deposit_amount"],
            provider=intent.provider,
            provider_ref=intent.provider_ref,
            qr_code=intent.qr_code,
            copy_paste_code=intent.copy_paste_code,
            expires_at=intent.expires_at,
        )

        current = get_reservation(cur, reservation_id, lock=True)
        if current is not None and current["status"] == PENDING_PAYMENT:
            attach_payment(
                cur,
                reservation_id,
                payment_ref=intent.provider_ref,
                qr_code=intent.qr_code,
                copy_paste_code=intent.copy_paste_code,
            )
        else:
            # Swept or cancelled while the provider call was in flight
            update_payment_status(cur, payment_id=payment_id, status="expired")
            logger.warning(
                "deposit created for reservation no longer pending",
                extra={
                    "extra_fields": {
                        "reservation_id": reservation_id,
                        "provider_ref": intent.provider_ref,
                        "status": current["status"] if current else None,
                    },
                },
            )

    logger.info(
        "deposit payment created",
        extra={
            "extra_fields": {
                "reservation_id": reservation_id,
                "payment_id": payment_id,
                "provider": intent.provider,
                "attempt": attempt,
            },
        },
    )

    return {"payment_id": payment_id, **intent.as_dict()}


def retry_payment(
    reservation_id: str,
    *,
    merchant_id: str | None = None,
    customer_phone: str | None = None,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Start a new deposit attempt for a pending or cancelled reservation.

    A cancelled (or lapsed pending) reservation has given its slot back, so
    reopening it re-runs the gate and the availability check for its window.

    Args:
        reservation_id: Reservation UUID.
        merchant_id: Optional tenant scope (dashboard calls).
        customer_phone: When given (public calls), must match the phone on file.
        gateway: Override for gateway selection (tests).
        now: Override for the current instant (tests).

    Returns:
        Dict with reservation_id, status, deposit_expires_at and payment.

    Raises:
        NotFoundError: Reservation, merchant or resource missing.
        InvalidArgumentError: Wrong status, no deposit, already paid or
            phone mismatch.
        ConflictError: Slot taken since the reservation was cancelled.
        UpstreamPaymentError: Gateway call failed.
    """
    current_time = now or utc_now()

    with txn() as cur:
        reservation = get_reservation(cur, reservation_id, merchant_id=merchant_id)
        if reservation is None:
            raise NotFoundError("Reservation not found")
        if customer_phone is not None and not phone_matches(
            customer_phone, reservation["customer_phone"]
        ):
            raise InvalidArgumentError("Phone number does not match the reservation")
        _assert_retryable(reservation)

        settings = get_merchant_settings(cur, reservation["merchant_id"])
        if settings is None:
            raise NotFoundError("Merchant not found")

        if _holds_capacity(reservation, current_time):
            reservation = get_reservation(cur, reservation_id, lock=True)
        else:
            reservation = _reclaim_slot(cur, reservation, settings)
        _assert_retryable(reservation)

        if has_approved_payment(cur, reservation_id):
            raise InvalidArgumentError("Deposit has already been paid for this reservation")

        expires_at = current_time + timedelta(minutes=settings.deposit_deadline_minutes)
        expire_pending_payments(cur, reservation_id)
        reopen_for_payment(cur, reservation_id, deposit_expires_at=expires_at)
        if reservation["status"] != PENDING_PAYMENT:
            insert_status_log(
                cur,
                reservation_id=reservation_id,
                from_status=reservation["status"],
                to_status=PENDING_PAYMENT,
                actor=ACTOR_PAYMENTS,
                reason="payment retry",
            )
        attempt = count_payments(cur, reservation_id) + 1

    logger.info(
        "payment retry started",
        extra={
            "extra_fields": {
                "reservation_id": reservation_id,
                "previous_status": reservation["status"],
                "attempt": attempt,
            },
        },
    )

    payment = create_deposit_payment(reservation, settings, gateway=gateway, attempt=attempt)
    return {
        "reservation_id": reservation_id,
        "status": PENDING_PAYMENT,
        "deposit_expires_at": expires_at,
        "payment": payment,
    }


def _holds_capacity(reservation: dict[str, Any], now: datetime) -> bool:
    """Cancelled rows and lapsed pending holds no longer occupy their slot."""
    if reservation["status"] == CANCELLED:
        return False
    expires_at = reservation["deposit_expires_at"]
    return expires_at is None or expires_at >= now


def _reclaim_slot(
    cur,
    reservation: dict[str, Any],
    settings: MerchantSettings,
) -> dict[str, Any] | None:
    """Take the slot back for a reservation that gave it up.

    Runs the booking gate and the conflict checks for the stored window,
    then re-reads the row under its lock while the gate is held.

    Raises:
        NotFoundError: Resource missing.
        ConflictError: Slot taken, staff blocked or gate busy.
    """
    resource = get_resource(
        cur,
        merchant_id=reservation["merchant_id"],
        resource_id=reservation["resource_id"],
    )
    if resource is None:
        raise NotFoundError("Resource not found")

    window = stored_window(resource, reservation["start_time"], reservation["end_time"])
    booking_date = reservation["booking_date"]
    with booking_gate(
        cur,
        target_ids=[reservation["resource_id"], reservation["staff_id"]],
        dates=window_dates(booking_date, window),
    ):
        assert_slot_available(
            cur,
            resource_id=reservation["resource_id"],
            staff_id=reservation["staff_id"],
            booking_date=booking_date,
            window=window,
            exclude_reservation_id=reservation["id"],
        )
        assert_staff_not_blocked(
            cur,
            staff_id=reservation["staff_id"],
            booking_date=booking_date,
            window=window,
            tz_name=settings.timezone,
        )
        return get_reservation(cur, reservation["id"], lock=True)


def _assert_retryable(reservation: dict[str, Any] | None) -> None:
    if reservation is None:
        raise NotFoundError("Reservation not found")
    if reservation["status"] not in RETRYABLE_STATUSES:
        raise InvalidArgumentError(
            f"Payment cannot be retried for a reservation in status '{reservation['status']}'"
        )
    if reservation["deposit_amount"] <= 0:
        raise InvalidArgumentError("Reservation does not require a deposit")


def reconcile_payment(
    provider_ref: str,
    provider_status: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Apply a provider status report to the payment and its reservation.

    Transitions:
    - approved:  payment -> approved (paid_at), reservation pending_payment -> confirmed.
      A reservation that is already cancelled stays cancelled; the late
      payment is recorded and flagged for refund.
      A pending hold whose deadline already passed re-runs the booking gate
      first; if its slot was taken meanwhile it is cancelled and flagged for
      refund instead of confirmed.
    - rejected / cancelled: pending payment -> rejected; reservation
      pending_payment -> cancelled when this payment is its current one.
    - expired: pending payment -> expired.
    - pending: no-op.

    Args:
        provider_ref: Provider payment reference.
        provider_status: One of pending, approved, rejected, cancelled, expired.
        now: Override for paid_at (tests).

    Returns:
        Dict with "status": ignored | noop | duplicate | duplicate_payment |
        confirmed | approved | refund_required | cancelled | rejected | expired.

    Raises:
        InvalidArgumentError: Unknown provider status.
        BookingBusyError: Gate busy while re-checking a lapsed hold.
    """
    if provider_status is not None and not isinstance(provider_status, str):
        raise InvalidArgumentError(f"Unknown payment status: {provider_status!r}")
    reported = (provider_status or "").lower()
    if reported not in REPORTED_STATUSES:
        raise InvalidArgumentError(f"Unknown payment status: {provider_status}")

    with txn() as cur:
        # Unlocked lookup first: reservation row is locked before payment rows
        payment = get_payment_by_provider_ref(cur, provider_ref)
        if payment is None:
            logger.info(
                "reconcile ignored unknown provider reference",
                extra={"extra_fields": {"provider_ref": provider_ref}},
            )
            return {"status": "ignored"}

        reservation_id = payment["reservation_id"]
        reservation = get_reservation(cur, reservation_id, lock=True)
        payment = get_payment_by_provider_ref(cur, provider_ref, lock=True)
        if reservation is None or payment is None:
            return {"status": "ignored"}

        if reported == "pending":
            return {"status": "noop"}

        if reported == "approved":
            return _apply_approved(cur, reservation, payment, now or utc_now())

        if reported in ("rejected", "cancelled"):
            return _apply_rejected(cur, reservation, payment)

        # expired
        if payment["status"] != "pending":
            return {"status": "noop"}
        update_payment_status(cur, payment_id=payment["id"], status="expired")
        return {"status": "expired", "reservation_id": reservation_id}


def _apply_approved(
    cur,
    reservation: dict[str, Any],
    payment: dict[str, Any],
    paid_at: datetime,
) -> dict[str, Any]:
    reservation_id = reservation["id"]

    if payment["status"] == "approved":
        return {"status": "duplicate", "reservation_id": reservation_id}

    if has_approved_payment(cur, reservation_id, exclude_payment_id=payment["id"]):
        logger.warning(
            "duplicate_payment: reservation already has an approved payment",
            extra={
                "extra_fields": {
                    "reservation_id": reservation_id,
                    "payment_id": payment["id"],
                    "provider_ref": payment["provider_ref"],
                },
            },
        )
        return {"status": "duplicate_payment", "reservation_id": reservation_id}

    if reservation["status"] == PENDING_PAYMENT and not _holds_capacity(reservation, paid_at):
        # Hold lapsed before the approval arrived; another booking may own the slot now
        settings = get_merchant_settings(cur, reservation["merchant_id"])
        if settings is None:
            raise NotFoundError("Merchant not found")
        try:
            _reclaim_slot(cur, reservation, settings)
        except (SlotUnavailableError, StaffBlockedError) as exc:
            return _cancel_lost_hold(cur, reservation, payment, paid_at, exc)

    mark_approved(cur, payment["id"], paid_at=paid_at)

    if reservation["status"] == PENDING_PAYMENT:
        update_status(cur, reservation_id, status=CONFIRMED)
        insert_status_log(
            cur,
            reservation_id=reservation_id,
            from_status=PENDING_PAYMENT,
            to_status=CONFIRMED,
            actor=ACTOR_PAYMENTS,
            reason="deposit approved",
        )
        logger.info(
            "reservation confirmed by payment",
            extra={
                "extra_fields": {
                    "reservation_id": reservation_id,
                    "payment_id": payment["id"],
                },
            },
        )
        return {"status": "confirmed", "reservation_id": reservation_id}

    if reservation["status"] == CANCELLED:
        logger.warning(
            "payment approved for cancelled reservation, refund required",
            extra={
                "extra_fields": {
                    "reservation_id": reservation_id,
                    "payment_id": payment["id"],
                    "amount": str(payment["amount"]),
                },
            },
        )
        return {"status": "refund_required", "reservation_id": reservation_id}

    return {"status": "approved", "reservation_id": reservation_id}


def _cancel_lost_hold(
    cur,
    reservation: dict[str, Any],
    payment: dict[str, Any],
    paid_at: datetime,
    reason: Exception,
) -> dict[str, Any]:
    """Record the money, give up the reservation and flag the refund."""
    reservation_id = reservation["id"]

    mark_approved(cur, payment["id"], paid_at=paid_at)
    update_status(cur, reservation_id, status=CANCELLED)
    expire_pending_payments(cur, reservation_id)
    insert_status_log(
        cur,
        reservation_id=reservation_id,
        from_status=PENDING_PAYMENT,
        to_status=CANCELLED,
        actor=ACTOR_PAYMENTS,
        reason="slot taken before deposit approval",
    )
    logger.warning(
        "deposit approved after hold lapsed and slot was taken, refund required",
        extra={
            "extra_fields": {
                "reservation_id": reservation_id,
                "payment_id": payment["id"],
                "amount": str(payment["amount"]),
                "conflict": str(reason),
            },
        },
    )
    return {"status": "refund_required", "reservation_id": reservation_id}


def _apply_rejected(
    cur,
    reservation: dict[str, Any],
    payment: dict[str, Any],
) -> dict[str, Any]:
    reservation_id = reservation["id"]

    if payment["status"] != "pending":
        return {"status": "noop", "reservation_id": reservation_id}

    update_payment_status(cur, payment_id=payment["id"], status="rejected")

    is_current = reservation["payment_ref"] in (None, payment["provider_ref"])
    if reservation["status"] != PENDING_PAYMENT or not is_current:
        return {"status": "rejected", "reservation_id": reservation_id}

    update_status(cur, reservation_id, status=CANCELLED)
    expire_pending_payments(cur, reservation_id)
    insert_status_log(
        cur,
        reservation_id=reservation_id,
        from_status=PENDING_PAYMENT,
        to_status=CANCELLED,
        actor=ACTOR_PAYMENTS,
        reason="deposit rejected",
    )
    logger.info(
        "reservation cancelled by rejected payment",
        extra={"extra_fields": {"reservation_id": reservation_id, "payment_id": payment["id"]}},
    )
    return {"status": "cancelled", "reservation_id": reservation_id}


def refresh_payment_status(
    reservation_id: str,
    *,
    merchant_id: str | None = None,
    gateway: PaymentGateway | None = None,
) -> dict[str, Any]:
    """Poll the provider for the latest attempt and reconcile the answer.

    Raises:
        NotFoundError: Reservation or merchant missing.
        InvalidArgumentError: Reservation has no payment attempt.
        UpstreamPaymentError: Provider query failed.
    """
    with txn() as cur:
        reservation = get_reservation(cur, reservation_id, merchant_id=merchant_id)
        if reservation is None:
            raise NotFoundError("Reservation not found")
        payment = get_latest_payment(cur, reservation_id)
        if payment is None:
            raise InvalidArgumentError("Reservation has no payment attempt")
        settings = get_merchant_settings(cur, reservation["merchant_id"])
        if settings is None:
            raise NotFoundError("Merchant not found")

    gateway = gateway or gateway_for_provider(payment["provider"], settings)
    status = gateway.query_status(payment["provider_ref"])
    result = reconcile_payment(payment["provider_ref"], status)
    return {"provider_status": status, **result}


def handle_provider_notification(
    provider_ref: str,
    *,
    gateway: PaymentGateway | None = None,
) -> dict[str, Any]:
    """Webhook entry point: ask the provider for the real status, then reconcile.

    Notifications are untrusted hints; only the queried status is applied.
    Unknown references are ignored.
    """
    with txn() as cur:
        payment = get_payment_by_provider_ref(cur, provider_ref)
        if payment is None:
            logger.info(
                "notification for unknown provider reference ignored",
                extra={"extra_fields": {"provider_ref": provider_ref}},
            )
            return {"status": "ignored"}
        settings = get_merchant_settings(cur, payment["merchant_id"])

    if settings is None:
        return {"status": "ignored"}

    gateway = gateway or gateway_for_provider(payment["provider"], settings)
    status = gateway.query_status(provider_ref)
    return reconcile_payment(provider_ref, status)
