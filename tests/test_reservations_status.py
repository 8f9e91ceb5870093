"""Tests for change_status and reschedule (database mocked)."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from unittest.mock import patch

import pytest
from psycopg2 import errors as pg_errors

from reservio.domain.errors import (
    BookingBusyError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    StaffBlockedError,
)
from reservio.domain.reservations import (
    ActorContext,
    change_status,
    reschedule,
    scheduled_instant,
)

from .helpers import (
    NOW,
    RESERVATION_ID,
    STAFF_ID,
    make_reservation,
    make_resource,
    make_settings,
    make_txn,
)

MODULE = "reservio.domain.reservations"

STAFF = ActorContext(kind="staff", user_id="user-1")
CUSTOMER = ActorContext(kind="customer", phone="5511999998888")


class TestActorContext:
    def test_labels(self):
        assert STAFF.label == "staff:user-1"
        assert ActorContext().label == "staff"
        assert CUSTOMER.label == "customer"
        assert CUSTOMER.is_customer

    def test_scheduled_instant_full_day_is_local_midnight(self):
        instant = scheduled_instant(date(2026, 3, 12), None, "America/Sao_Paulo")
        assert (instant.hour, instant.minute) == (0, 0)
        assert instant.utcoffset().total_seconds() == -3 * 3600


class TestChangeStatus:
    def _run(self, reservation, target, actor=STAFF, settings=None, **kwargs):
        mock_txn, _ = make_txn()
        with patch(f"{MODULE}.txn", mock_txn), patch(
            f"{MODULE}.get_reservation", return_value=reservation
        ), patch(
            f"{MODULE}.get_merchant_settings", return_value=settings or make_settings()
        ), patch(f"{MODULE}.update_status") as update, patch(
            f"{MODULE}.insert_status_log"
        ) as status_log, patch(
            f"{MODULE}.expire_pending_payments"
        ) as expire_payments:
            result = change_status(RESERVATION_ID, target, actor, now=NOW, **kwargs)
        return result, update, status_log, expire_payments

    def test_confirm_pending(self):
        result, update, status_log, expire_payments = self._run(make_reservation(), "confirmed")

        assert result == {"ok": True, "status": "confirmed", "refund": None}
        update.assert_called_once()
        assert update.call_args.kwargs["status"] == "confirmed"
        assert status_log.call_args.kwargs["actor"] == "staff:user-1"
        expire_payments.assert_not_called()

    def test_cancel_confirmed_reports_refund(self):
        reservation = make_reservation(status="confirmed")

        result, _, _, expire_payments = self._run(reservation, "cancelled")

        # Booking 2026-03-12 14:00 local is 53h away from NOW
        assert result["refund"]["refund_amount"] == "60.00"
        assert result["refund"]["within_deadline"] is True
        expire_payments.assert_called_once()

    def test_cancel_inside_deadline_refunds_nothing(self):
        reservation = make_reservation(status="confirmed", booking_date=date(2026, 3, 10), start_time=time(18, 0))

        result, _, _, _ = self._run(reservation, "cancelled")

        assert result["refund"]["refund_amount"] == "0.00"
        assert result["refund"]["within_deadline"] is False

    def test_cancel_uses_merchant_refund_percentage(self):
        reservation = make_reservation(status="confirmed")
        settings = make_settings(cancellation_refund_percentage=Decimal("50"))

        result, _, _, _ = self._run(reservation, "cancelled", settings=settings)

        assert result["refund"]["refund_amount"] == "30.00"

    def test_no_show_from_in_progress_has_no_refund(self):
        result, _, _, _ = self._run(make_reservation(status="in_progress"), "no_show")
        assert result["refund"] is None

    def test_illegal_transition(self):
        with pytest.raises(InvalidTransitionError):
            self._run(make_reservation(status="completed"), "confirmed")

    def test_terminal_cancelled_cannot_cancel_again(self):
        with pytest.raises(InvalidTransitionError):
            self._run(make_reservation(status="cancelled"), "cancelled")

    def test_missing_reservation(self):
        with pytest.raises(NotFoundError):
            self._run(None, "confirmed")

    def test_internal_notes_forwarded(self):
        _, update, _, _ = self._run(make_reservation(), "confirmed", internal_notes="paid cash")
        assert update.call_args.kwargs["internal_notes"] == "paid cash"

    def test_customer_can_cancel_with_matching_phone(self):
        result, _, status_log, _ = self._run(make_reservation(status="confirmed"), "cancelled", actor=CUSTOMER)
        assert result["status"] == "cancelled"
        assert status_log.call_args.kwargs["actor"] == "customer"

    def test_customer_phone_mismatch(self):
        actor = ActorContext(kind="customer", phone="5521000000000")
        with pytest.raises(InvalidArgumentError, match="Phone"):
            self._run(make_reservation(status="confirmed"), "cancelled", actor=actor)

    def test_customer_cannot_confirm(self):
        with pytest.raises(InvalidArgumentError):
            self._run(make_reservation(), "confirmed", actor=CUSTOMER)


class TestReschedule:
    def _patches(self, reservation, resource=None, settings=None):
        mock_txn, cur = make_txn()
        updated = dict(reservation, booking_date=date(2026, 3, 20))
        return (
            patch(f"{MODULE}.txn", mock_txn),
            patch(
                f"{MODULE}.get_reservation",
                side_effect=[reservation, reservation, updated],
            ),
            patch(f"{MODULE}.get_merchant_settings", return_value=settings or make_settings()),
            patch(f"{MODULE}.get_resource", return_value=resource or make_resource()),
            patch(f"{MODULE}.staff_exists", return_value=True),
            patch(f"{MODULE}.assert_slot_available"),
            patch(f"{MODULE}.assert_staff_not_blocked"),
            patch(f"{MODULE}.update_schedule"),
        )

    def test_keeps_start_time_when_only_date_changes(self):
        reservation = make_reservation(status="confirmed")
        p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)

        with p_txn, p_get, p_settings, p_res, p_staff, p_slot as slot, p_block, p_update as update:
            result = reschedule(RESERVATION_ID, date(2026, 3, 20), now=NOW)

        assert result["booking_date"] == date(2026, 3, 20)
        assert slot.call_args.kwargs["exclude_reservation_id"] == RESERVATION_ID
        assert update.call_args.kwargs["start_time"] == time(14, 0)
        assert update.call_args.kwargs["end_time"] == time(15, 0)

    def test_new_staff_checked(self):
        reservation = make_reservation(status="confirmed")
        p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)

        with p_txn, p_get, p_settings, p_res, p_staff as staff_exists, p_slot, p_block, p_update as update:
            staff_exists.return_value = False
            with pytest.raises(NotFoundError, match="Staff"):
                reschedule(RESERVATION_ID, date(2026, 3, 20), "10:00", STAFF_ID, now=NOW)

        update.assert_not_called()

    def test_completed_cannot_be_rescheduled(self):
        reservation = make_reservation(status="completed")
        p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)

        with p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update:
            with pytest.raises(InvalidArgumentError, match="cannot be rescheduled"):
                reschedule(RESERVATION_ID, date(2026, 3, 20), now=NOW)

    def test_customer_inside_deadline_rejected(self):
        reservation = make_reservation(status="confirmed", booking_date=date(2026, 3, 10), start_time=time(18, 0))
        p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)

        with p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update:
            with pytest.raises(InvalidArgumentError, match="24 hours"):
                reschedule(RESERVATION_ID, date(2026, 3, 20), actor=CUSTOMER, now=NOW)

    def test_customer_outside_deadline_allowed(self):
        reservation = make_reservation(status="confirmed")
        p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)

        with p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update as update:
            reschedule(RESERVATION_ID, date(2026, 3, 20), "16:00", actor=CUSTOMER, now=NOW)

        assert update.call_args.kwargs["start_time"] == time(16, 0)

    def test_staff_block_vetoes(self):
        reservation = make_reservation(status="confirmed", staff_id=STAFF_ID)
        p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)

        with p_txn, p_get, p_settings, p_res, p_staff, p_slot, p_block as block, p_update as update:
            block.side_effect = StaffBlockedError(STAFF_ID, "block-1")
            with pytest.raises(StaffBlockedError):
                reschedule(RESERVATION_ID, date(2026, 3, 20), now=NOW)

        update.assert_not_called()

    def test_deadlock_on_own_row_becomes_busy_error(self):
        reservation = make_reservation(status="confirmed")
        p_txn, _, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)
        deadlock = pg_errors.DeadlockDetected("deadlock detected")

        with p_txn, patch(
            f"{MODULE}.get_reservation", side_effect=[reservation, deadlock]
        ) as get, p_settings, p_res, p_staff, p_slot, p_block, p_update as update:
            with pytest.raises(BookingBusyError):
                reschedule(RESERVATION_ID, date(2026, 3, 20), now=NOW)

        assert get.call_args.kwargs == {"lock": True}
        update.assert_not_called()

    def test_status_moved_while_waiting_for_gate(self):
        reservation = make_reservation(status="confirmed")
        p_txn, _, p_settings, p_res, p_staff, p_slot, p_block, p_update = self._patches(reservation)
        cancelled = dict(reservation, status="cancelled")

        with p_txn, patch(
            f"{MODULE}.get_reservation", side_effect=[reservation, cancelled]
        ), p_settings, p_res, p_staff, p_slot, p_block, p_update as update:
            with pytest.raises(InvalidArgumentError):
                reschedule(RESERVATION_ID, date(2026, 3, 20), now=NOW)

        update.assert_not_called()
