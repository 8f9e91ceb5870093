"""Tests for payment reconciliation (database mocked)."""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from reservio.domain.errors import (
    BookingBusyError,
    InvalidArgumentError,
    SlotUnavailableError,
    StaffBlockedError,
)
from reservio.domain.payments import (
    handle_provider_notification,
    reconcile_payment,
    refresh_payment_status,
)

from .helpers import (
    NOW,
    RESERVATION_ID,
    RESOURCE_ID,
    STAFF_ID,
    make_payment,
    make_reservation,
    make_resource,
    make_settings,
    make_txn,
)

MODULE = "reservio.domain.payments"

REF = f"stub_{RESERVATION_ID}_1"


@pytest.fixture
def db():
    mock_txn, cur = make_txn()
    with patch(f"{MODULE}.txn", mock_txn), patch(
        f"{MODULE}.get_payment_by_provider_ref"
    ) as get_payment, patch(
        f"{MODULE}.get_reservation"
    ) as get_reservation, patch(
        f"{MODULE}.has_approved_payment", return_value=False
    ) as has_approved, patch(
        f"{MODULE}.mark_approved"
    ) as mark_approved, patch(
        f"{MODULE}.update_payment_status"
    ) as update_payment, patch(
        f"{MODULE}.update_status"
    ) as update_status, patch(
        f"{MODULE}.insert_status_log"
    ) as status_log, patch(
        f"{MODULE}.expire_pending_payments"
    ) as expire_payments:
        yield SimpleNamespace(
            cur=cur,
            get_payment=get_payment,
            get_reservation=get_reservation,
            has_approved=has_approved,
            mark_approved=mark_approved,
            update_payment=update_payment,
            update_status=update_status,
            status_log=status_log,
            expire_payments=expire_payments,
        )


def _seed(db, *, reservation=None, payment=None):
    payment = payment or make_payment()
    db.get_payment.return_value = payment
    db.get_reservation.return_value = reservation or make_reservation(payment_ref=REF)


class TestReconcileApproved:
    def test_confirms_pending_reservation(self, db):
        _seed(db)

        result = reconcile_payment(REF, "approved", now=NOW)

        assert result == {"status": "confirmed", "reservation_id": RESERVATION_ID}
        db.mark_approved.assert_called_once()
        assert db.mark_approved.call_args.kwargs["paid_at"] == NOW
        assert db.update_status.call_args.kwargs["status"] == "confirmed"
        assert db.status_log.call_args.kwargs["actor"] == "system:payments"

    def test_replay_is_idempotent(self, db):
        _seed(db, payment=make_payment(status="approved"), reservation=make_reservation(status="confirmed"))

        result = reconcile_payment(REF, "approved", now=NOW)

        assert result["status"] == "duplicate"
        db.mark_approved.assert_not_called()
        db.update_status.assert_not_called()

    def test_second_approved_payment_flagged(self, db):
        _seed(db, reservation=make_reservation(status="confirmed"))
        db.has_approved.return_value = True

        result = reconcile_payment(REF, "approved", now=NOW)

        assert result["status"] == "duplicate_payment"
        db.mark_approved.assert_not_called()

    def test_late_approval_of_cancelled_reservation(self, db):
        _seed(db, reservation=make_reservation(status="cancelled"))

        result = reconcile_payment(REF, "approved", now=NOW)

        assert result["status"] == "refund_required"
        db.mark_approved.assert_called_once()
        db.update_status.assert_not_called()

    def test_locks_reservation_before_payment(self, db):
        _seed(db)
        manager = MagicMock()
        manager.attach_mock(db.get_payment, "get_payment")
        manager.attach_mock(db.get_reservation, "get_reservation")

        reconcile_payment(REF, "approved", now=NOW)

        names = [c[0] for c in manager.mock_calls]
        assert names == ["get_payment", "get_reservation", "get_payment"]
        assert manager.mock_calls[1].kwargs == {"lock": True}
        assert manager.mock_calls[2].kwargs == {"lock": True}


@pytest.fixture
def slot_checks():
    with patch(
        f"{MODULE}.get_merchant_settings", return_value=make_settings()
    ) as get_settings, patch(
        f"{MODULE}.get_resource", return_value=make_resource()
    ), patch(
        f"{MODULE}.booking_gate"
    ) as gate, patch(
        f"{MODULE}.assert_slot_available"
    ) as slot_check, patch(
        f"{MODULE}.assert_staff_not_blocked"
    ) as block_check:
        yield SimpleNamespace(
            get_settings=get_settings,
            gate=gate,
            slot_check=slot_check,
            block_check=block_check,
        )


def _lapsed_reservation(**overrides):
    return make_reservation(
        payment_ref=REF,
        deposit_expires_at=NOW - timedelta(minutes=30),
        **overrides,
    )


class TestReconcileApprovedAfterHoldLapsed:
    def test_live_hold_confirms_without_recheck(self, db, slot_checks):
        _seed(db)

        assert reconcile_payment(REF, "approved", now=NOW)["status"] == "confirmed"

        slot_checks.gate.assert_not_called()
        slot_checks.slot_check.assert_not_called()

    def test_free_slot_is_reclaimed_and_confirmed(self, db, slot_checks):
        _seed(db, reservation=_lapsed_reservation())

        result = reconcile_payment(REF, "approved", now=NOW)

        assert result == {"status": "confirmed", "reservation_id": RESERVATION_ID}
        assert slot_checks.gate.call_args.kwargs["target_ids"] == [RESOURCE_ID, None]
        assert slot_checks.slot_check.call_args.kwargs["exclude_reservation_id"] == RESERVATION_ID
        slot_checks.block_check.assert_called_once()
        assert db.update_status.call_args.kwargs["status"] == "confirmed"

    def test_taken_slot_cancels_and_flags_refund(self, db, slot_checks):
        _seed(db, reservation=_lapsed_reservation())
        slot_checks.slot_check.side_effect = SlotUnavailableError(RESOURCE_ID, conflicting_reservation_ids=["other"])

        result = reconcile_payment(REF, "approved", now=NOW)

        assert result == {"status": "refund_required", "reservation_id": RESERVATION_ID}
        db.mark_approved.assert_called_once()
        assert db.mark_approved.call_args.kwargs["paid_at"] == NOW
        assert db.update_status.call_args.kwargs["status"] == "cancelled"
        db.expire_payments.assert_called_once_with(db.cur, RESERVATION_ID)
        log = db.status_log.call_args.kwargs
        assert (log["from_status"], log["to_status"]) == ("pending_payment", "cancelled")
        assert log["actor"] == "system:payments"

    def test_staff_block_cancels_and_flags_refund(self, db, slot_checks):
        _seed(db, reservation=_lapsed_reservation(staff_id=STAFF_ID))
        slot_checks.block_check.side_effect = StaffBlockedError(STAFF_ID, "block-1")

        result = reconcile_payment(REF, "approved", now=NOW)

        assert result["status"] == "refund_required"
        assert slot_checks.gate.call_args.kwargs["target_ids"] == [RESOURCE_ID, STAFF_ID]
        assert db.update_status.call_args.kwargs["status"] == "cancelled"

    def test_busy_gate_propagates_for_redelivery(self, db, slot_checks):
        _seed(db, reservation=_lapsed_reservation())
        slot_checks.slot_check.side_effect = BookingBusyError("busy")

        with pytest.raises(BookingBusyError):
            reconcile_payment(REF, "approved", now=NOW)

        db.mark_approved.assert_not_called()
        db.update_status.assert_not_called()

    def test_replayed_approval_skips_recheck(self, db, slot_checks):
        _seed(db, payment=make_payment(status="approved"), reservation=_lapsed_reservation(status="cancelled"))

        assert reconcile_payment(REF, "approved", now=NOW)["status"] == "duplicate"
        slot_checks.slot_check.assert_not_called()


class TestReconcileRejected:
    def test_cancels_pending_reservation(self, db):
        _seed(db)

        result = reconcile_payment(REF, "rejected")

        assert result["status"] == "cancelled"
        db.update_payment.assert_called_once_with(db.cur, payment_id=make_payment()["id"], status="rejected")
        assert db.update_status.call_args.kwargs["status"] == "cancelled"
        db.expire_payments.assert_called_once()

    def test_provider_cancelled_treated_as_rejected(self, db):
        _seed(db)
        assert reconcile_payment(REF, "CANCELLED")["status"] == "cancelled"

    def test_stale_attempt_does_not_cancel(self, db):
        _seed(db, reservation=make_reservation(payment_ref="stub_other_2"))

        result = reconcile_payment(REF, "rejected")

        assert result["status"] == "rejected"
        db.update_status.assert_not_called()

    def test_already_final_payment_is_noop(self, db):
        _seed(db, payment=make_payment(status="rejected"))
        assert reconcile_payment(REF, "rejected")["status"] == "noop"
        db.update_payment.assert_not_called()

    def test_confirmed_reservation_untouched(self, db):
        _seed(db, reservation=make_reservation(status="confirmed", payment_ref=REF))
        assert reconcile_payment(REF, "rejected")["status"] == "rejected"
        db.update_status.assert_not_called()


class TestReconcileOther:
    def test_pending_is_noop(self, db):
        _seed(db)
        assert reconcile_payment(REF, "pending") == {"status": "noop"}

    def test_expired_marks_payment(self, db):
        _seed(db)
        result = reconcile_payment(REF, "expired")
        assert result["status"] == "expired"
        db.update_payment.assert_called_once()
        db.update_status.assert_not_called()

    def test_unknown_reference_ignored(self, db):
        db.get_payment.return_value = None
        assert reconcile_payment("nope", "approved") == {"status": "ignored"}

    def test_unknown_status_rejected(self, db):
        with pytest.raises(InvalidArgumentError):
            reconcile_payment(REF, "chargeback")

    def test_non_string_status_rejected(self, db):
        with pytest.raises(InvalidArgumentError, match="Unknown payment status"):
            reconcile_payment(REF, 5)
        db.get_payment.assert_not_called()


class TestRefreshAndNotifications:
    def test_refresh_queries_provider_and_reconciles(self):
        mock_txn, _ = make_txn()
        gateway = MagicMock()
        gateway.query_status.return_value = "approved"

        with patch(f"{MODULE}.txn", mock_txn), patch(
            f"{MODULE}.get_reservation", return_value=make_reservation()
        ), patch(f"{MODULE}.get_latest_payment", return_value=make_payment()), patch(
            f"{MODULE}.get_merchant_settings", return_value=make_settings()
        ), patch(
            f"{MODULE}.reconcile_payment", return_value={"status": "confirmed"}
        ) as reconcile:
            result = refresh_payment_status(RESERVATION_ID, gateway=gateway)

        gateway.query_status.assert_called_once_with(REF)
        reconcile.assert_called_once_with(REF, "approved")
        assert result == {"provider_status": "approved", "status": "confirmed"}

    def test_refresh_without_payment(self):
        mock_txn, _ = make_txn()
        with patch(f"{MODULE}.txn", mock_txn), patch(
            f"{MODULE}.get_reservation", return_value=make_reservation()
        ), patch(f"{MODULE}.get_latest_payment", return_value=None):
            with pytest.raises(InvalidArgumentError):
                refresh_payment_status(RESERVATION_ID)

    def test_notification_uses_queried_status(self):
        mock_txn, _ = make_txn()
        gateway = MagicMock()
        gateway.query_status.return_value = "rejected"

        with patch(f"{MODULE}.txn", mock_txn), patch(
            f"{MODULE}.get_payment_by_provider_ref", return_value=make_payment()
        ), patch(f"{MODULE}.get_merchant_settings", return_value=make_settings()), patch(
            f"{MODULE}.reconcile_payment", return_value={"status": "cancelled"}
        ) as reconcile:
            result = handle_provider_notification(REF, gateway=gateway)

        reconcile.assert_called_once_with(REF, "rejected")
        assert result == {"status": "cancelled"}

    def test_notification_for_unknown_reference(self):
        mock_txn, _ = make_txn()
        gateway = MagicMock()
        with patch(f"{MODULE}.txn", mock_txn), patch(
            f"{MODULE}.get_payment_by_provider_ref", return_value=None
        ):
            assert handle_provider_notification("mp-999", gateway=gateway) == {"status": "ignored"}
        gateway.query_status.assert_not_called()
