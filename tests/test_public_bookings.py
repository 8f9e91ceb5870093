"""Tests for the public booking endpoints (/public/reservations)."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from reservio.api.factory import create_app
from reservio.domain.errors import (
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    SlotUnavailableError,
    StaffBlockedError,
    UpstreamPaymentError,
)

from .helpers import MERCHANT_ID, NOW, RESERVATION_ID, RESOURCE_ID, STAFF_ID, make_reservation

ROUTES = "reservio.api.routes.public_bookings"


@pytest.fixture
def client():
    return TestClient(create_app(role="public"), raise_server_exceptions=False)


def _body(**overrides) -> dict:
    body = {
        "merchant_id": MERCHANT_ID,
        "resource_id": RESOURCE_ID,
        "booking_date": "2026-03-12",
        "start_time": "14:00",
        "customer_name": "Maria Souza",
        "customer_phone": "+5511999998888",
    }
    body.update(overrides)
    return body


def _created(**overrides) -> dict:
    result = {
        "id": RESERVATION_ID,
        "status": "pending_payment",
        "deposit_amount": Decimal("60.00"),
        "total_amount": Decimal("200.00"),
        "deposit_expires_at": NOW,
        "window": {
            "start": "14:00",
            "end": "15:00",
            "conflict_start": "14:00",
            "conflict_end": "15:00",
            "crosses_midnight": False,
        },
        "payment": {
            "payment_id": "pay-1",
            "provider": "stub",
            "provider_ref": f"stub_{RESERVATION_ID}_1",
            "qr_code": "data:image/png;base64,PIX",
            "copy_paste_code": "000201...",
            "expires_at": NOW.isoformat(),
        },
    }
    result.update(overrides)
    return result


class TestCreate:
    def test_created_with_payment(self, client):
        with patch(f"{ROUTES}.create_reservation_op", return_value=_created()) as op:
            resp = client.post("/public/reservations", json=_body(staff_id=STAFF_ID))

        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == RESERVATION_ID
        assert data["deposit_amount"] == "60.00"
        assert data["total_amount"] == "200.00"
        assert data["payment"]["provider"] == "stub"
        assert data["window"]["end"] == "15:00"

        reservation_input = op.call_args.args[0]
        assert reservation_input.staff_id == STAFF_ID
        assert reservation_input.start_time == "14:00"
        assert reservation_input.people_count == 1

    def test_people_count_forwarded(self, client):
        with patch(f"{ROUTES}.create_reservation_op", return_value=_created()) as op:
            resp = client.post("/public/reservations", json=_body(people_count=4))

        assert resp.status_code == 201
        assert op.call_args.args[0].people_count == 4

    def test_people_count_must_be_positive(self, client):
        with patch(f"{ROUTES}.create_reservation_op") as op:
            resp = client.post("/public/reservations", json=_body(people_count=0))
        assert resp.status_code == 422
        op.assert_not_called()

    def test_confirmed_without_payment(self, client):
        result = _created(status="confirmed", deposit_amount=Decimal("0.00"), deposit_expires_at=None, payment=None)
        with patch(f"{ROUTES}.create_reservation_op", return_value=result):
            resp = client.post("/public/reservations", json=_body())

        assert resp.status_code == 201
        assert resp.json()["payment"] is None
        assert resp.json()["deposit_expires_at"] is None

    def test_malformed_time_is_422(self, client):
        with patch(f"{ROUTES}.create_reservation_op") as op:
            resp = client.post("/public/reservations", json=_body(start_time="25:99"))
        assert resp.status_code == 422
        op.assert_not_called()

    def test_unknown_field_rejected(self, client):
        resp = client.post("/public/reservations", json=_body(price="1.00"))
        assert resp.status_code == 422

    @pytest.mark.parametrize(
        "error,status_code",
        [
            (SlotUnavailableError(RESOURCE_ID), 409),
            (StaffBlockedError(STAFF_ID, "block-1"), 409),
            (NotFoundError("Resource not found"), 404),
            (InvalidArgumentError("Cannot book a time in the past"), 422),
        ],
    )
    def test_domain_errors_mapped(self, client, error, status_code):
        with patch(f"{ROUTES}.create_reservation_op", side_effect=error):
            resp = client.post("/public/reservations", json=_body())
        assert resp.status_code == status_code

    def test_payment_failure_returns_reservation_id(self, client):
        error = UpstreamPaymentError("Payment provider is unavailable", reservation_id=RESERVATION_ID)
        with patch(f"{ROUTES}.create_reservation_op", side_effect=error):
            resp = client.post("/public/reservations", json=_body())

        assert resp.status_code == 502
        assert resp.json()["detail"]["reservation_id"] == RESERVATION_ID


class TestCustomerActions:
    def test_cancel(self, client):
        result = {"ok": True, "status": "cancelled", "refund": {"refund_amount": "60.00"}}
        with patch(f"{ROUTES}.change_status", return_value=result) as op:
            resp = client.post(
                f"/public/reservations/{RESERVATION_ID}/cancel",
                json={"phone": "+5511999998888", "reason": "rain"},
            )

        assert resp.status_code == 200
        assert resp.json()["refund"]["refund_amount"] == "60.00"
        actor = op.call_args.args[2]
        assert actor.is_customer
        assert actor.phone == "+5511999998888"
        assert op.call_args.kwargs["reason"] == "rain"

    def test_cancel_phone_mismatch(self, client):
        with patch(f"{ROUTES}.change_status", side_effect=InvalidArgumentError("Phone number does not match")):
            resp = client.post(
                f"/public/reservations/{RESERVATION_ID}/cancel",
                json={"phone": "+5521000000000"},
            )
        assert resp.status_code == 422

    def test_cancel_terminal(self, client):
        with patch(f"{ROUTES}.change_status", side_effect=InvalidTransitionError("completed", "cancelled")):
            resp = client.post(
                f"/public/reservations/{RESERVATION_ID}/cancel",
                json={"phone": "+5511999998888"},
            )
        assert resp.status_code == 409

    def test_reschedule_hides_internal_fields(self, client):
        with patch(f"{ROUTES}.reschedule", return_value=make_reservation(internal_notes="vip")):
            resp = client.post(
                f"/public/reservations/{RESERVATION_ID}/reschedule",
                json={"phone": "+5511999998888", "booking_date": "2026-03-20", "start_time": "16:00"},
            )

        assert resp.status_code == 200
        data = resp.json()
        assert data["start_time"] == "14:00"
        assert "internal_notes" not in data
        assert "customer_phone" not in data
        assert data["people_count"] == 1

    def test_retry_payment(self, client):
        result = {
            "reservation_id": RESERVATION_ID,
            "status": "pending_payment",
            "deposit_expires_at": NOW,
            "payment": {"payment_id": "pay-2", "provider": "stub", "provider_ref": "stub_x_2"},
        }
        with patch(f"{ROUTES}.retry_payment", return_value=result) as op:
            resp = client.post(
                f"/public/reservations/{RESERVATION_ID}/retry-payment",
                json={"phone": "+5511999998888"},
            )

        assert resp.status_code == 200
        assert resp.json()["payment"]["payment_id"] == "pay-2"
        assert op.call_args.kwargs["customer_phone"] == "+5511999998888"

    def test_retry_payment_slot_taken(self, client):
        with patch(f"{ROUTES}.retry_payment", side_effect=SlotUnavailableError(RESOURCE_ID)):
            resp = client.post(
                f"/public/reservations/{RESERVATION_ID}/retry-payment",
                json={"phone": "+5511999998888"},
            )
        assert resp.status_code == 409
