"""Tests for GET /public/resources/{id}/availability."""

from __future__ import annotations

from datetime import date
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from reservio.api.factory import create_app
from reservio.domain.errors import InvalidArgumentError, NotFoundError

from .helpers import MERCHANT_ID, RESOURCE_ID, STAFF_ID

ROUTES = "reservio.api.routes.public_availability"

URL = f"/public/resources/{RESOURCE_ID}/availability"

FREE = {
    "available": True,
    "capacity": 1,
    "booked": 0,
    "staff_blocked": False,
    "window": {
        "start": "14:00",
        "end": "15:00",
        "conflict_start": "14:00",
        "conflict_end": "15:00",
        "crosses_midnight": False,
    },
}


@pytest.fixture
def client():
    return TestClient(create_app(role="public"), raise_server_exceptions=False)


def test_returns_availability(client):
    with patch(f"{ROUTES}.query_availability", return_value=FREE) as query:
        resp = client.get(
            URL,
            params={"merchant_id": MERCHANT_ID, "date": "2026-03-12", "start_time": "14:00", "staff_id": STAFF_ID},
        )

    assert resp.status_code == 200
    assert resp.json() == FREE
    query.assert_called_once_with(MERCHANT_ID, RESOURCE_ID, date(2026, 3, 12), "14:00", STAFF_ID)


def test_full_day_lookup_without_start(client):
    with patch(f"{ROUTES}.query_availability", return_value=FREE) as query:
        resp = client.get(URL, params={"merchant_id": MERCHANT_ID, "date": "2026-03-12"})

    assert resp.status_code == 200
    query.assert_called_once_with(MERCHANT_ID, RESOURCE_ID, date(2026, 3, 12), None, None)


def test_missing_date_is_422(client):
    with patch(f"{ROUTES}.query_availability") as query:
        resp = client.get(URL, params={"merchant_id": MERCHANT_ID})
    assert resp.status_code == 422
    query.assert_not_called()


def test_unknown_resource_is_404(client):
    with patch(f"{ROUTES}.query_availability", side_effect=NotFoundError("Resource not found")):
        resp = client.get(URL, params={"merchant_id": MERCHANT_ID, "date": "2026-03-12"})
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Resource not found"


def test_bad_start_time_is_422(client):
    with patch(f"{ROUTES}.query_availability", side_effect=InvalidArgumentError("Invalid time of day: '25:00'")):
        resp = client.get(URL, params={"merchant_id": MERCHANT_ID, "date": "2026-03-12", "start_time": "25:00"})
    assert resp.status_code == 422
