"""Tests for role-based route mounting and correlation ids."""

from fastapi.testclient import TestClient

from reservio.api.factory import create_app
from reservio.observability.correlation import CORRELATION_ID_HEADER


def _paths(app) -> set[str]:
    return {route.path for route in app.routes}


def test_public_role_has_no_tasks():
    paths = _paths(create_app(role="public"))
    assert "/health" in paths
    assert "/public/reservations" in paths
    assert "/public/resources/{resource_id}/availability" in paths
    assert "/webhooks/mercadopago" in paths
    assert "/tasks/health" not in paths
    assert "/tasks/reservations/sweep-expired" not in paths


def test_worker_role_mounts_tasks():
    paths = _paths(create_app(role="worker"))
    assert "/tasks/health" in paths
    assert "/tasks/reservations/sweep-expired" in paths
    assert "/tasks/payments/reconcile" in paths


def test_role_from_env(monkeypatch):
    monkeypatch.setenv("APP_ROLE", "worker")
    assert "/tasks/health" in _paths(create_app())


def test_health():
    client = TestClient(create_app(role="public"))
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_correlation_id_echoed():
    client = TestClient(create_app(role="public"))
    resp = client.get("/health", headers={CORRELATION_ID_HEADER: "cid-123"})
    assert resp.headers[CORRELATION_ID_HEADER] == "cid-123"


def test_correlation_id_generated():
    client = TestClient(create_app(role="public"))
    resp = client.get("/health")
    assert resp.headers.get(CORRELATION_ID_HEADER)
