"""Shared test helper functions for Reservio tests.

Regular functions (not fixtures) importable from any test module.
"""

from __future__ import annotations

import base64
import time
from contextlib import contextmanager
from datetime import date, datetime, time as dtime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from reservio.infra.merchant_settings import MerchantSettings
from reservio.infra.repositories.catalog_repository import Resource

MERCHANT_ID = "11111111-1111-1111-1111-111111111111"
RESOURCE_ID = "22222222-2222-2222-2222-222222222222"
STAFF_ID = "33333333-3333-3333-3333-333333333333"
RESERVATION_ID = "44444444-4444-4444-4444-444444444444"

# 2026-03-10 12:00 UTC == 09:00 in America/Sao_Paulo
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_txn(cur=None):
    """Build a txn() replacement yielding a shared MagicMock cursor."""
    mock_cur = cur if cur is not None else MagicMock()

    @contextmanager
    def _txn(*args, **kwargs):
        yield mock_cur

    return _txn, mock_cur


def make_resource(**overrides) -> Resource:
    fields = {
        "id": RESOURCE_ID,
        "merchant_id": MERCHANT_ID,
        "name": "Lancha 32",
        "pricing_type": "hourly",
        "duration_minutes": 60,
        "price": Decimal("200.00"),
        "buffer_before_minutes": 0,
        "buffer_after_minutes": 0,
        "max_concurrent_bookings": 1,
        "deposit_amount": None,
        "deposit_percentage": None,
    }
    fields.update(overrides)
    return Resource(**fields)


def make_settings(**overrides) -> MerchantSettings:
    fields = {
        "merchant_id": MERCHANT_ID,
        "timezone": "America/Sao_Paulo",
    }
    fields.update(overrides)
    return MerchantSettings(**fields)


def make_reservation(**overrides) -> dict:
    row = {
        "id": RESERVATION_ID,
        "merchant_id": MERCHANT_ID,
        "resource_id": RESOURCE_ID,
        "staff_id": None,
        "customer_name": "Maria Souza",
        "customer_phone": "+55 11 99999-8888",
        "customer_email": None,
        "booking_date": date(2026, 3, 12),
        "start_time": dtime(14, 0),
        "end_time": dtime(15, 0),
        "status": "pending_payment",
        "total_amount": Decimal("200.00"),
        "deposit_amount": Decimal("60.00"),
        "payment_ref": None,
        "qr_code": None,
        "copy_paste_code": None,
        "deposit_expires_at": datetime(2026, 3, 10, 12, 30, tzinfo=timezone.utc),
        "notes": None,
        "internal_notes": None,
        "created_at": datetime(2026, 3, 10, 11, 55, tzinfo=timezone.utc),
        "people_count": 1,
    }
    row.update(overrides)
    return row


def make_payment(**overrides) -> dict:
    row = {
        "id": "55555555-5555-5555-5555-555555555555",
        "reservation_id": RESERVATION_ID,
        "merchant_id": MERCHANT_ID,
        "amount": Decimal("60.00"),
        "status": "pending",
        "provider": "stub",
        "provider_ref": f"stub_{RESERVATION_ID}_1",
        "qr_code": None,
        "copy_paste_code": None,
        "expires_at": None,
        "paid_at": None,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


def _generate_rsa_keypair():
    """Generate RSA key pair for test JWT signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    public_key = private_key.public_key()
    return private_key, public_key


def _create_jwks(public_key, kid: str = "test-key-1") -> dict:
    """Create JWKS from public key."""
    public_numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return (
            base64.urlsafe_b64encode(n.to_bytes(byte_length, "big"))
            .rstrip(b"=")
            .decode()
        )

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(public_numbers.n),
                "e": int_to_base64(public_numbers.e),
            }
        ]
    }


def _create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = "https://auth.example.com",
    aud: str = "reservio-api",
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    """Create signed JWT for testing."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp

    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})
