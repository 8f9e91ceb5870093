"""Payments repository - persistence for deposit payment attempts.

Uses raw SQL with psycopg2 (no ORM). A reservation may own several payment
rows (retries); at most one of them is ever 'approved' (partial unique index).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

from psycopg2.extensions import cursor as PgCursor

from reservio.infra.db import fetchone, for_update

VALID_STATUSES = {"pending", "approved", "rejected", "refunded", "expired"}

_COLUMNS = """
    id, reservation_id, merchant_id, amount, status, provider,
    provider_ref, qr_code, copy_paste_code, expires_at, paid_at, created_at
"""


def _row_to_payment(row: Sequence[Any]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "reservation_id": str(row[1]),
        "merchant_id": str(row[2]),
        "amount": Decimal(row[3]),
        "status": row[4],
        "provider": row[5],
        "provider_ref": row[6],
        "qr_code": row[7],
        "copy_paste_code": row[8],
        "expires_at": row[9],
        "paid_at": row[10],
        "created_at": row[11],
    }


def insert_payment(
    cur: PgCursor,
    *,
    reservation_id: str,
    merchant_id: str,
    amount: Decimal,
    provider: str,
    provider_ref: str,
    qr_code: str | None,
    copy_paste_code: str | None,
    expires_at: datetime | None,
) -> str:
    """Insert a pending payment attempt and return its id.

    Idempotent on (provider, provider_ref): replaying the same provider
    response returns the existing row id.
    """
    cur.execute(
        """
        INSERT INTO payments (
            reservation_id, merchant_id, amount, status, payment_method,
            provider, provider_ref, qr_code, copy_paste_code, expires_at
        )
        VALUES (%s, %s, %s, 'pending', 'pix', %s, %s, %s, %s, %s)
        ON CONFLICT (provider, provider_ref) DO NOTHING
        RETURNING id
        """,
        (
            reservation_id,
            merchant_id,
            amount,
            provider,
            provider_ref,
            qr_code,
            copy_paste_code,
            expires_at,
        ),
    )
    row = cur.fetchone()
    if row is not None:
        return str(row[0])

    cur.execute(
        "SELECT id FROM payments WHERE provider = %s AND provider_ref = %s",
        (provider, provider_ref),
    )
    return str(cur.fetchone()[0])


def get_payment_by_provider_ref(
    cur: PgCursor,
    provider_ref: str,
    *,
    lock: bool = False,
) -> dict[str, Any] | None:
    """Find a payment by the provider's reference."""
    query = f"SELECT {_COLUMNS} FROM payments WHERE provider_ref = %s"
    if lock:
        row = for_update(cur, query, (provider_ref,))
    else:
        row = fetchone(cur, query, (provider_ref,))
    return _row_to_payment(row) if row else None


def get_latest_payment(cur: PgCursor, reservation_id: str) -> dict[str, Any] | None:
    """Most recent payment attempt for a reservation."""
    cur.execute(
        f"""
        SELECT {_COLUMNS} FROM payments
        WHERE reservation_id = %s
        ORDER BY created_at DESC
        LIMIT 1
        """,
        (reservation_id,),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def count_payments(cur: PgCursor, reservation_id: str) -> int:
    cur.execute(
        "SELECT count(*) FROM payments WHERE reservation_id = %s",
        (reservation_id,),
    )
    return int(cur.fetchone()[0])


def has_approved_payment(
    cur: PgCursor,
    reservation_id: str,
    *,
    exclude_payment_id: str | None = None,
) -> bool:
    """Whether some payment for the reservation is already approved."""
    if exclude_payment_id is not None:
        cur.execute(
            """
            SELECT 1 FROM payments
            WHERE reservation_id = %s AND status = 'approved' AND id != %s
            LIMIT 1
            """,
            (reservation_id, exclude_payment_id),
        )
    else:
        cur.execute(
            """
            SELECT 1 FROM payments
            WHERE reservation_id = %s AND status = 'approved'
            LIMIT 1
            """,
            (reservation_id,),
        )
    return cur.fetchone() is not None


def mark_approved(cur: PgCursor, payment_id: str, *, paid_at: datetime) -> None:
    cur.execute(
        """
        UPDATE payments
        SET status = 'approved', paid_at = %s, updated_at = now()
        WHERE id = %s
        """,
        (paid_at, payment_id),
    )


def update_payment_status(cur: PgCursor, *, payment_id: str, status: str) -> None:
    """Update payment status.

    Raises:
        ValueError: If status is not in VALID_STATUSES.
    """
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid status: {status}. Must be one of {VALID_STATUSES}")

    cur.execute(
        "UPDATE payments SET status = %s, updated_at = now() WHERE id = %s",
        (status, payment_id),
    )


def expire_pending_payments(cur: PgCursor, reservation_id: str) -> int:
    """Mark every still-pending attempt of a reservation as expired.

    Returns:
        Number of rows updated.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'expired', updated_at = now()
        WHERE reservation_id = %s AND status = 'pending'
        """,
        (reservation_id,),
    )
    return cur.rowcount
