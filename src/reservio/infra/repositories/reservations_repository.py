"""Reservations repository - persistence for reservation rows.

Uses raw SQL with psycopg2 (no ORM). Reservations are never deleted; they
only move to a terminal status.
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Sequence

from psycopg2.extensions import cursor as PgCursor

from reservio.infra.db import fetchall, fetchone, for_update

_COLUMNS = """
    id, merchant_id, resource_id, staff_id, customer_name, customer_phone,
    customer_email, booking_date, start_time, end_time, status,
    total_amount, deposit_amount, payment_ref, qr_code, copy_paste_code,
    deposit_expires_at, notes, internal_notes, created_at, people_count
"""


def _row_to_reservation(row: Sequence[Any]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "merchant_id": str(row[1]),
        "resource_id": str(row[2]),
        "staff_id": str(row[3]) if row[3] else None,
        "customer_name": row[4],
        "customer_phone": row[5],
        "customer_email": row[6],
        "booking_date": row[7],
        "start_time": row[8],
        "end_time": row[9],
        "status": row[10],
        "total_amount": Decimal(row[11]),
        "deposit_amount": Decimal(row[12]),
        "payment_ref": row[13],
        "qr_code": row[14],
        "copy_paste_code": row[15],
        "deposit_expires_at": row[16],
        "notes": row[17],
        "internal_notes": row[18],
        "created_at": row[19],
        "people_count": row[20],
    }


def get_reservation(
    cur: PgCursor,
    reservation_id: str,
    *,
    merchant_id: str | None = None,
    lock: bool = False,
    skip_locked: bool = False,
) -> dict[str, Any] | None:
    """Get a reservation by id.

    Args:
        cur: Database cursor.
        reservation_id: Reservation UUID.
        merchant_id: Optional tenant filter.
        lock: Append FOR UPDATE.
        skip_locked: With lock, return None instead of waiting on a locked row.

    Returns:
        Reservation dict or None.
    """
    conditions = ["id = %s"]
    params: list[Any] = [reservation_id]
    if merchant_id is not None:
        conditions.append("merchant_id = %s")
        params.append(merchant_id)

    query = f"SELECT {_COLUMNS} FROM reservations WHERE {' AND '.join(conditions)}"
    if lock:
        row = for_update(cur, query, params, skip_locked=skip_locked)
    else:
        row = fetchone(cur, query, params)
    return _row_to_reservation(row) if row else None


def insert_reservation(
    cur: PgCursor,
    *,
    merchant_id: str,
    resource_id: str,
    staff_id: str | None,
    customer_name: str,
    customer_phone: str,
    customer_email: str | None,
    booking_date: date,
    start_time: time | None,
    end_time: time | None,
    status: str,
    total_amount: Decimal,
    deposit_amount: Decimal,
    deposit_expires_at: datetime | None,
    notes: str | None = None,
    people_count: int = 1,
) -> str:
    """Insert a reservation row and return its id."""
    cur.execute(
        """
        INSERT INTO reservations (
            merchant_id, resource_id, staff_id, customer_name, customer_phone,
            customer_email, booking_date, start_time, end_time, status,
            total_amount, deposit_amount, deposit_expires_at, notes, people_count
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            merchant_id,
            resource_id,
            staff_id,
            customer_name,
            customer_phone,
            customer_email,
            booking_date,
            start_time,
            end_time,
            status,
            total_amount,
            deposit_amount,
            deposit_expires_at,
            notes,
            people_count,
        ),
    )
    return str(cur.fetchone()[0])


def update_status(
    cur: PgCursor,
    reservation_id: str,
    *,
    status: str,
    internal_notes: str | None = None,
) -> None:
    """Set status (and optionally internal notes)."""
    if internal_notes is not None:
        cur.execute(
            """
            UPDATE reservations
            SET status = %s, internal_notes = %s, updated_at = now()
            WHERE id = %s
            """,
            (status, internal_notes, reservation_id),
        )
    else:
        cur.execute(
            "UPDATE reservations SET status = %s, updated_at = now() WHERE id = %s",
            (status, reservation_id),
        )


def reopen_for_payment(
    cur: PgCursor,
    reservation_id: str,
    *,
    deposit_expires_at: datetime,
) -> None:
    """Move back to pending_payment with a fresh deadline, clearing the old payment link."""
    cur.execute(
        """
        UPDATE reservations
        SET status = 'pending_payment',
            deposit_expires_at = %s,
            payment_ref = NULL,
            qr_code = NULL,
            copy_paste_code = NULL,
            updated_at = now()
        WHERE id = %s
        """,
        (deposit_expires_at, reservation_id),
    )


def update_schedule(
    cur: PgCursor,
    reservation_id: str,
    *,
    booking_date: date,
    start_time: time | None,
    end_time: time | None,
    staff_id: str | None,
) -> None:
    cur.execute(
        """
        UPDATE reservations
        SET booking_date = %s, start_time = %s, end_time = %s,
            staff_id = %s, updated_at = now()
        WHERE id = %s
        """,
        (booking_date, start_time, end_time, staff_id, reservation_id),
    )


def attach_payment(
    cur: PgCursor,
    reservation_id: str,
    *,
    payment_ref: str,
    qr_code: str | None,
    copy_paste_code: str | None,
) -> None:
    """Link the current payment attempt to the reservation."""
    cur.execute(
        """
        UPDATE reservations
        SET payment_ref = %s, qr_code = %s, copy_paste_code = %s,
            updated_at = now()
        WHERE id = %s
        """,
        (payment_ref, qr_code, copy_paste_code, reservation_id),
    )


def list_overlap_candidates(
    cur: PgCursor,
    *,
    dates: Sequence[date],
    active_statuses: Sequence[str],
    resource_id: str | None = None,
    staff_id: str | None = None,
    exclude_reservation_id: str | None = None,
    lock: bool = False,
) -> list[tuple[str, date, time | None, time | None]]:
    """Active reservations for a staff member or resource on the given dates.

    Exactly one of resource_id / staff_id must be provided. Pending-payment
    rows whose deposit deadline already passed are not capacity holders.
    With lock=True the rows are also locked FOR UPDATE.

    Returns:
        List of (id, booking_date, start_time, end_time).
    """
    if (resource_id is None) == (staff_id is None):
        raise ValueError("Provide exactly one of resource_id or staff_id")

    conditions = [
        "staff_id = %s" if staff_id is not None else "resource_id = %s",
        "booking_date = ANY(%s::date[])",
        "status = ANY(%s::reservation_status[])",
        "NOT (status = 'pending_payment' AND deposit_expires_at < now())",
    ]
    params: list[Any] = [
        staff_id if staff_id is not None else resource_id,
        list(dates),
        list(active_statuses),
    ]

    if exclude_reservation_id is not None:
        conditions.append("id != %s")
        params.append(exclude_reservation_id)

    suffix = " FOR UPDATE" if lock else ""
    cur.execute(
        f"""
        SELECT id, booking_date, start_time, end_time
        FROM reservations
        WHERE {' AND '.join(conditions)}
        ORDER BY booking_date, start_time NULLS FIRST
        {suffix}
        """,
        params,
    )
    return [(str(r[0]), r[1], r[2], r[3]) for r in cur.fetchall()]


def list_expired_pending_ids(cur: PgCursor, *, limit: int) -> list[str]:
    """Pending-payment reservations whose deposit deadline has passed."""
    rows = fetchall(
        cur,
        """
        SELECT id
        FROM reservations
        WHERE status = 'pending_payment'
          AND deposit_expires_at < now()
        ORDER BY deposit_expires_at
        LIMIT %s
        """,
        (limit,),
    )
    return [str(r[0]) for r in rows]


def list_reservations(
    cur: PgCursor,
    *,
    merchant_id: str,
    from_date: date | None = None,
    to_date: date | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[dict[str, Any]]:
    """Merchant dashboard listing, newest booking dates first."""
    conditions = ["merchant_id = %s"]
    params: list[Any] = [merchant_id]

    if from_date:
        conditions.append("booking_date >= %s")
        params.append(from_date)
    if to_date:
        conditions.append("booking_date <= %s")
        params.append(to_date)
    if status:
        conditions.append("status = %s")
        params.append(status)

    params.append(limit)
    rows = fetchall(
        cur,
        f"""
        SELECT {_COLUMNS}
        FROM reservations
        WHERE {' AND '.join(conditions)}
        ORDER BY booking_date DESC, created_at DESC
        LIMIT %s
        """,
        params,
    )
    return [_row_to_reservation(r) for r in rows]


def insert_status_log(
    cur: PgCursor,
    *,
    reservation_id: str,
    from_status: str | None,
    to_status: str,
    actor: str,
    reason: str | None = None,
) -> None:
    """Append an audit row for a status change."""
    cur.execute(
        """
        INSERT INTO reservation_status_logs
            (reservation_id, from_status, to_status, actor, reason)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (reservation_id, from_status, to_status, actor, reason),
    )
