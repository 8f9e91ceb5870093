"""Catalog repository - read-only resource, staff and staff-block lookups.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from reservio.domain.deposit import ResourceDepositRule

PRICING_FULL_DAY = "full_day"


@dataclass(frozen=True)
class Resource:
    """Bookable resource (boat, court, service slot) configuration."""

    id: str
    merchant_id: str
    name: str
    pricing_type: str
    duration_minutes: int | None
    price: Decimal
    buffer_before_minutes: int
    buffer_after_minutes: int
    max_concurrent_bookings: int
    deposit_amount: Decimal | None
    deposit_percentage: Decimal | None
    max_people: int | None = None

    @property
    def deposit_rule(self) -> ResourceDepositRule:
        return ResourceDepositRule(
            fixed_amount=self.deposit_amount,
            percentage=self.deposit_percentage,
        )

    @property
    def is_full_day(self) -> bool:
        return self.pricing_type == PRICING_FULL_DAY or not self.duration_minutes

    def admits(self, people_count: int) -> bool:
        """True when people_count fits the resource (no limit when max_people is unset)."""
        return self.max_people is None or people_count <= self.max_people


def get_resource(cur: PgCursor, *, merchant_id: str, resource_id: str) -> Resource | None:
    """Get an active resource owned by merchant_id."""
    cur.execute(
        """
        SELECT id, merchant_id, name, pricing_type, duration_minutes, price,
               buffer_before_minutes, buffer_after_minutes,
               max_concurrent_bookings, deposit_amount, deposit_percentage,
               max_people
        FROM resources
        WHERE id = %s AND merchant_id = %s AND active = true
        """,
        (resource_id, merchant_id),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return Resource(
        id=str(row[0]),
        merchant_id=str(row[1]),
        name=row[2],
        pricing_type=row[3],
        duration_minutes=row[4],
        price=Decimal(row[5]),
        buffer_before_minutes=row[6] or 0,
        buffer_after_minutes=row[7] or 0,
        max_concurrent_bookings=row[8] or 1,
        deposit_amount=Decimal(row[9]) if row[9] is not None else None,
        deposit_percentage=Decimal(row[10]) if row[10] is not None else None,
        max_people=row[11],
    )


def get_max_concurrent_bookings(cur: PgCursor, resource_id: str) -> int:
    """Concurrency limit for a resource (default 1 when unset or missing)."""
    cur.execute(
        "SELECT max_concurrent_bookings FROM resources WHERE id = %s",
        (resource_id,),
    )
    row = cur.fetchone()
    if row is None or row[0] is None:
        return 1
    return max(int(row[0]), 1)


def staff_exists(cur: PgCursor, *, merchant_id: str, staff_id: str) -> bool:
    """Check the staff member exists, is active and belongs to the merchant."""
    cur.execute(
        """
        SELECT 1 FROM staff_members
        WHERE id = %s AND merchant_id = %s AND active = true
        """,
        (staff_id, merchant_id),
    )
    return cur.fetchone() is not None


def find_staff_block(
    cur: PgCursor,
    *,
    staff_id: str,
    starts_at: datetime,
    ends_at: datetime,
) -> str | None:
    """Return the id of a block overlapping [starts_at, ends_at), if any."""
    cur.execute(
        """
        SELECT id FROM staff_blocks
        WHERE staff_id = %s
          AND starts_at < %s
          AND ends_at > %s
        ORDER BY starts_at
        LIMIT 1
        """,
        (staff_id, ends_at, starts_at),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None
