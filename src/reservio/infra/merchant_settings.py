"""Per-merchant booking configuration.

Loaded from the merchants row and passed explicitly into the deposit policy,
the cancellation policy and payment gateway selection. Columns left NULL
fall back to environment defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal

from psycopg2.extensions import cursor as PgCursor

from reservio.domain.cancellation import CancellationPolicy
from reservio.domain.deposit import MerchantDepositRule
from reservio.infra.time import default_timezone

DEFAULT_DEPOSIT_DEADLINE_MINUTES = 30


@dataclass(frozen=True)
class MerchantSettings:
    """Booking-relevant merchant configuration.

    Attributes:
        merchant_id: Tenant identifier.
        timezone: IANA zone used to turn booking date/time into instants.
        require_deposit: Merchant-wide deposit fallback switch.
        deposit_percentage: Merchant-wide deposit percentage.
        deposit_deadline_minutes: How long a pending_payment hold lives.
        cancellation_deadline_hours: Refund cut-off before the booking start.
        cancellation_refund_percentage: Share of the deposit refunded.
        min_advance_minutes: Earliest bookable start relative to now.
        mercado_pago_access_token: Real gateway credentials (None -> stub).
    """

    merchant_id: str
    timezone: str
    require_deposit: bool = False
    deposit_percentage: Decimal = Decimal(0)
    deposit_deadline_minutes: int = DEFAULT_DEPOSIT_DEADLINE_MINUTES
    cancellation_deadline_hours: int = 24
    cancellation_refund_percentage: Decimal = Decimal(100)
    min_advance_minutes: int = 0
    mercado_pago_access_token: str | None = None

    @property
    def deposit_rule(self) -> MerchantDepositRule:
        return MerchantDepositRule(
            require_deposit=self.require_deposit,
            percentage=self.deposit_percentage,
        )

    @property
    def cancellation_policy(self) -> CancellationPolicy:
        return CancellationPolicy(
            deadline_hours=self.cancellation_deadline_hours,
            refund_percentage=self.cancellation_refund_percentage,
        )


def _default_deadline_minutes() -> int:
    raw = os.environ.get("DEFAULT_DEPOSIT_DEADLINE_MINUTES", "")
    return int(raw) if raw.isdigit() else DEFAULT_DEPOSIT_DEADLINE_MINUTES


def get_merchant_settings(cur: PgCursor, merchant_id: str) -> MerchantSettings | None:
    """Load merchant settings.

    Args:
        cur: Database cursor.
        merchant_id: Merchant identifier.

    Returns:
        MerchantSettings, or None if the merchant does not exist.
    """
    cur.execute(
        """
        SELECT id, timezone, require_deposit, deposit_percentage,
               deposit_deadline_minutes, cancellation_deadline_hours,
               cancellation_refund_percentage, min_advance_minutes,
               mercado_pago_access_token
        FROM merchants
        WHERE id = %s
        """,
        (merchant_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None

    return MerchantSettings(
        merchant_id=str(row[0]),
        timezone=row[1] or default_timezone(),
        require_deposit=bool(row[2]),
        deposit_percentage=Decimal(row[3] if row[3] is not None else 0),
        deposit_deadline_minutes=row[4] if row[4] is not None else _default_deadline_minutes(),
        cancellation_deadline_hours=row[5] if row[5] is not None else 24,
        cancellation_refund_percentage=Decimal(row[6] if row[6] is not None else 100),
        min_advance_minutes=row[7] or 0,
        mercado_pago_access_token=row[8] or None,
    )
