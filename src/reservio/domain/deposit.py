"""Deposit policy.

Priority chain, first match wins:
1. Resource fixed deposit amount -> used verbatim
2. Resource deposit percentage   -> round2(total * pct / 100)
3. Merchant requires a deposit   -> round2(total * merchant_pct / 100)
4. Otherwise                     -> 0

Rounding is half-up to two decimals (currency display). The result never
exceeds the total amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class ResourceDepositRule:
    """Deposit configuration of a bookable resource."""

    fixed_amount: Decimal | None = None
    percentage: Decimal | None = None


@dataclass(frozen=True)
class MerchantDepositRule:
    """Merchant-wide fallback deposit configuration."""

    require_deposit: bool = False
    percentage: Decimal = ZERO


def round2(value: Decimal) -> Decimal:
    """Round half-up to cents."""
    return Decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP)


def _percent_of(total: Decimal, percentage: Decimal) -> Decimal:
    return round2(Decimal(total) * Decimal(percentage) / Decimal(100))


def compute_deposit(
    total_amount: Decimal,
    resource: ResourceDepositRule,
    merchant: MerchantDepositRule,
) -> Decimal:
    """Amount the customer pays up front to hold the reservation.

    Args:
        total_amount: Full price of the reservation.
        resource: Resource-level rule (takes priority).
        merchant: Merchant-level fallback.

    Returns:
        Deposit rounded to cents, 0 <= deposit <= total_amount.
    """
    total = round2(total_amount)

    if resource.fixed_amount is not None:
        deposit = round2(resource.fixed_amount)
    elif resource.percentage is not None:
        deposit = _percent_of(total, resource.percentage)
    elif merchant.require_deposit:
        deposit = _percent_of(total, merchant.percentage)
    else:
        deposit = ZERO

    if deposit < ZERO:
        return ZERO
    return min(deposit, total)
