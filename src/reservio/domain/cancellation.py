"""Cancellation policy - refund eligibility when a reservation is cancelled.

The policy only REPORTS the refundable amount; moving money back to the
customer is the payment collaborator's job.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from reservio.domain.deposit import ZERO, round2
from reservio.infra.time import utc_now


@dataclass(frozen=True)
class CancellationPolicy:
    """Merchant cancellation terms."""

    deadline_hours: int = 24
    refund_percentage: Decimal = Decimal(100)


@dataclass(frozen=True)
class RefundInfo:
    """Outcome of applying the cancellation policy."""

    refund_amount: Decimal
    hours_until_booking: float
    within_deadline: bool

    def as_dict(self) -> dict:
        return {
            "refund_amount": str(self.refund_amount),
            "hours_until_booking": round(self.hours_until_booking, 2),
            "within_deadline": self.within_deadline,
        }


def hours_until(scheduled_at: datetime, now: datetime | None = None) -> float:
    """Hours between now and the scheduled start (negative if in the past)."""
    current = now or utc_now()
    return (scheduled_at - current).total_seconds() / 3600


def calculate_refund(
    deposit_amount: Decimal,
    scheduled_at: datetime,
    policy: CancellationPolicy,
    now: datetime | None = None,
) -> RefundInfo:
    """Apply the cancellation policy.

    Refund = round2(deposit * refund_percentage / 100) when the booking is at
    least deadline_hours away, otherwise 0.

    Args:
        deposit_amount: Deposit held for the reservation.
        scheduled_at: Timezone-aware scheduled start instant.
        policy: Merchant cancellation terms.
        now: Override for the current instant (tests).

    Returns:
        RefundInfo with the eligible amount.
    """
    remaining = hours_until(scheduled_at, now)
    within_deadline = remaining >= policy.deadline_hours

    if within_deadline and deposit_amount > 0:
        refund = round2(Decimal(deposit_amount) * Decimal(policy.refund_percentage) / Decimal(100))
    else:
        refund = ZERO

    return RefundInfo(
        refund_amount=refund,
        hours_until_booking=remaining,
        within_deadline=within_deadline,
    )


def normalize_phone(phone: str | None) -> str:
    """Digits only: "+55 (11) 99999-8888" -> "5511999998888"."""
    return re.sub(r"\D", "", phone or "")


def phone_matches(supplied: str | None, on_file: str | None) -> bool:
    """Customer identity check for self-service actions."""
    supplied_digits = normalize_phone(supplied)
    return bool(supplied_digits) and supplied_digits == normalize_phone(on_file)
