"""Payment gateway capability.

Both the real provider and the stub satisfy PaymentGateway; callers pick one
per merchant (see selection.gateway_for_merchant) and never branch on which
is active afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

# Statuses a provider may report; fed verbatim into reconciliation
REPORTED_STATUSES = ("pending", "approved", "rejected", "cancelled", "expired")

DEFAULT_PAYMENT_TTL_MINUTES = 30


@dataclass(frozen=True)
class DepositRequest:
    """Deposit collection request for one reservation attempt."""

    reservation_id: str
    amount: Decimal
    customer_name: str
    customer_phone: str
    customer_email: str | None = None
    attempt: int = 1
    expires_in_minutes: int = DEFAULT_PAYMENT_TTL_MINUTES


@dataclass(frozen=True)
class DepositIntent:
    """Provider response: where and how the customer pays."""

    provider: str
    provider_ref: str
    qr_code: str | None
    copy_paste_code: str | None
    expires_at: datetime

    def as_dict(self) -> dict:
        return {
            "provider": self.provider,
            "provider_ref": self.provider_ref,
            "qr_code": self.qr_code,
            "copy_paste_code": self.copy_paste_code,
            "expires_at": self.expires_at.isoformat(),
        }


class PaymentGateway(Protocol):
    """What the payment orchestrator needs from a provider."""

    provider: str

    def create_deposit(self, request: DepositRequest) -> DepositIntent:
        """Create a PIX charge for the deposit.

        Raises:
            UpstreamPaymentError: Network failure or malformed response.
        """
        ...

    def query_status(self, provider_ref: str) -> str:
        """Authoritative status for a charge, one of REPORTED_STATUSES."""
        ...
