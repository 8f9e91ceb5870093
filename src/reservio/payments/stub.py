"""Deterministic stand-in gateway for merchants without provider credentials.

Never fails and never touches the network. Charges stay 'pending' until a
reconcile task reports otherwise.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from reservio.infra.time import utc_now
from reservio.payments.gateway import DepositIntent, DepositRequest

logger = logging.getLogger(__name__)

PROVIDER_STUB = "stub"


class StubGateway:
    provider = PROVIDER_STUB

    def __init__(self, now: datetime | None = None) -> None:
        self._now = now

    def create_deposit(self, request: DepositRequest) -> DepositIntent:
        now = self._now or utc_now()
        reservation_id = request.reservation_id

        intent = DepositIntent(
            provider=PROVIDER_STUB,
            provider_ref=f"stub_{reservation_id}_{request.attempt}",
            qr_code=f"data:image/png;base64,PIX-{reservation_id}",
            copy_paste_code=(
                f"00020126580014BR.GOV.BCB.PIX0136{reservation_id}"
                f"520400005303986540{request.amount:.2f}5802BR"
            ),
            expires_at=now + timedelta(minutes=request.expires_in_minutes),
        )
        logger.info(
            "stub deposit created",
            extra={
                "extra_fields": {
                    "reservation_id": reservation_id,
                    "provider_ref": intent.provider_ref,
                },
            },
        )
        return intent

    def query_status(self, provider_ref: str) -> str:
        return "pending"
