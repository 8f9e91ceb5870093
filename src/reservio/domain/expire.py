"""Expire reservation domain logic - cancel pending holds whose deposit lapsed.

Each reservation is processed in its own transaction with guards:
- the row is locked FOR UPDATE SKIP LOCKED, so a concurrent sweep (or a
  webhook holding the row) makes this run skip it instead of waiting;
- status and deadline are re-checked under the lock, so a reservation
  confirmed in the meantime is left alone.

Running two sweeps in parallel therefore cancels each reservation once.
"""

from __future__ import annotations

import logging

from reservio.domain.status import CANCELLED, PENDING_PAYMENT
from reservio.infra.db import txn
from reservio.infra.repositories.payments_repository import expire_pending_payments
from reservio.infra.repositories.reservations_repository import (
    get_reservation,
    insert_status_log,
    list_expired_pending_ids,
    update_status,
)
from reservio.infra.time import utc_now
from reservio.observability.correlation import correlation_scope, get_correlation_id

logger = logging.getLogger(__name__)

ACTOR_SWEEPER = "system:sweeper"

DEFAULT_BATCH_SIZE = 500


def expire_reservation(reservation_id: str) -> dict:
    """Cancel one lapsed pending_payment reservation.

    Returns:
        Dict with result status:
        - {"status": "skipped"} - row locked by someone else, or gone
        - {"status": "noop"} - no longer pending_payment
        - {"status": "not_expired_yet"} - deadline moved (payment retry)
        - {"status": "expired", "payments_expired": int}
    """
    with txn() as cur:
        reservation = get_reservation(cur, reservation_id, lock=True, skip_locked=True)
        if reservation is None:
            return {"status": "skipped"}

        if reservation["status"] != PENDING_PAYMENT:
            return {"status": "noop"}

        expires_at = reservation["deposit_expires_at"]
        if expires_at is not None and expires_at >= utc_now():
            return {"status": "not_expired_yet"}

        update_status(cur, reservation_id, status=CANCELLED)
        payments_expired = expire_pending_payments(cur, reservation_id)
        insert_status_log(
            cur,
            reservation_id=reservation_id,
            from_status=PENDING_PAYMENT,
            to_status=CANCELLED,
            actor=ACTOR_SWEEPER,
            reason="deposit deadline expired",
        )

    return {"status": "expired", "payments_expired": payments_expired}


def sweep_expired(*, limit: int = DEFAULT_BATCH_SIZE) -> int:
    """Cancel every pending_payment reservation past its deposit deadline.

    Invoked by an external scheduler; safe with overlapping invocations.
    A failure on one reservation is logged and the sweep moves on.

    Args:
        limit: Max reservations examined per run.

    Returns:
        Number of reservations cancelled by this run.
    """
    # Keep the caller's id (task request); mint one when run standalone
    with correlation_scope(get_correlation_id() or None):
        with txn() as cur:
            candidate_ids = list_expired_pending_ids(cur, limit=limit)

        cancelled = 0
        for reservation_id in candidate_ids:
            try:
                result = expire_reservation(reservation_id)
            except Exception:
                logger.exception(
                    "failed to expire reservation",
                    extra={"extra_fields": {"reservation_id": reservation_id}},
                )
                continue

            if result["status"] == "expired":
                cancelled += 1

        logger.info(
            "expired reservations swept",
            extra={
                "extra_fields": {
                    "candidates": len(candidate_ids),
                    "cancelled": cancelled,
                },
            },
        )
    return cancelled
