"""Booking state machine.

Canonical status values are lowercase snake_case everywhere (DB enum, API,
logs). Legal transitions:

    pending_payment -> confirmed | cancelled
    confirmed       -> in_progress | cancelled | completed
    in_progress     -> completed | no_show
    completed, cancelled, no_show: terminal
"""

from __future__ import annotations

from decimal import Decimal

from reservio.domain.errors import InvalidTransitionError

PENDING_PAYMENT = "pending_payment"
CONFIRMED = "confirmed"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"
NO_SHOW = "no_show"

ALL_STATUSES = (PENDING_PAYMENT, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING_PAYMENT: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({IN_PROGRESS, CANCELLED, COMPLETED}),
    IN_PROGRESS: frozenset({COMPLETED, NO_SHOW}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
    NO_SHOW: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if not targets)

# Statuses that occupy capacity in conflict checks
ACTIVE_STATUSES = (PENDING_PAYMENT, CONFIRMED, IN_PROGRESS, COMPLETED)

# Cancelling from these computes a refund via the cancellation policy
REFUNDABLE_SOURCES = frozenset({PENDING_PAYMENT, CONFIRMED})


def can_transition(source: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


def assert_transition(source: str, target: str) -> None:
    """Raise InvalidTransitionError unless source -> target is in the table.

    Unknown statuses (either side) are rejected the same way.
    """
    if not can_transition(source, target):
        raise InvalidTransitionError(source, target)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def initial_status(deposit_amount: Decimal) -> str:
    """A zero deposit books straight into confirmed; otherwise payment gates it."""
    return CONFIRMED if deposit_amount <= 0 else PENDING_PAYMENT
