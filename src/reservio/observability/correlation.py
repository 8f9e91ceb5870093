"""Correlation ID propagation.

The id arrives in X-Correlation-ID (or is minted by the HTTP middleware),
lives in a context variable for the duration of the request and is stamped
on every JSON log line. Scheduler-triggered jobs mint their own.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Current correlation ID (empty string outside a request or job)."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    correlation_id_var.reset(token)


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind cid (or a fresh id) for the duration of the block."""
    token = set_correlation_id(cid or generate_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        reset_correlation_id(token)

