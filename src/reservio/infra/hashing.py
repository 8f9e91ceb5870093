"""Hashing utilities for lock keys and idempotency keys."""

import hashlib


def lock_key(value: str) -> int:
    """Map an arbitrary string to a signed 64-bit Postgres advisory lock key.

    Uses the first 8 bytes of BLAKE2b, so keys are stable across processes
    and Python versions (unlike hash()).

    Args:
        value: Key material, e.g. "staff-1:2025-03-10".

    Returns:
        Integer in the bigint range accepted by pg_advisory_xact_lock().
    """
    digest = hashlib.blake2b(value.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def idempotency_key(*parts: str) -> str:
    """Deterministic idempotency key for provider calls.

    Args:
        parts: Components joined with ":" before hashing.

    Returns:
        Hex SHA-256 digest truncated to 32 chars.
    """
    material = ":".join(parts).encode("utf-8")
    return hashlib.sha256(material).hexdigest()[:32]
