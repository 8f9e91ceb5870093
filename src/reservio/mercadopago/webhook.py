"""Mercado Pago webhook signature validation and payload parsing.

Purpose:
- Validate the x-signature header (HMAC-SHA256 over a manifest built from
  data.id, x-request-id and the ts from the header).
- Extract the payment id the notification refers to.
- Never log payload or signature.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


@dataclass
class MercadoPagoNotification:
    """Minimal extracted data from a Mercado Pago notification."""

    topic: str
    action: str | None
    payment_id: str


def parse_signature_header(header: str) -> tuple[str, str]:
    """Split "ts=1704908010,v1=abc..." into (ts, v1).

    Raises:
        InvalidSignatureError: If either part is missing.
    """
    parts: dict[str, str] = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()

    ts = parts.get("ts")
    v1 = parts.get("v1")
    if not ts or not v1:
        raise InvalidSignatureError("Malformed x-signature header")
    return ts, v1


def build_manifest(data_id: str, request_id: str | None, ts: str) -> str:
    """Signed template: id:{data.id};request-id:{x-request-id};ts:{ts};

    Alphanumeric ids are lowercased, as the provider does when signing.
    Parts whose value is absent are omitted.
    """
    manifest = ""
    if data_id:
        manifest += f"id:{data_id.lower() if data_id.isalnum() else data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    return manifest


def verify_signature(
    *,
    signature_header: str,
    request_id: str | None,
    data_id: str,
    secret: str,
) -> None:
    """Check the x-signature header.

    Raises:
        InvalidSignatureError: If the signature is malformed or does not match.
    """
    ts, received = parse_signature_header(signature_header)
    manifest = build_manifest(data_id, request_id, ts)
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, received):
        logger.warning("mercadopago webhook signature verification failed")
        raise InvalidSignatureError("Invalid signature")


def extract_notification(
    payload_bytes: bytes,
    query_params: dict[str, str] | None = None,
) -> MercadoPagoNotification:
    """Parse a notification body; query params (data.id, type) act as fallback.

    Raises:
        InvalidPayloadError: If the body is not JSON or has no payment id.
    """
    query = query_params or {}
    body: dict[str, Any] = {}
    if payload_bytes:
        try:
            parsed = json.loads(payload_bytes)
        except ValueError as e:
            logger.warning("mercadopago webhook payload parsing failed")
            raise InvalidPayloadError("Invalid payload") from e
        if not isinstance(parsed, dict):
            raise InvalidPayloadError("Invalid payload")
        body = parsed

    data = body.get("data") or {}
    payment_id = data.get("id") if isinstance(data, dict) else None
    payment_id = payment_id or query.get("data.id") or query.get("id")
    if not payment_id:
        raise InvalidPayloadError("Missing data.id")

    topic = body.get("type") or body.get("topic") or query.get("type") or query.get("topic") or ""

    return MercadoPagoNotification(
        topic=str(topic),
        action=body.get("action"),
        payment_id=str(payment_id),
    )
