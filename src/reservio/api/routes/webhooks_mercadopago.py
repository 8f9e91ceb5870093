"""Mercado Pago webhook - public endpoint for payment notifications.

Security rules:
- Validate x-signature on every request.
- Never log payload or signature header.
- Notifications are hints: the authoritative status is fetched from the
  provider before reconciling.
- Return 5xx when the provider query fails (so Mercado Pago retries).
"""

from __future__ import annotations

import os

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from reservio.domain.errors import BookingBusyError, ReservationError, UpstreamPaymentError
from reservio.domain.payments import handle_provider_notification
from reservio.mercadopago.webhook import (
    InvalidPayloadError,
    InvalidSignatureError,
    extract_notification,
    verify_signature,
)
from reservio.observability.correlation import get_correlation_id
from reservio.observability.logging import get_logger
from reservio.observability.redaction import safe_log_context

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


def _get_webhook_secret() -> str:
    secret = os.environ.get("MERCADOPAGO_WEBHOOK_SECRET", "")
    if not secret:
        raise RuntimeError("MERCADOPAGO_WEBHOOK_SECRET not configured")
    return secret


@router.post("/webhooks/mercadopago")
async def mercadopago_webhook(request: Request) -> Response:
    """Receive Mercado Pago payment notifications.

    Returns:
        200 with the reconcile result (including "ignored" for unknown refs
            and non-payment topics).
        400 if the payload or signature is invalid.
        500 if the webhook secret is not configured.
        502 if the provider status query failed.
    """
    correlation_id = get_correlation_id()
    payload_bytes = await request.body()

    try:
        webhook_secret = _get_webhook_secret()
    except RuntimeError:
        logger.error(
            "webhook secret not configured",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="server configuration error")

    try:
        notification = extract_notification(payload_bytes, dict(request.query_params))
        verify_signature(
            signature_header=request.headers.get("x-signature", ""),
            request_id=request.headers.get("x-request-id"),
            data_id=request.query_params.get("data.id") or notification.payment_id,
            secret=webhook_secret,
        )
    except InvalidPayloadError:
        logger.warning(
            "mercadopago payload invalid",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload")
    except InvalidSignatureError:
        logger.warning(
            "mercadopago signature validation failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid signature")

    if notification.topic and notification.topic != "payment":
        return JSONResponse(status_code=200, content={"ok": True, "status": "ignored"})

    logger.info(
        "mercadopago webhook received",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                topic=notification.topic,
                action=notification.action,
            )
        },
    )

    try:
        result = handle_provider_notification(notification.payment_id)
    except UpstreamPaymentError:
        return Response(status_code=502, content="provider unavailable")
    except BookingBusyError:
        return Response(status_code=503, content="booking busy")
    except ReservationError as exc:
        logger.warning(
            "mercadopago notification rejected",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(exc))},
        )
        return JSONResponse(status_code=200, content={"ok": False, "status": "rejected"})

    return JSONResponse(status_code=200, content={"ok": True, **result})
