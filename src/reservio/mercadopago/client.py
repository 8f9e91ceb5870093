"""Thin Mercado Pago client for PIX deposit charges.

Purpose:
- Encapsulate provider HTTP calls so domain code never builds requests itself.
- Send a deterministic X-Idempotency-Key so a retried call cannot double-charge.
- Never log payer data or full provider payloads (only ids and statuses).
"""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any

import requests

from reservio.domain.errors import UpstreamPaymentError
from reservio.infra.hashing import idempotency_key
from reservio.infra.time import utc_now
from reservio.payments.gateway import DepositIntent, DepositRequest

logger = logging.getLogger(__name__)

PROVIDER_MERCADO_PAGO = "mercado_pago"

DEFAULT_API_BASE = "https://api.mercadopago.com"
DEFAULT_TIMEOUT_SECONDS = 15

# Provider status -> reconciliation status
_STATUS_MAP = {
    "approved": "approved",
    "rejected": "rejected",
    "cancelled": "cancelled",
    "expired": "expired",
}


def _api_base() -> str:
    return os.environ.get("MERCADOPAGO_API_BASE", DEFAULT_API_BASE).rstrip("/")


def _timeout() -> float:
    raw = os.environ.get("MERCADOPAGO_TIMEOUT_SECONDS", "")
    try:
        return float(raw) if raw else DEFAULT_TIMEOUT_SECONDS
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS


def _split_name(full_name: str) -> tuple[str, str]:
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def map_provider_status(status: str | None) -> str:
    """Collapse Mercado Pago statuses (in_process, authorized...) onto ours."""
    return _STATUS_MAP.get(status or "", "pending")


class MercadoPagoClient:
    """PaymentGateway backed by the Mercado Pago Payments API.

    Usage:
        client = MercadoPagoClient(access_token="APP_USR-...")
        intent = client.create_deposit(request)
        print(intent.provider_ref, intent.copy_paste_code)
    """

    provider = PROVIDER_MERCADO_PAGO

    def __init__(
        self,
        access_token: str,
        *,
        api_base: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        if not access_token:
            raise RuntimeError("Mercado Pago access token not provided.")
        self._access_token = access_token
        self._api_base = api_base or _api_base()
        self._timeout = timeout or _timeout()
        self._http = session or requests.Session()

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
            **extra,
        }

    def create_deposit(self, request: DepositRequest) -> DepositIntent:
        """Create a PIX payment for the deposit.

        Args:
            request: Deposit request.

        Returns:
            DepositIntent with the provider payment id and PIX payloads.

        Raises:
            UpstreamPaymentError: Transport error, non-2xx response or a
                response without a payment id.
        """
        expires_at = utc_now() + timedelta(minutes=request.expires_in_minutes)
        first_name, last_name = _split_name(request.customer_name)

        payload: dict[str, Any] = {
            "transaction_amount": float(request.amount),
            "description": f"Reserva #{request.reservation_id}",
            "payment_method_id": "pix",
            "payer": {
                "email": request.customer_email
                or f"{request.customer_phone}@placeholder.com",
                "first_name": first_name,
                "last_name": last_name,
            },
            "date_of_expiration": expires_at.isoformat(timespec="milliseconds"),
            "external_reference": request.reservation_id,
        }
        notification_url = os.environ.get("MERCADOPAGO_NOTIFICATION_URL")
        if notification_url:
            payload["notification_url"] = notification_url

        key = idempotency_key(request.reservation_id, "deposit", str(request.attempt))

        try:
            response = self._http.post(
                f"{self._api_base}/v1/payments",
                json=payload,
                headers=self._headers(**{"X-Idempotency-Key": key}),
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.error(
                "mercadopago create payment failed",
                extra={
                    "extra_fields": {
                        "reservation_id": request.reservation_id,
                        "error": type(e).__name__,
                    },
                },
            )
            raise UpstreamPaymentError(
                "Payment provider is unavailable, please retry the payment",
                reservation_id=request.reservation_id,
            ) from e
        except ValueError as e:
            raise UpstreamPaymentError(
                "Payment provider returned an invalid response",
                reservation_id=request.reservation_id,
            ) from e

        payment_id = data.get("id") if isinstance(data, dict) else None
        if not payment_id:
            raise UpstreamPaymentError(
                "Payment provider response is missing the payment id",
                reservation_id=request.reservation_id,
            )

        transaction = (data.get("point_of_interaction") or {}).get("transaction_data") or {}

        logger.info(
            "mercadopago payment created",
            extra={
                "extra_fields": {
                    "reservation_id": request.reservation_id,
                    "provider_ref": str(payment_id),
                    "provider_status": data.get("status"),
                },
            },
        )

        return DepositIntent(
            provider=PROVIDER_MERCADO_PAGO,
            provider_ref=str(payment_id),
            qr_code=transaction.get("qr_code_base64"),
            copy_paste_code=transaction.get("qr_code"),
            expires_at=expires_at,
        )

    def query_status(self, provider_ref: str) -> str:
        """Fetch the authoritative status of a payment.

        Raises:
            UpstreamPaymentError: Transport error or non-2xx response.
        """
        try:
            response = self._http.get(
                f"{self._api_base}/v1/payments/{provider_ref}",
                headers=self._headers(),
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(
                "mercadopago status query failed",
                extra={
                    "extra_fields": {
                        "provider_ref": provider_ref,
                        "error": type(e).__name__,
                    },
                },
            )
            raise UpstreamPaymentError("Could not fetch payment status from provider") from e

        return map_provider_status(data.get("status") if isinstance(data, dict) else None)
