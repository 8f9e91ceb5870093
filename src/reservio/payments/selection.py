"""Gateway selection, once per merchant."""

from __future__ import annotations

from reservio.infra.merchant_settings import MerchantSettings
from reservio.mercadopago.client import MercadoPagoClient
from reservio.payments.gateway import PaymentGateway
from reservio.payments.stub import StubGateway


def gateway_for_merchant(settings: MerchantSettings) -> PaymentGateway:
    """Real provider when the merchant configured credentials, stub otherwise."""
    if settings.mercado_pago_access_token:
        return MercadoPagoClient(access_token=settings.mercado_pago_access_token)
    return StubGateway()


def gateway_for_provider(provider: str, settings: MerchantSettings) -> PaymentGateway:
    """Gateway that issued an existing payment row.

    A merchant may have switched providers after the charge was created;
    status queries must go to the one that owns the reference.
    """
    if provider == MercadoPagoClient.provider and settings.mercado_pago_access_token:
        return MercadoPagoClient(access_token=settings.mercado_pago_access_token)
    return StubGateway()
