"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import payment_settings
from application.ports.payment_gateway import PaymentGateway


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    name = (provider or payment_settings.default_provider).lower()
    if name in {"mercadopago", "mp"}:
        from .mercadopago_client import MercadoPagoClient

        mp = payment_settings.mercadopago
        return MercadoPagoClient(
            access_token=mp.access_token,
            base_url=mp.base_url,
            notification_url=mp.notification_url,
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
        )
    raise ValueError(f"Unsupported payment provider: {name}")
