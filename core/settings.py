"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so the gateway credentials only travel
through the gateway factory into the client constructor.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 10.0
    write: float = 5.0
    total: float = 15.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class ReconciliationSettings(BaseModel):
    # The engine is the only retry layer for the authoritative status fetch
    # (the client is called with retry=False), so max_attempts is the real bound.
    max_attempts: int = 3
    base_backoff: float = 0.5
    max_backoff: float = 2.0
    # Whole fetch, retries included; kept below the gateway's webhook timeout (~22s)
    fetch_deadline_seconds: float = 15.0
    # Periodic re-run of entries marked reconciliation_failed
    retry_batch_size: int = 50
    retry_interval_seconds: int = 600


class MercadoPagoSettings(BaseModel):
    access_token: Optional[str] = None
    base_url: str = "https://api.mercadopago.com"
    notification_url: Optional[str] = None


class TicketSettings(BaseModel):
    description: str = "Ingresso Festa Junina do Bambuzal"
    payer_first_name: str = "Comprador"
    payer_last_name: str = "Festa Junina"


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="mercadopago", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)

    mercadopago: MercadoPagoSettings = Field(default_factory=MercadoPagoSettings)
    ticket: TicketSettings = Field(default_factory=TicketSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
