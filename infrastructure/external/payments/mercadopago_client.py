"""
Mercado Pago adapter over the public REST API (``/v1/payments``) using httpx.

- Creation is idempotent per ticket: ``X-Idempotency-Key`` carries the
  internal ticket id, so a retried submission cannot produce a second charge.
- The raw JSON is returned untouched; status mapping and transfer-code
  extraction happen in the application layer.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx

from domain.payment.entity import CreditCard, InstantTransfer, PaymentRequest
from infrastructure.external.payments.base import BasePaymentClient


class MercadoPagoClient(BasePaymentClient):
    provider = "mercadopago"

    def __init__(
        self,
        *,
        access_token: Optional[str],
        base_url: str = "https://api.mercadopago.com",
        notification_url: Optional[str] = None,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not access_token:
            raise RuntimeError("MERCADOPAGO__ACCESS_TOKEN not configured")
        super().__init__(base_url=base_url, timeouts=timeouts, retry=retry, transport=transport)
        self._access_token = access_token
        self.notification_url = notification_url

    def _default_headers(self) -> dict[str, str]:
        headers = super()._default_headers()
        headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def build_payload(self, request: PaymentRequest) -> dict[str, Any]:
        payer: dict[str, Any] = {
            "email": request.payer.email,
            "first_name": request.payer.first_name,
            "last_name": request.payer.last_name,
        }
        if request.payer.identification:
            payer["identification"] = dict(request.payer.identification)

        ticket_id = str(request.internal_ticket_id)
        payload: dict[str, Any] = {
            "transaction_amount": float(request.amount),
            "description": request.description,
            "payer": payer,
            "external_reference": ticket_id,
            "metadata": {"ticket_id": ticket_id},
        }
        if self.notification_url:
            payload["notification_url"] = self.notification_url

        method = request.method
        if isinstance(method, CreditCard):
            payload["token"] = method.token
            payload["installments"] = method.installments
            if method.brand:
                payload["payment_method_id"] = method.brand
            if method.issuer_id:
                payload["issuer_id"] = method.issuer_id
        elif isinstance(method, InstantTransfer):
            payload["payment_method_id"] = method.method_id
            payload["payment_type_id"] = method.type_id
        return payload

    async def submit(self, request: PaymentRequest) -> Mapping[str, Any]:
        payload = self.build_payload(request)
        ticket_id = str(request.internal_ticket_id)
        self._log(
            "gateway_submit",
            ticket_id=ticket_id,
            payment_method=request.method.kind.value,
            amount=payload["transaction_amount"],
        )

        async def _do() -> Mapping[str, Any]:
            return await self._request_json(
                "POST",
                "/v1/payments",
                json=payload,
                headers={"X-Idempotency-Key": ticket_id},
            )

        return await self._retry(_do)

    async def fetch_status(self, gateway_payment_id: str, *, retry: bool = True) -> Mapping[str, Any]:
        payment_id = str(gateway_payment_id)
        self._log("gateway_fetch_status", payment_id=payment_id, retry=retry)

        async def _do() -> Mapping[str, Any]:
            return await self._request_json("GET", f"/v1/payments/{payment_id}", payment_id=payment_id)

        return await self._retry(_do) if retry else await _do()
