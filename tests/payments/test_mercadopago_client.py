import json
import uuid
from decimal import Decimal

import httpx
import pytest

from domain.common.exceptions import (
    GatewayPaymentNotFoundException,
    MalformedGatewayResponseException,
    PaymentRejectedException,
    PaymentTransientException,
)
from domain.payment.entity import CreditCard, InstantTransfer, Payer, PaymentRequest
from infrastructure.external.payments.mercadopago_client import MercadoPagoClient


def _request(method) -> PaymentRequest:
    return PaymentRequest(
        amount=Decimal("60.50"),
        description="Ingresso Festa Junina do Bambuzal",
        method=method,
        payer=Payer(
            email="buyer@festa.com.br",
            first_name="Comprador",
            last_name="Festa Junina",
            identification={"type": "CPF", "number": "12345678909"},
        ),
        internal_ticket_id=uuid.uuid4(),
    )


def _client(handler, *, max_retries=2, notification_url=None) -> MercadoPagoClient:
    return MercadoPagoClient(
        access_token="TEST-token",
        base_url="https://api.mercadopago.test",
        notification_url=notification_url,
        retry={"max": max_retries, "base": 0},
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_card_submission_payload_and_headers():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": 1001, "status": "approved", "status_detail": "accredited"})

    client = _client(handler, notification_url="https://tickets.test/api/v1/webhook")
    req = _request(CreditCard(token="tok", installments=3, brand="visa", issuer_id="25"))
    try:
        raw = await client.submit(req)
    finally:
        await client.aclose()

    assert raw["status"] == "approved"
    sent = seen[0]
    assert sent.method == "POST"
    assert sent.url.path == "/v1/payments"
    assert sent.headers["Authorization"] == "Bearer TEST-token"
    assert sent.headers["X-Idempotency-Key"] == str(req.internal_ticket_id)
    body = json.loads(sent.content)
    assert body["transaction_amount"] == 60.5
    assert body["token"] == "tok"
    assert body["installments"] == 3
    assert body["payment_method_id"] == "visa"
    assert body["issuer_id"] == "25"
    assert body["external_reference"] == str(req.internal_ticket_id)
    assert body["metadata"] == {"ticket_id": str(req.internal_ticket_id)}
    assert body["notification_url"] == "https://tickets.test/api/v1/webhook"
    assert body["payer"]["identification"] == {"type": "CPF", "number": "12345678909"}


@pytest.mark.asyncio
async def test_pix_submission_uses_canonical_ids():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"id": 2002, "status": "pending"})

    client = _client(handler)
    await client.submit(_request(InstantTransfer()))
    await client.aclose()

    assert bodies[0]["payment_method_id"] == "pix"
    assert bodies[0]["payment_type_id"] == "bank_transfer"
    assert "token" not in bodies[0]
    assert "notification_url" not in bodies[0]


@pytest.mark.asyncio
async def test_server_errors_are_retried_with_same_idempotency_key():
    keys = []

    def handler(request):
        keys.append(request.headers["X-Idempotency-Key"])
        if len(keys) == 1:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(201, json={"id": 1, "status": "approved"})

    client = _client(handler)
    raw = await client.submit(_request(CreditCard(token="tok")))
    await client.aclose()

    assert raw["id"] == 1
    assert len(keys) == 2 and keys[0] == keys[1]


@pytest.mark.asyncio
async def test_persistent_unavailability_is_transient():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429, json={"message": "too many requests"})

    client = _client(handler, max_retries=2)
    with pytest.raises(PaymentTransientException):
        await client.submit(_request(CreditCard(token="tok")))
    await client.aclose()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_transport_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler, max_retries=0)
    with pytest.raises(PaymentTransientException):
        await client.fetch_status("1")
    await client.aclose()


@pytest.mark.asyncio
async def test_client_errors_are_rejections_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"message": "invalid card_token_id", "status": 400})

    client = _client(handler)
    with pytest.raises(PaymentRejectedException) as ei:
        await client.submit(_request(CreditCard(token="bad")))
    await client.aclose()

    assert len(calls) == 1
    assert ei.value.message == "invalid card_token_id"
    assert ei.value.provider_code == "400"


@pytest.mark.asyncio
async def test_fetch_unknown_payment():
    client = _client(lambda request: httpx.Response(404, json={"message": "Payment not found"}))
    with pytest.raises(GatewayPaymentNotFoundException):
        await client.fetch_status("42")
    await client.aclose()


@pytest.mark.asyncio
async def test_fetch_status_path():
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={"id": 42, "status": "approved"})

    client = _client(handler)
    raw = await client.fetch_status("42")
    await client.aclose()
    assert paths == ["/v1/payments/42"]
    assert raw["status"] == "approved"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>maintenance</html>"),
    httpx.Response(200, json=[{"id": 1}]),
])
async def test_unreadable_bodies_are_malformed(response):
    client = _client(lambda request: response)
    with pytest.raises(MalformedGatewayResponseException):
        await client.fetch_status("1")
    await client.aclose()


def test_missing_access_token():
    with pytest.raises(RuntimeError):
        MercadoPagoClient(access_token=None)
