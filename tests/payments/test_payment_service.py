import uuid

import pytest

from application.services.payment_service import PaymentService
from application.services.reconciliation_service import ReconciliationAction, ReconciliationEngine
from conftest import PNG_STUB, RecordingFulfillment, mp_payment
from domain.common.exceptions import (
    DomainValidationException,
    GatewayPaymentNotFoundException,
    PaymentRejectedException,
    PaymentTransientException,
    TicketNotFoundException,
)
from domain.payment.entity import FULFILLMENT_DISPATCH_FAILED, PaymentStatus


CARD_FORM = {
    "transaction_amount": 60,
    "token": "card-token",
    "installments": 1,
    "payment_method_id": "visa",
    "payer": {"email": "buyer@festa.com.br"},
}
PIX_FORM = {"transaction_amount": 60, "payer": {"email": "buyer@festa.com.br"}}


@pytest.fixture
def service(uow_factory, gateway, normalizer, interpreter, fulfillment):
    return PaymentService(uow_factory, gateway, normalizer, interpreter, fulfillment)


async def _entry(uow_factory, ticket_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.ledger_repository.get_by_ticket_id(ticket_id)


@pytest.mark.asyncio
async def test_card_payment_approved_synchronously(service, uow_factory, gateway, fulfillment):
    gateway.on_submit(mp_payment(1001, "approved", "accredited"))

    result = await service.process_payment("credit_card", CARD_FORM)

    assert result.gateway_payment_id == "1001"
    assert result.status is PaymentStatus.APPROVED
    assert result.status_detail == "accredited"
    assert result.transfer_code is None
    assert len(gateway.submitted) == 1
    assert gateway.submitted[0].internal_ticket_id == result.internal_ticket_id

    entry = await _entry(uow_factory, result.internal_ticket_id)
    assert entry.gateway_payment_id == "1001"
    assert entry.status is PaymentStatus.APPROVED
    assert entry.fulfilled is True
    assert fulfillment.deliveries == [(result.internal_ticket_id, "buyer@festa.com.br")]


@pytest.mark.asyncio
async def test_pix_payment_returns_code_and_image(service, uow_factory, gateway, fulfillment):
    gateway.on_submit(mp_payment(2002, "pending", "pending_waiting_transfer", method="pix", qr="00020126PIX"))

    result = await service.process_payment("pix", PIX_FORM)

    assert result.status is PaymentStatus.PENDING
    assert result.transfer_code == "00020126PIX"
    assert result.transfer_code_image == PNG_STUB
    entry = await _entry(uow_factory, result.internal_ticket_id)
    assert entry.gateway_payment_id == "2002"
    assert entry.status is PaymentStatus.PENDING
    assert entry.fulfilled is False
    assert fulfillment.deliveries == []


@pytest.mark.asyncio
async def test_in_process_is_recorded_at_submission(service, uow_factory, gateway):
    gateway.on_submit(mp_payment(1002, "in_process", "pending_contingency"))

    result = await service.process_payment("credit_card", CARD_FORM)

    assert (await _entry(uow_factory, result.internal_ticket_id)).status is PaymentStatus.IN_PROCESS


@pytest.mark.asyncio
async def test_validation_error_touches_nothing(service, gateway):
    with pytest.raises(DomainValidationException) as ei:
        await service.process_payment("credit_card", {"transaction_amount": 60, "token": "t", "payer": {}})
    assert ei.value.field == "payer.email"
    assert gateway.submitted == []


@pytest.mark.asyncio
async def test_gateway_rejection_marks_entry(service, uow_factory, gateway, fulfillment):
    gateway.on_submit(PaymentRejectedException("invalid card token", provider="mercadopago", provider_code="400"))

    with pytest.raises(PaymentRejectedException):
        await service.process_payment("credit_card", CARD_FORM)

    ticket_id = gateway.submitted[0].internal_ticket_id
    entry = await _entry(uow_factory, ticket_id)
    assert entry.status is PaymentStatus.REJECTED
    assert entry.gateway_payment_id is None
    assert fulfillment.deliveries == []


@pytest.mark.asyncio
async def test_transient_failure_then_retry_reuses_ticket(service, uow_factory, gateway, fulfillment):
    gateway.on_submit(
        PaymentTransientException("HTTP 503", provider="mercadopago"),
        mp_payment(1003, "approved", "accredited"),
    )

    with pytest.raises(PaymentTransientException):
        await service.process_payment("credit_card", CARD_FORM)
    ticket_id = gateway.submitted[0].internal_ticket_id
    entry = await _entry(uow_factory, ticket_id)
    assert entry.status is PaymentStatus.PENDING
    assert entry.gateway_payment_id is None

    result = await service.process_payment("credit_card", CARD_FORM, ticket_id)

    assert result.internal_ticket_id == ticket_id
    assert [r.internal_ticket_id for r in gateway.submitted] == [ticket_id, ticket_id]
    entry = await _entry(uow_factory, ticket_id)
    assert entry.gateway_payment_id == "1003"
    assert entry.status is PaymentStatus.APPROVED
    assert len(fulfillment.deliveries) == 1


@pytest.mark.asyncio
async def test_retry_after_attach_replays_status(service, uow_factory, gateway, fulfillment):
    gateway.on_submit(mp_payment(2004, "pending", "", method="pix", qr="CODE"))
    gateway.on_fetch("2004", mp_payment(2004, "approved", "accredited", method="pix"))

    first = await service.process_payment("pix", PIX_FORM)
    ticket_id = first.internal_ticket_id
    replay = await service.process_payment("pix", PIX_FORM, ticket_id)

    assert len(gateway.submitted) == 1
    assert gateway.fetched == ["2004"]
    assert replay.status is PaymentStatus.APPROVED
    assert (await _entry(uow_factory, ticket_id)).fulfilled is True
    assert len(fulfillment.deliveries) == 1


@pytest.mark.asyncio
async def test_payment_status_includes_pix_code(service, gateway):
    gateway.on_submit(mp_payment(2005, "pending", "", method="pix"))
    gateway.on_fetch("2005", mp_payment(2005, "pending", "pending_waiting_transfer", method="pix", qr="LATECODE"))

    submitted = await service.process_payment("pix", PIX_FORM)
    assert submitted.transfer_code is None

    polled = await service.get_payment_status("2005")
    assert polled.status is PaymentStatus.PENDING
    assert polled.status_detail == "pending_waiting_transfer"
    assert polled.transfer_code == "LATECODE"
    assert polled.transfer_code_image == PNG_STUB
    assert polled.internal_ticket_id == submitted.internal_ticket_id


@pytest.mark.asyncio
async def test_payment_status_for_unknown_payment(service, gateway):
    gateway.on_fetch("404", GatewayPaymentNotFoundException("404", provider="mercadopago"))
    with pytest.raises(GatewayPaymentNotFoundException):
        await service.get_payment_status("404")


@pytest.mark.asyncio
async def test_get_ticket(service, gateway):
    gateway.on_submit(mp_payment(1006, "approved", "accredited"))
    result = await service.process_payment("credit_card", CARD_FORM)

    entry = await service.get_ticket(result.internal_ticket_id)
    assert entry.gateway_payment_id == "1006"

    with pytest.raises(TicketNotFoundException):
        await service.get_ticket(uuid.uuid4())


class BrokerDownFulfillment(RecordingFulfillment):
    def __init__(self) -> None:
        super().__init__()
        self.broken = True

    async def deliver(self, ticket_id, payer_email) -> None:
        if self.broken:
            raise ConnectionError("broker unavailable")
        await super().deliver(ticket_id, payer_email)


@pytest.mark.asyncio
async def test_approval_survives_fulfillment_dispatch_failure(uow_factory, gateway, normalizer, interpreter):
    fulfillment = BrokerDownFulfillment()
    service = PaymentService(uow_factory, gateway, normalizer, interpreter, fulfillment)
    gateway.on_submit(mp_payment(1007, "approved", "accredited"))

    result = await service.process_payment("credit_card", CARD_FORM)

    assert result.status is PaymentStatus.APPROVED
    entry = await _entry(uow_factory, result.internal_ticket_id)
    assert entry.fulfilled is True
    assert entry.delivery_pending is True
    assert entry.reconciliation_error.startswith(FULFILLMENT_DISPATCH_FAILED)

    fulfillment.broken = False
    engine = ReconciliationEngine(uow_factory, gateway, fulfillment, interpreter, backoff_base=0)
    acks = await engine.retry_failed(limit=10)

    assert [a.action for a in acks] == [ReconciliationAction.REDELIVERED]
    assert fulfillment.deliveries == [(result.internal_ticket_id, "buyer@festa.com.br")]
    assert (await _entry(uow_factory, result.internal_ticket_id)).reconciliation_failed is False


@pytest.mark.asyncio
async def test_retry_with_unknown_ticket_is_refused(service, uow_factory, gateway):
    gateway.on_submit(mp_payment(1008, "approved", "accredited"))
    unknown = uuid.uuid4()

    with pytest.raises(TicketNotFoundException):
        await service.process_payment("credit_card", CARD_FORM, unknown)

    assert gateway.submitted == []
    assert await _entry(uow_factory, unknown) is None


@pytest.mark.asyncio
async def test_retry_must_keep_method_and_amount(service, uow_factory, gateway):
    gateway.on_submit(PaymentTransientException("HTTP 503", provider="mercadopago"))

    with pytest.raises(PaymentTransientException):
        await service.process_payment("pix", PIX_FORM)
    ticket_id = gateway.submitted[0].internal_ticket_id

    with pytest.raises(DomainValidationException) as method_err:
        await service.process_payment("credit_card", CARD_FORM, ticket_id)
    assert method_err.value.field == "selectedPaymentMethod"

    with pytest.raises(DomainValidationException) as amount_err:
        await service.process_payment("pix", {**PIX_FORM, "transaction_amount": 1}, ticket_id)
    assert amount_err.value.field == "formData.transaction_amount"

    assert len(gateway.submitted) == 1
    entry = await _entry(uow_factory, ticket_id)
    assert entry.amount == 60
    assert entry.gateway_payment_id is None
