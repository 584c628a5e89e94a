import uuid

import pytest

from application.services.result_interpreter import GatewayResultInterpreter
from conftest import PNG_STUB, FailingEncoder, mp_payment
from domain.common.exceptions import MalformedGatewayResponseException
from domain.payment.entity import CreditCard, InstantTransfer, PaymentStatus


TICKET = uuid.uuid4()


def test_card_approved(interpreter):
    result = interpreter.interpret(mp_payment(1001, "approved", "accredited"), TICKET, CreditCard(token="t"))
    assert result.gateway_payment_id == "1001"
    assert result.status is PaymentStatus.APPROVED
    assert result.status_detail == "accredited"
    assert result.internal_ticket_id == TICKET
    assert result.transfer_code is None
    assert result.transfer_code_image is None


def test_unknown_status_degrades_to_in_process(interpreter):
    result = interpreter.interpret(mp_payment(7, "charged_back", "x"), TICKET)
    assert result.status is PaymentStatus.IN_PROCESS
    assert result.status_detail == "charged_back"


def test_authorized_maps_to_in_process(interpreter):
    _, status, _ = interpreter.interpret_status(mp_payment(7, "authorized", ""))
    assert status is PaymentStatus.IN_PROCESS


@pytest.mark.parametrize(
    "raw",
    [
        {"status": "approved"},
        {"id": "9"},
        {"id": "", "status": "approved"},
        ["not", "a", "mapping"],
        None,
    ],
)
def test_malformed(interpreter, raw):
    with pytest.raises(MalformedGatewayResponseException):
        interpreter.interpret(raw, TICKET)


def test_pix_code_is_extracted_and_encoded(interpreter, encoder):
    raw = mp_payment(2002, "pending", "pending_waiting_transfer", method="pix", qr="00020126PIXCODE")
    result = interpreter.interpret(raw, TICKET, InstantTransfer())
    assert result.status is PaymentStatus.PENDING
    assert result.transfer_code == "00020126PIXCODE"
    assert result.transfer_code_image == PNG_STUB
    assert encoder.encoded == ["00020126PIXCODE"]


def test_pix_without_code_is_not_an_error(interpreter):
    result = interpreter.interpret(mp_payment(2002, "pending", "", method="pix"), TICKET, InstantTransfer())
    assert result.transfer_code is None
    assert result.transfer_code_image is None


def test_encoder_failure_keeps_success():
    interpreter = GatewayResultInterpreter(FailingEncoder())
    raw = mp_payment(2002, "pending", "", method="pix", qr="CODE")
    result = interpreter.interpret(raw, TICKET, InstantTransfer())
    assert result.status is PaymentStatus.PENDING
    assert result.transfer_code == "CODE"
    assert result.transfer_code_image is None


def test_method_inferred_from_response_when_unknown(interpreter):
    result = interpreter.interpret(mp_payment(3, "pending", "", method="pix", qr="CODE"), None)
    assert result.transfer_code == "CODE"


def test_card_response_never_yields_code(interpreter):
    result = interpreter.interpret(mp_payment(3, "approved", "", qr="CODE"), TICKET, CreditCard(token="t"))
    assert result.transfer_code is None
