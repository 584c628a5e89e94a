import uuid
from decimal import Decimal

import pytest

from domain.common.exceptions import (
    InvalidTransitionException,
    LedgerConflictException,
    LedgerEntryNotFoundException,
)
from domain.payment.entity import LedgerEntry, PaymentMethodKind, PaymentStatus


async def _new_entry(uow_factory, ticket_id=None) -> LedgerEntry:
    entry = LedgerEntry(
        internal_ticket_id=ticket_id or uuid.uuid4(),
        payment_method=PaymentMethodKind.INSTANT_TRANSFER,
        amount=Decimal("60.00"),
        description="Ingresso",
        payer_email="a@b.com",
    )
    async with uow_factory() as uow:
        return await uow.ledger_repository.create(entry)


@pytest.mark.asyncio
async def test_create_and_read_back(uow_factory):
    created = await _new_entry(uow_factory)
    assert created.id is not None
    assert created.status is PaymentStatus.PENDING
    assert created.gateway_payment_id is None
    assert created.fulfilled is False

    async with uow_factory(readonly=True) as uow:
        loaded = await uow.ledger_repository.get_by_ticket_id(created.internal_ticket_id)
        missing = await uow.ledger_repository.get_by_ticket_id(uuid.uuid4())
    assert loaded.internal_ticket_id == created.internal_ticket_id
    assert loaded.amount == Decimal("60.00")
    assert loaded.payment_method is PaymentMethodKind.INSTANT_TRANSFER
    assert missing is None


@pytest.mark.asyncio
async def test_duplicate_ticket_conflicts(uow_factory):
    created = await _new_entry(uow_factory)
    with pytest.raises(LedgerConflictException):
        await _new_entry(uow_factory, created.internal_ticket_id)


@pytest.mark.asyncio
async def test_attach_gateway_id_is_idempotent(uow_factory):
    entry = await _new_entry(uow_factory)
    tid = entry.internal_ticket_id

    async with uow_factory() as uow:
        first = await uow.ledger_repository.attach_gateway_id(tid, "555", PaymentStatus.PENDING, "pending_waiting_transfer")
    async with uow_factory() as uow:
        again = await uow.ledger_repository.attach_gateway_id(tid, "555")
    assert first.transitioned is False
    assert again.transitioned is False

    with pytest.raises(LedgerConflictException):
        async with uow_factory() as uow:
            await uow.ledger_repository.attach_gateway_id(tid, "666")

    async with uow_factory(readonly=True) as uow:
        found = await uow.ledger_repository.find_by_gateway_id("555")
    assert found.internal_ticket_id == tid
    assert found.status_detail == "pending_waiting_transfer"


@pytest.mark.asyncio
async def test_attach_unknown_ticket(uow_factory):
    with pytest.raises(LedgerEntryNotFoundException):
        async with uow_factory() as uow:
            await uow.ledger_repository.attach_gateway_id(uuid.uuid4(), "1")


@pytest.mark.asyncio
async def test_find_unknown_gateway_id(uow_factory):
    with pytest.raises(LedgerEntryNotFoundException):
        async with uow_factory(readonly=True) as uow:
            await uow.ledger_repository.find_by_gateway_id("nope")


@pytest.mark.asyncio
async def test_attach_seeds_in_process_and_approved(uow_factory):
    slow = await _new_entry(uow_factory)
    fast = await _new_entry(uow_factory)

    async with uow_factory() as uow:
        seeded = await uow.ledger_repository.attach_gateway_id(slow.internal_ticket_id, "10", PaymentStatus.IN_PROCESS, "pending_contingency")
        approved = await uow.ledger_repository.attach_gateway_id(fast.internal_ticket_id, "11", PaymentStatus.APPROVED, "accredited")

    assert seeded.transitioned is True and seeded.fulfilled is False
    assert approved.transitioned is True and approved.fulfilled is True

    async with uow_factory(readonly=True) as uow:
        assert (await uow.ledger_repository.find_by_gateway_id("10")).status is PaymentStatus.IN_PROCESS
        fast_entry = await uow.ledger_repository.find_by_gateway_id("11")
    assert fast_entry.status is PaymentStatus.APPROVED
    assert fast_entry.fulfilled is True


@pytest.mark.asyncio
async def test_apply_status_fulfills_once(uow_factory):
    entry = await _new_entry(uow_factory)
    tid = entry.internal_ticket_id

    async with uow_factory() as uow:
        first = await uow.ledger_repository.apply_status(tid, PaymentStatus.APPROVED, "accredited")
    async with uow_factory() as uow:
        second = await uow.ledger_repository.apply_status(tid, PaymentStatus.APPROVED, "accredited")

    assert (first.previous_status, first.transitioned, first.fulfilled) == (PaymentStatus.PENDING, True, True)
    assert (second.previous_status, second.transitioned, second.fulfilled) == (PaymentStatus.APPROVED, False, False)

    async with uow_factory() as uow:
        refunded = await uow.ledger_repository.apply_status(tid, PaymentStatus.REFUNDED, "refunded")
    assert refunded.transitioned is True and refunded.fulfilled is False

    async with uow_factory(readonly=True) as uow:
        final = await uow.ledger_repository.get_by_ticket_id(tid)
    assert final.status is PaymentStatus.REFUNDED
    assert final.fulfilled is True


@pytest.mark.asyncio
async def test_rejected_cannot_become_approved(uow_factory):
    entry = await _new_entry(uow_factory)
    tid = entry.internal_ticket_id
    async with uow_factory() as uow:
        await uow.ledger_repository.apply_status(tid, PaymentStatus.REJECTED, "cc_rejected_other_reason")

    with pytest.raises(InvalidTransitionException) as ei:
        async with uow_factory() as uow:
            await uow.ledger_repository.apply_status(tid, PaymentStatus.APPROVED, "accredited")
    assert ei.value.current == "rejected"
    assert ei.value.target == "approved"

    async with uow_factory(readonly=True) as uow:
        final = await uow.ledger_repository.get_by_ticket_id(tid)
    assert final.status is PaymentStatus.REJECTED
    assert final.fulfilled is False


@pytest.mark.asyncio
async def test_reconciliation_marker_lifecycle(uow_factory):
    entry = await _new_entry(uow_factory)
    other = await _new_entry(uow_factory)
    tid = entry.internal_ticket_id

    async with uow_factory() as uow:
        await uow.ledger_repository.mark_reconciliation_failed(tid, "PaymentGatewayUnavailable: HTTP 503")
        await uow.ledger_repository.mark_reconciliation_failed(other.internal_ticket_id, "timeout")
    async with uow_factory(readonly=True) as uow:
        flagged = await uow.ledger_repository.list_reconciliation_failed()
    assert {e.internal_ticket_id for e in flagged} == {tid, other.internal_ticket_id}
    assert all(e.reconciliation_error for e in flagged)

    async with uow_factory() as uow:
        assert await uow.ledger_repository.clear_reconciliation_failed(other.internal_ticket_id) is True
    async with uow_factory() as uow:
        # already cleared: a second caller does not win the claim
        assert await uow.ledger_repository.clear_reconciliation_failed(other.internal_ticket_id) is False
        # a real transition also clears the marker
        await uow.ledger_repository.apply_status(tid, PaymentStatus.APPROVED, "accredited")
    async with uow_factory(readonly=True) as uow:
        assert await uow.ledger_repository.list_reconciliation_failed() == []


@pytest.mark.asyncio
async def test_mark_unknown_ticket(uow_factory):
    with pytest.raises(LedgerEntryNotFoundException):
        async with uow_factory() as uow:
            await uow.ledger_repository.mark_reconciliation_failed(uuid.uuid4(), "x")
