"""
Application service orchestrating the synchronous payment use-cases.

This class depends only on application ports and the domain ledger contract.
Gateway, fulfillment and unit-of-work implementations are provided by
infrastructure and injected from the composition root (API/tasks).
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional
from uuid import UUID

from application.ports.fulfillment import TicketFulfillment
from application.ports.payment_gateway import PaymentGateway
from application.services.request_normalizer import RequestNormalizer
from application.services.result_interpreter import GatewayResultInterpreter
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    InvalidTransitionException,
    LedgerEntryNotFoundException,
    MalformedGatewayResponseException,
    PaymentRejectedException,
    PaymentTransientException,
    TicketNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    FULFILLMENT_DISPATCH_FAILED,
    InstantTransfer,
    LedgerEntry,
    PaymentMethodKind,
    PaymentRequest,
    PaymentResult,
    PaymentStatus,
)


logger = get_logger(__name__)


class PaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        normalizer: RequestNormalizer,
        interpreter: GatewayResultInterpreter,
        fulfillment: TicketFulfillment,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.normalizer = normalizer
        self.interpreter = interpreter
        self.fulfillment = fulfillment

    async def process_payment(
        self,
        selected_method: Any,
        form_data: Mapping[str, Any] | None,
        ticket_id: Optional[UUID] = None,
    ) -> PaymentResult:
        """Normalize, record, submit and interpret one ticket purchase.

        ``ticket_id`` is only supplied by clients retrying an earlier attempt;
        the existing ledger entry is reused and, when it already carries a
        gateway id, the current gateway status is replayed instead of
        submitting again. An unknown ``ticket_id`` raises TicketNotFoundException;
        a retry whose method or amount differs is a validation error.
        """
        request = self.normalizer.normalize(selected_method, form_data, ticket_id)
        tid = request.internal_ticket_id
        log = logger.bind(ticket_id=str(tid), payment_method=request.method.kind.value)

        entry = await self._open_entry(request, reuse=ticket_id is not None)
        if entry.gateway_payment_id:
            log.info("payment_submit_replayed", gateway_payment_id=entry.gateway_payment_id)
            return await self._replay(entry, request)

        log.info("payment_submit_request", provider=self.gateway.provider, amount=str(request.amount))
        try:
            raw = await self.gateway.submit(request)
        except PaymentTransientException as exc:
            # Entry stays pending without gateway id; the client may retry with the same ticket_id
            log.warning("payment_submit_unavailable", error=exc.message)
            raise
        except PaymentRejectedException as exc:
            log.info("payment_submit_rejected", error=exc.message, provider_code=exc.provider_code)
            async with self._uow_factory() as uow:
                await uow.ledger_repository.apply_status(tid, PaymentStatus.REJECTED, exc.message)
            raise

        try:
            result = self.interpreter.interpret(raw, tid, request.method)
        except MalformedGatewayResponseException as exc:
            log.error("payment_submit_malformed_response", error=exc.message, details=exc.details)
            raise

        async with self._uow_factory() as uow:
            transition = await uow.ledger_repository.attach_gateway_id(
                tid, result.gateway_payment_id, result.status, result.status_detail
            )
        if transition.fulfilled:
            await self._fulfill(tid, request.payer.email)

        log.info(
            "payment_submit_response",
            gateway_payment_id=result.gateway_payment_id,
            status=result.status.value,
            status_detail=result.status_detail,
            has_transfer_code=result.transfer_code is not None,
            has_transfer_code_image=result.transfer_code_image is not None,
        )
        return result

    async def get_payment_status(self, gateway_payment_id: str) -> PaymentResult:
        """Poll the gateway for the current status of a payment (read-only)."""
        logger.info("payment_status_request", gateway_payment_id=gateway_payment_id)
        entry: Optional[LedgerEntry] = None
        async with self._uow_factory(readonly=True) as uow:
            try:
                entry = await uow.ledger_repository.find_by_gateway_id(gateway_payment_id)
            except LedgerEntryNotFoundException:
                logger.info("payment_status_untracked", gateway_payment_id=gateway_payment_id)

        raw = await self.gateway.fetch_status(gateway_payment_id)
        method = None
        ticket_id = None
        if entry is not None:
            ticket_id = entry.internal_ticket_id
            if entry.payment_method is PaymentMethodKind.INSTANT_TRANSFER:
                method = InstantTransfer()
        else:
            ticket_id = _ticket_id_from(raw)
        return self.interpreter.interpret(raw, ticket_id, method)

    async def get_ticket(self, ticket_id: UUID) -> LedgerEntry:
        async with self._uow_factory(readonly=True) as uow:
            entry = await uow.ledger_repository.get_by_ticket_id(ticket_id)
        if entry is None:
            raise TicketNotFoundException(str(ticket_id))
        return entry

    async def _open_entry(self, request: PaymentRequest, *, reuse: bool) -> LedgerEntry:
        """新购票创建条目；重试只能复用服务端签发过的票号，且方式与金额不变"""
        async with self._uow_factory() as uow:
            if not reuse:
                return await uow.ledger_repository.create(LedgerEntry.for_request(request))
            existing = await uow.ledger_repository.get_by_ticket_id(request.internal_ticket_id)

        if existing is None:
            logger.warning("payment_retry_unknown_ticket", ticket_id=str(request.internal_ticket_id))
            raise TicketNotFoundException(str(request.internal_ticket_id))
        if existing.payment_method is not None and existing.payment_method is not request.method.kind:
            raise DomainValidationException(
                "Retry must use the payment method of the original attempt",
                field="selectedPaymentMethod",
                details={"expected": existing.payment_method.value, "got": request.method.kind.value},
            )
        if existing.amount is not None and existing.amount != request.amount:
            raise DomainValidationException(
                "Retry must use the amount of the original attempt",
                field="formData.transaction_amount",
                details={"expected": str(existing.amount), "got": str(request.amount)},
            )
        logger.info("ledger_entry_reused", ticket_id=str(request.internal_ticket_id))
        return existing

    async def _replay(self, entry: LedgerEntry, request: PaymentRequest) -> PaymentResult:
        raw = await self.gateway.fetch_status(entry.gateway_payment_id)
        result = self.interpreter.interpret(raw, entry.internal_ticket_id, request.method)
        try:
            async with self._uow_factory() as uow:
                transition = await uow.ledger_repository.apply_status(
                    entry.internal_ticket_id, result.status, result.status_detail
                )
        except InvalidTransitionException as exc:
            logger.warning(
                "payment_replay_transition_refused",
                ticket_id=str(entry.internal_ticket_id),
                current=exc.current,
                target=exc.target,
            )
            return result
        if transition.fulfilled:
            await self._fulfill(entry.internal_ticket_id, entry.payer_email)
        return result

    async def _fulfill(self, ticket_id: UUID, payer_email: Optional[str]) -> None:
        try:
            await self.fulfillment.deliver(ticket_id, payer_email)
        except Exception as exc:
            logger.error(
                "ticket_fulfillment_dispatch_failed",
                ticket_id=str(ticket_id),
                error=str(exc),
                exc_info=True,
            )
            async with self._uow_factory() as uow:
                await uow.ledger_repository.mark_reconciliation_failed(
                    ticket_id, f"{FULFILLMENT_DISPATCH_FAILED}: {exc}"
                )


def _ticket_id_from(raw: Any) -> Optional[UUID]:
    """Recover our ticket id from a gateway payment we have no ledger entry for."""
    if not isinstance(raw, Mapping):
        return None
    ref = raw.get("external_reference")
    if ref is None and isinstance(raw.get("metadata"), Mapping):
        ref = raw["metadata"].get("ticket_id")
    try:
        return UUID(str(ref)) if ref else None
    except ValueError:
        return None
