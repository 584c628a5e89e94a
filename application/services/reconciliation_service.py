"""
对账引擎 - 处理网关异步通知，推进台账状态并保证至多一次履约

流程：通知 → 台账查找 → 向网关拉取权威状态（从不信任通知内容）
→ 状态机校验 + CAS 更新 → 事务提交后触发履约。

拉取权威状态时引擎是唯一的重试层（客户端以 ``retry=False`` 调用），
整个拉取过程受 ``fetch_deadline`` 限制，通知的应答不会被长时间挂起。
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional
from uuid import UUID

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from application.ports.fulfillment import TicketFulfillment
from application.ports.payment_gateway import PaymentGateway
from application.services.result_interpreter import GatewayResultInterpreter
from core.logging_config import get_logger
from domain.common.exceptions import (
    InvalidTransitionException,
    LedgerConflictException,
    LedgerEntryNotFoundException,
    PaymentGatewayException,
    PaymentTransientException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    FULFILLMENT_DISPATCH_FAILED,
    LedgerEntry,
    NotificationEvent,
    NotificationKind,
    PaymentStatus,
)


logger = get_logger(__name__)


class ReconciliationAction(str, Enum):
    IGNORED = "ignored"
    UNTRACKED = "untracked"
    UNCHANGED = "unchanged"
    TRANSITIONED = "transitioned"
    REJECTED_TRANSITION = "rejected_transition"
    FAILED = "failed"
    REDELIVERED = "redelivered"


@dataclass(frozen=True)
class ReconciliationAck:
    """通知已受理；action 说明实际做了什么"""

    action: ReconciliationAction
    gateway_payment_id: Optional[str] = None
    ticket_id: Optional[UUID] = None
    status: Optional[PaymentStatus] = None
    fulfilled: bool = False


class ReconciliationEngine:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        fulfillment: TicketFulfillment,
        interpreter: Optional[GatewayResultInterpreter] = None,
        *,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 2.0,
        fetch_deadline: Optional[float] = 15.0,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.fulfillment = fulfillment
        self.interpreter = interpreter or GatewayResultInterpreter(provider=gateway.provider)
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.fetch_deadline = fetch_deadline

    async def on_notification(self, event: NotificationEvent) -> ReconciliationAck:
        if event.kind is not NotificationKind.PAYMENT:
            logger.info("notification_ignored", notification_type=event.raw_type)
            return ReconciliationAck(action=ReconciliationAction.IGNORED)
        return await self.reconcile(event.gateway_payment_id)

    async def reconcile(self, gateway_payment_id: str) -> ReconciliationAck:
        """对单个网关支付执行一次对账"""
        async with self._uow_factory(readonly=True) as uow:
            try:
                entry = await uow.ledger_repository.find_by_gateway_id(gateway_payment_id)
            except LedgerEntryNotFoundException:
                # 可能是其他系统的支付，或提交尚未落账
                logger.warning("notification_untracked_payment", gateway_payment_id=gateway_payment_id)
                return ReconciliationAck(
                    action=ReconciliationAction.UNTRACKED,
                    gateway_payment_id=gateway_payment_id,
                )

        ticket_id = entry.internal_ticket_id
        log = logger.bind(gateway_payment_id=gateway_payment_id, ticket_id=str(ticket_id))

        try:
            raw = await self._fetch_within_deadline(gateway_payment_id)
            _, status, detail = self.interpreter.interpret_status(raw)
        except PaymentGatewayException as exc:
            log.error("reconciliation_fetch_failed", error_type=exc.error_type, error=exc.message)
            await self._mark_failed(entry, f"{exc.error_type}: {exc.message}")
            return ReconciliationAck(
                action=ReconciliationAction.FAILED,
                gateway_payment_id=gateway_payment_id,
                ticket_id=ticket_id,
            )

        try:
            async with self._uow_factory() as uow:
                transition = await uow.ledger_repository.apply_status(ticket_id, status, detail)
        except InvalidTransitionException as exc:
            log.warning("reconciliation_transition_refused", current=exc.current, target=exc.target)
            await self._clear_marker(entry)
            return ReconciliationAck(
                action=ReconciliationAction.REJECTED_TRANSITION,
                gateway_payment_id=gateway_payment_id,
                ticket_id=ticket_id,
                status=PaymentStatus(exc.current),
            )
        except LedgerConflictException as exc:
            log.error("reconciliation_ledger_conflict", error=exc.message)
            await self._mark_failed(entry, f"{exc.error_type}: {exc.message}")
            return ReconciliationAck(
                action=ReconciliationAction.FAILED,
                gateway_payment_id=gateway_payment_id,
                ticket_id=ticket_id,
            )

        if transition.fulfilled:
            await self._fulfill(entry)

        if transition.transitioned:
            log.info(
                "reconciliation_transitioned",
                previous_status=transition.previous_status.value,
                status=status.value,
                fulfilled=transition.fulfilled,
            )
            action = ReconciliationAction.TRANSITIONED
        else:
            log.info("reconciliation_unchanged", status=status.value)
            await self._clear_marker(entry)
            action = ReconciliationAction.UNCHANGED

        return ReconciliationAck(
            action=action,
            gateway_payment_id=gateway_payment_id,
            ticket_id=ticket_id,
            status=status,
            fulfilled=transition.fulfilled,
        )

    async def retry_failed(self, limit: int = 100) -> List[ReconciliationAck]:
        """处理带失败标记的条目（由定时任务调用）

        投递派发失败的条目重新派发投递；其余条目重新对账。
        """
        async with self._uow_factory(readonly=True) as uow:
            entries = await uow.ledger_repository.list_reconciliation_failed(limit)

        acks: List[ReconciliationAck] = []
        for entry in entries:
            if entry.delivery_pending:
                acks.append(await self._redeliver(entry))
            elif entry.gateway_payment_id:
                acks.append(await self.reconcile(entry.gateway_payment_id))
        logger.info(
            "reconciliation_retry_batch_done",
            candidates=len(entries),
            recovered=sum(1 for a in acks if a.action is not ReconciliationAction.FAILED),
        )
        return acks

    async def _fetch_within_deadline(self, gateway_payment_id: str) -> Mapping[str, Any]:
        if self.fetch_deadline is None:
            return await self._fetch_with_retry(gateway_payment_id)
        try:
            return await asyncio.wait_for(self._fetch_with_retry(gateway_payment_id), self.fetch_deadline)
        except asyncio.TimeoutError as exc:
            raise PaymentTransientException(
                f"Status fetch exceeded {self.fetch_deadline}s",
                provider=self.gateway.provider,
            ) from exc

    async def _fetch_with_retry(self, gateway_payment_id: str) -> Mapping[str, Any]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            retry=retry_if_exception_type(PaymentTransientException),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "reconciliation_fetch_retry",
                        gateway_payment_id=gateway_payment_id,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await self.gateway.fetch_status(gateway_payment_id, retry=False)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _mark_failed(self, entry: LedgerEntry, reason: str) -> None:
        if entry.delivery_pending:
            # 未派发的投递优先级更高，不覆盖
            logger.warning(
                "reconciliation_failure_not_recorded",
                ticket_id=str(entry.internal_ticket_id),
                reason=reason,
                pending=entry.reconciliation_error,
            )
            return
        async with self._uow_factory() as uow:
            await uow.ledger_repository.mark_reconciliation_failed(entry.internal_ticket_id, reason)

    async def _clear_marker(self, entry: LedgerEntry) -> None:
        if not entry.reconciliation_failed or entry.delivery_pending:
            return
        async with self._uow_factory() as uow:
            await uow.ledger_repository.clear_reconciliation_failed(entry.internal_ticket_id)

    async def _redeliver(self, entry: LedgerEntry) -> ReconciliationAck:
        """重新派发投递；先清除标记，清除成功的调用方才派发"""
        ticket_id = entry.internal_ticket_id
        async with self._uow_factory() as uow:
            claimed = await uow.ledger_repository.clear_reconciliation_failed(ticket_id)
        if not claimed:
            return ReconciliationAck(
                action=ReconciliationAction.UNCHANGED,
                gateway_payment_id=entry.gateway_payment_id,
                ticket_id=ticket_id,
                status=entry.status,
            )

        delivered = await self._fulfill(entry)
        logger.info("ticket_redelivery", ticket_id=str(ticket_id), dispatched=delivered)
        return ReconciliationAck(
            action=ReconciliationAction.REDELIVERED if delivered else ReconciliationAction.FAILED,
            gateway_payment_id=entry.gateway_payment_id,
            ticket_id=ticket_id,
            status=entry.status,
            fulfilled=delivered,
        )

    async def _fulfill(self, entry: LedgerEntry) -> bool:
        """台账已提交 fulfilled=True；派发失败时记录标记，由定时任务重新派发"""
        try:
            await self.fulfillment.deliver(entry.internal_ticket_id, entry.payer_email)
        except Exception as exc:
            logger.error(
                "ticket_fulfillment_dispatch_failed",
                ticket_id=str(entry.internal_ticket_id),
                error=str(exc),
                exc_info=True,
            )
            async with self._uow_factory() as uow:
                await uow.ledger_repository.mark_reconciliation_failed(
                    entry.internal_ticket_id, f"{FULFILLMENT_DISPATCH_FAILED}: {exc}"
                )
            return False
        return True
