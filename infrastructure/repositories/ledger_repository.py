"""
支付台账仓储实现 - 使用SQLAlchemy实现数据访问

所有写操作都是单行 ``UPDATE ... WHERE`` 比较并交换：以读取到的旧值作为条件，
受影响行数为 0 说明被并发修改，重新读取后再试（有限次数）。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.exceptions import LedgerConflictException, LedgerEntryNotFoundException
from domain.payment.entity import (
    LedgerEntry,
    PaymentMethodKind,
    PaymentStatus,
    StatusTransition,
)
from domain.payment.repository import LedgerRepository
from infrastructure.models.ledger import LedgerEntryModel


logger = get_logger(__name__)

STATUS_DETAIL_MAX = 255


def _detail(value: Optional[str]) -> Optional[str]:
    return value[:STATUS_DETAIL_MAX] if value else value


class SQLAlchemyLedgerRepository(LedgerRepository):
    """支付台账仓储的SQLAlchemy实现"""

    MAX_CAS_ATTEMPTS = 5

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: LedgerEntryModel) -> LedgerEntry:
        """将数据库模型转换为领域实体"""
        return LedgerEntry(
            id=model.id,
            internal_ticket_id=UUID(model.ticket_id),
            gateway_payment_id=model.gateway_payment_id,
            status=PaymentStatus(model.status),
            status_detail=model.status_detail,
            fulfilled=bool(model.fulfilled),
            payment_method=PaymentMethodKind(model.payment_method) if model.payment_method else None,
            amount=Decimal(str(model.amount)) if model.amount is not None else None,
            description=model.description,
            payer_email=model.payer_email,
            reconciliation_failed=bool(model.reconciliation_failed),
            reconciliation_error=model.reconciliation_error,
            created_at=model.created_at,
            last_updated_at=model.updated_at,
        )

    async def _load(self, ticket_id: UUID) -> Optional[LedgerEntryModel]:
        result = await self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.ticket_id == str(ticket_id))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _compare_and_set(self, ticket_id: UUID, conditions: list, values: dict) -> bool:
        stmt = (
            update(LedgerEntryModel)
            .where(LedgerEntryModel.ticket_id == str(ticket_id), *conditions)
            .values(updated_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def create(self, entry: LedgerEntry) -> LedgerEntry:
        """创建台账条目"""
        ticket_id = str(entry.internal_ticket_id)
        if await self._load(entry.internal_ticket_id) is not None:
            logger.warning("ledger_create_conflict", ticket_id=ticket_id)
            raise LedgerConflictException("Ticket already registered in the ledger", ticket_id=ticket_id)

        now = datetime.now(timezone.utc)
        model = LedgerEntryModel(
            ticket_id=ticket_id,
            gateway_payment_id=entry.gateway_payment_id,
            status=entry.status.value,
            status_detail=_detail(entry.status_detail),
            fulfilled=entry.fulfilled,
            payment_method=entry.payment_method.value if entry.payment_method else None,
            amount=entry.amount,
            description=entry.description,
            payer_email=entry.payer_email,
            reconciliation_failed=False,
            created_at=entry.created_at or now,
            updated_at=entry.last_updated_at or now,
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError:
            # 并发创建同一票号：唯一约束兜底
            await self.session.rollback()
            logger.warning("ledger_create_conflict", ticket_id=ticket_id, race=True)
            raise LedgerConflictException("Ticket already registered in the ledger", ticket_id=ticket_id)
        await self.session.refresh(model)
        logger.info("ledger_entry_created", ticket_id=ticket_id, payment_method=model.payment_method)
        return self._to_entity(model)

    async def get_by_ticket_id(self, ticket_id: UUID) -> Optional[LedgerEntry]:
        model = await self._load(ticket_id)
        return self._to_entity(model) if model else None

    async def find_by_gateway_id(self, gateway_payment_id: str) -> LedgerEntry:
        result = await self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.gateway_payment_id == str(gateway_payment_id))
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        if model is None:
            raise LedgerEntryNotFoundException(gateway_payment_id=str(gateway_payment_id))
        return self._to_entity(model)

    async def attach_gateway_id(
        self,
        ticket_id: UUID,
        gateway_payment_id: str,
        status: Optional[PaymentStatus] = None,
        status_detail: Optional[str] = None,
    ) -> StatusTransition:
        """绑定网关支付ID

        - 同一ID重复绑定：幂等，不做任何修改
        - 已绑定不同ID：LedgerConflictException
        - 传入 status 时作为网关首次返回的状态一并写入（不走状态机），
          若为 approved 则同时置 fulfilled
        """
        for _ in range(self.MAX_CAS_ATTEMPTS):
            model = await self._load(ticket_id)
            if model is None:
                raise LedgerEntryNotFoundException(ticket_id=str(ticket_id))
            current = self._to_entity(model)

            if current.gateway_payment_id is not None:
                if current.gateway_payment_id == gateway_payment_id:
                    return StatusTransition(previous_status=current.status, transitioned=False)
                logger.error(
                    "ledger_gateway_id_conflict",
                    ticket_id=str(ticket_id),
                    attached=current.gateway_payment_id,
                    incoming=gateway_payment_id,
                )
                raise LedgerConflictException(
                    "A different gateway payment id is already attached",
                    ticket_id=str(ticket_id),
                    details={"attached": current.gateway_payment_id, "incoming": gateway_payment_id},
                )

            values: dict = {"gateway_payment_id": gateway_payment_id}
            changed = status is not None and status != current.status
            fulfilled_now = False
            if changed:
                values["status"] = status.value
                values["status_detail"] = _detail(status_detail)
                if status is PaymentStatus.APPROVED and not current.fulfilled:
                    values["fulfilled"] = True
                    fulfilled_now = True
            elif status_detail is not None:
                values["status_detail"] = _detail(status_detail)

            try:
                swapped = await self._compare_and_set(
                    ticket_id,
                    [
                        LedgerEntryModel.gateway_payment_id.is_(None),
                        LedgerEntryModel.status == current.status.value,
                        LedgerEntryModel.fulfilled == current.fulfilled,
                    ],
                    values,
                )
            except IntegrityError:
                await self.session.rollback()
                raise LedgerConflictException(
                    "Gateway payment id already attached to another ticket",
                    ticket_id=str(ticket_id),
                    details={"incoming": gateway_payment_id},
                )
            if swapped:
                logger.info(
                    "ledger_gateway_id_attached",
                    ticket_id=str(ticket_id),
                    gateway_payment_id=gateway_payment_id,
                    status=(status or current.status).value,
                )
                return StatusTransition(
                    previous_status=current.status,
                    transitioned=changed,
                    fulfilled=fulfilled_now,
                )

        raise LedgerConflictException("Ledger entry kept changing during attach", ticket_id=str(ticket_id))

    async def apply_status(
        self,
        ticket_id: UUID,
        new_status: PaymentStatus,
        status_detail: Optional[str] = None,
    ) -> StatusTransition:
        """推进状态

        相同状态为 no-op（transitioned=False），重复通知因此天然幂等。
        首次进入 approved 时在同一条 UPDATE 中置 fulfilled=True，
        只有拿到 fulfilled=True 的调用方负责履约。
        """
        for _ in range(self.MAX_CAS_ATTEMPTS):
            model = await self._load(ticket_id)
            if model is None:
                raise LedgerEntryNotFoundException(ticket_id=str(ticket_id))
            current = self._to_entity(model)

            if current.status == new_status:
                return StatusTransition(previous_status=current.status, transitioned=False)

            current.ensure_can_transition(new_status)

            fulfilled_now = new_status is PaymentStatus.APPROVED and not current.fulfilled
            values = {
                "status": new_status.value,
                "status_detail": _detail(status_detail),
                "fulfilled": current.fulfilled or fulfilled_now,
                "reconciliation_failed": False,
                "reconciliation_error": None,
            }
            swapped = await self._compare_and_set(
                ticket_id,
                [
                    LedgerEntryModel.status == current.status.value,
                    LedgerEntryModel.fulfilled == current.fulfilled,
                ],
                values,
            )
            if swapped:
                logger.info(
                    "ledger_status_applied",
                    ticket_id=str(ticket_id),
                    previous_status=current.status.value,
                    status=new_status.value,
                    fulfilled=fulfilled_now,
                )
                return StatusTransition(
                    previous_status=current.status,
                    transitioned=True,
                    fulfilled=fulfilled_now,
                )
            logger.info("ledger_status_cas_retry", ticket_id=str(ticket_id))

        raise LedgerConflictException("Ledger entry kept changing during status update", ticket_id=str(ticket_id))

    async def mark_reconciliation_failed(self, ticket_id: UUID, reason: str) -> None:
        swapped = await self._compare_and_set(
            ticket_id,
            [],
            {"reconciliation_failed": True, "reconciliation_error": reason[:2000]},
        )
        if not swapped:
            raise LedgerEntryNotFoundException(ticket_id=str(ticket_id))
        logger.warning("ledger_reconciliation_failed_marked", ticket_id=str(ticket_id), reason=reason)

    async def clear_reconciliation_failed(self, ticket_id: UUID) -> bool:
        return await self._compare_and_set(
            ticket_id,
            [LedgerEntryModel.reconciliation_failed.is_(True)],
            {"reconciliation_failed": False, "reconciliation_error": None},
        )

    async def list_reconciliation_failed(self, limit: int = 100) -> List[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.reconciliation_failed.is_(True))
            .order_by(LedgerEntryModel.updated_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
