"""
支付台账仓储接口 - 定义台账数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from .entity import LedgerEntry, PaymentStatus, StatusTransition


class LedgerRepository(ABC):
    """支付台账仓储抽象接口

    以 internal_ticket_id 为主键、gateway_payment_id 为二级索引。
    attach_gateway_id 与 apply_status 必须实现为单条目原子比较并交换（CAS）。
    """

    @abstractmethod
    async def create(self, entry: LedgerEntry) -> LedgerEntry:
        """创建台账条目；ticket 已存在时抛出 LedgerConflictException"""

    @abstractmethod
    async def get_by_ticket_id(self, ticket_id: UUID) -> Optional[LedgerEntry]:
        """根据内部票号获取条目"""

    @abstractmethod
    async def find_by_gateway_id(self, gateway_payment_id: str) -> LedgerEntry:
        """根据网关支付ID获取条目；不存在时抛出 LedgerEntryNotFoundException"""

    @abstractmethod
    async def attach_gateway_id(
        self,
        ticket_id: UUID,
        gateway_payment_id: str,
        status: Optional[PaymentStatus] = None,
        status_detail: Optional[str] = None,
    ) -> StatusTransition:
        """绑定网关支付ID（幂等）；可同时写入网关首次返回的状态"""

    @abstractmethod
    async def apply_status(
        self,
        ticket_id: UUID,
        new_status: PaymentStatus,
        status_detail: Optional[str] = None,
    ) -> StatusTransition:
        """按状态机推进状态；相同状态为 no-op，是触发履约的唯一闸门"""

    @abstractmethod
    async def mark_reconciliation_failed(self, ticket_id: UUID, reason: str) -> None:
        """记录对账失败标记，供人工或定时任务跟进"""

    @abstractmethod
    async def clear_reconciliation_failed(self, ticket_id: UUID) -> bool:
        """清除对账失败标记；返回 True 表示本次调用清除了它"""

    @abstractmethod
    async def list_reconciliation_failed(self, limit: int = 100) -> List[LedgerEntry]:
        """列出带对账失败标记的条目"""
