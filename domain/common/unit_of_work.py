"""Unit of Work 抽象：应用层以它划定台账事务边界"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.payment.repository import LedgerRepository


class AbstractUnitOfWork(ABC):
    """
    用法::

        async with uow_factory() as uow:
            transition = await uow.ledger_repository.apply_status(...)
        # 这里事务已提交，可以安全地触发履约

    ``readonly=True`` 只用于查询，退出时不提交。
    """

    ledger_repository: LedgerRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    @property
    def readonly(self) -> bool:
        return self._readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None:
            await self.rollback()
        elif not self._readonly and not self._committed:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...
