"""SQLAlchemy Unit of Work：一次台账事务对应一个会话"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.ledger_repository import SQLAlchemyLedgerRepository


logger = get_logger(__name__)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """``async with`` 正常退出时提交，异常时回滚。

    只读模式不开启显式事务，也从不提交；退出时丢弃会话中的一切改动。
    传入外部 ``session`` 时由调用方负责关闭。
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._owns_session = session is None
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.ledger_repository = SQLAlchemyLedgerRepository(self.session)
        if not self._readonly:
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._readonly:
                await self.rollback()
            else:
                await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._owns_session and self.session is not None:
                await self.session.close()
                self.session = None
            self.ledger_repository = None  # type: ignore[assignment]

    async def commit(self) -> None:
        if self._readonly:
            raise RuntimeError("readonly unit of work cannot commit")
        if self.session is not None and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session is not None and self.session.in_transaction():
            await self.session.rollback()
            if not self._readonly:
                logger.info("ledger_transaction_rolled_back")
        self._committed = False
