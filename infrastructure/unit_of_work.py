"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.order_repository import (
    SQLAlchemyOrderRepository,
    SQLAlchemyRefundRepository,
)
from infrastructure.repositories.payout_repository import (
    SQLAlchemyPayoutRepository,
    SQLAlchemyWalletRepository,
)
from infrastructure.repositories.product_repository import SQLAlchemyProductRepository
from infrastructure.repositories.user_repository import SQLAlchemyUserRepository
from infrastructure.repositories.webhook_event_repository import (
    SQLAlchemyWebhookEventRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._committed = False
        self.orders = SQLAlchemyOrderRepository(self.session)
        self.refunds = SQLAlchemyRefundRepository(self.session)
        self.payouts = SQLAlchemyPayoutRepository(self.session)
        self.wallets = SQLAlchemyWalletRepository(self.session)
        self.webhook_events = SQLAlchemyWebhookEventRepository(self.session)
        self.users = SQLAlchemyUserRepository(self.session)
        self.products = SQLAlchemyProductRepository(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly and not self.session.in_transaction():
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.orders = None
            self.refunds = None
            self.payouts = None
            self.wallets = None
            self.webhook_events = None
            self.users = None
            self.products = None

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
