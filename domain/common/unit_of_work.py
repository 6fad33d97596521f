"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.catalog.repository import ProductRepository
from domain.order.repository import OrderRepository, RefundRepository
from domain.payout.repository import PayoutRepository, WalletRepository
from domain.user.repository import UserRepository
from domain.webhook.repository import WebhookEventRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    One instance is one transaction: leaving the ``async with`` block commits
    unless an exception escaped, in which case everything rolls back.
    """

    orders: OrderRepository
    refunds: RefundRepository
    payouts: PayoutRepository
    wallets: WalletRepository
    webhook_events: WebhookEventRepository
    users: UserRepository
    products: ProductRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.orders = None  # type: ignore[assignment]
        self.refunds = None  # type: ignore[assignment]
        self.payouts = None  # type: ignore[assignment]
        self.wallets = None  # type: ignore[assignment]
        self.webhook_events = None  # type: ignore[assignment]
        self.users = None  # type: ignore[assignment]
        self.products = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
