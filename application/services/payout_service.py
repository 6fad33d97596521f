"""
提现服务 - 按用户串行化的提现流程

The live gateway balance is the source of truth for sufficiency; the local
wallet only mirrors what has been paid out. A payout row is written only
after the gateway has confirmed the payout.
"""
from __future__ import annotations

import uuid
from typing import Callable, List

from application.dtos.payments import BalanceDTO, PayoutDTO, PayoutRequest, PayoutResult
from application.ports.locks import KeyedLock
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    InsufficientFundsException,
    PayoutNotFoundException,
    SellerNotConnectedException,
    UserNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payout.entity import Payout, ensure_positive_amount
from domain.payout.events import PayoutIssued
from domain.user.entity import User


logger = get_logger(__name__)


class PayoutService:
    """提现应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        locks: KeyedLock,
        config: PaymentSettings = payment_settings,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.locks = locks
        self.config = config
        self.events: list = []

    def clear_events(self) -> None:
        self.events.clear()

    async def _connected_user(self, user_id: str) -> User:
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(user_id)
        if not user.stripe_account:
            raise SellerNotConnectedException(user_id)
        return user

    async def create_payout(self, user_id: str, amount: int) -> PayoutDTO:
        ensure_positive_amount(amount)

        async with self.locks.hold(f"payout:{user_id}") as lease:
            user = await self._connected_user(user_id)
            # 子账户必须仍然存在于网关
            await self.gateway.retrieve_account(user.stripe_account)

            # 每次网关调用前续期；锁已丢失则在出款前失败
            await lease.refresh()
            balance = await self.gateway.retrieve_balance(user.stripe_account, self.config.currency)
            if balance.available < amount:
                logger.info(
                    "payout_insufficient_funds",
                    user_id=user_id,
                    requested=amount,
                    available=balance.available,
                )
                raise InsufficientFundsException(amount, balance.available)

            await lease.refresh()
            result = await self.gateway.create_payout(
                PayoutRequest(
                    stripe_account=user.stripe_account,
                    amount=amount,
                    currency=self.config.currency,
                    idempotency_key=f"payout:{user_id}:{amount}:{uuid.uuid4().hex}",
                )
            )

            try:
                async with self._uow_factory() as uow:
                    await uow.wallets.get(user_id, for_update=True)
                    payout = await uow.payouts.create(
                        Payout.confirmed(user_id=user_id, amount=amount, stripe_payout_id=result.payout_id)
                    )
                    await uow.wallets.debit(user_id, amount, payout_at=payout.created_at)
            except Exception:
                # 网关已出款但本地未落账，需要人工对账
                logger.error(
                    "payout_ledger_write_failed",
                    user_id=user_id,
                    amount=amount,
                    stripe_payout_id=result.payout_id,
                    exc_info=True,
                )
                raise

        self.events.append(
            PayoutIssued(user_id=user_id, amount=amount, stripe_payout_id=result.payout_id)
        )
        logger.info("payout_issued", user_id=user_id, amount=amount, stripe_payout_id=result.payout_id)
        return PayoutDTO.model_validate(payout)

    async def get_balance(self, user_id: str) -> BalanceDTO:
        user = await self._connected_user(user_id)
        balance = await self.gateway.retrieve_balance(user.stripe_account, self.config.currency)
        return BalanceDTO(available=balance.available, pending=balance.pending, currency=balance.currency)

    async def _owned_payout(self, user_id: str, stripe_payout_id: str) -> User:
        user = await self._connected_user(user_id)
        async with self._uow_factory(readonly=True) as uow:
            payout = await uow.payouts.get_by_stripe_id(stripe_payout_id)
        if payout is None or payout.user_id != user_id:
            raise PayoutNotFoundException(stripe_payout_id)
        return user

    async def get_payout(self, user_id: str, stripe_payout_id: str) -> PayoutResult:
        user = await self._owned_payout(user_id, stripe_payout_id)
        return await self.gateway.retrieve_payout(stripe_payout_id, user.stripe_account)

    async def cancel_payout(self, user_id: str, stripe_payout_id: str) -> PayoutResult:
        user = await self._owned_payout(user_id, stripe_payout_id)
        result = await self.gateway.cancel_payout(stripe_payout_id, user.stripe_account)
        logger.info("payout_cancel_requested", user_id=user_id, stripe_payout_id=stripe_payout_id, status=result.status)
        return result

    async def list_payouts(self, user_id: str, skip: int = 0, limit: int = 100) -> List[PayoutDTO]:
        async with self._uow_factory(readonly=True) as uow:
            payouts = await uow.payouts.list_by_user(user_id, skip=skip, limit=limit)
        return [PayoutDTO.model_validate(p) for p in payouts]
