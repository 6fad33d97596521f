"""
网关子账户服务 - 开户、状态查询、控制台链接、解绑
"""
from __future__ import annotations

from typing import Callable

from application.dtos.payments import AccountStatusDTO, LinkDTO
from application.ports.locks import KeyedLock
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import SellerNotConnectedException, UserNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.user.entity import User


logger = get_logger(__name__)


class AccountService:

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

    async def _get_user(self, user_id: str) -> User:
        async with self._uow_factory(readonly=True) as uow:
            user = await uow.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundException(user_id)
        return user

    async def connect(self, user_id: str) -> LinkDTO:
        """Create the express account on first call, then return an onboarding link.

        Serialized per user so concurrent first calls create a single account.
        """
        async with self.locks.hold(f"account:{user_id}"):
            user = await self._get_user(user_id)
            account_id = user.stripe_account
            if not account_id:
                account = await self.gateway.create_account(user.email)
                account_id = account.account_id
                async with self._uow_factory() as uow:
                    user = await uow.users.get_by_id(user_id)
                    user.link_stripe_account(account_id)
                    await uow.users.update(user)
                logger.info("account_connected", user_id=user_id, account_id=account_id)

        base = self.config.frontend_url.rstrip("/")
        url = await self.gateway.create_account_link(
            account_id,
            refresh_url=f"{base}/stripe/refresh",
            return_url=f"{base}/stripe/return",
        )
        return LinkDTO(url=url)

    async def account_status(self, user_id: str) -> AccountStatusDTO:
        user = await self._get_user(user_id)
        if not user.stripe_account:
            return AccountStatusDTO(connected=False)

        account = await self.gateway.retrieve_account(user.stripe_account)
        verified = user.stripe_verified
        if account.fully_enabled and not verified:
            async with self._uow_factory() as uow:
                fresh = await uow.users.get_by_id(user_id)
                if fresh.mark_verified():
                    await uow.users.update(fresh)
            verified = True
            logger.info("user_verified", user_id=user_id, account_id=account.account_id)

        return AccountStatusDTO(
            connected=True,
            account_id=account.account_id,
            details_submitted=account.details_submitted,
            charges_enabled=account.charges_enabled,
            payouts_enabled=account.payouts_enabled,
            verified=verified,
        )

    async def dashboard_link(self, user_id: str) -> LinkDTO:
        user = await self._get_user(user_id)
        if not user.stripe_account:
            raise SellerNotConnectedException(user_id)
        return LinkDTO(url=await self.gateway.create_login_link(user.stripe_account))

    async def disconnect(self, user_id: str) -> None:
        user = await self._get_user(user_id)
        if not user.stripe_account:
            raise SellerNotConnectedException(user_id)
        await self.gateway.delete_account(user.stripe_account)
        async with self._uow_factory() as uow:
            fresh = await uow.users.get_by_id(user_id)
            fresh.unlink_stripe_account()
            await uow.users.update(fresh)
        logger.info("account_disconnected", user_id=user_id, account_id=user.stripe_account)
