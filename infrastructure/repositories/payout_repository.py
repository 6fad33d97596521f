"""
提现/钱包仓储实现
"""
from typing import Optional, List
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from domain.payout.entity import Payout, Wallet, ensure_positive_amount
from domain.payout.repository import PayoutRepository, WalletRepository
from infrastructure.models.payout import PayoutModel, WalletModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPayoutRepository(PayoutRepository):
    """提现仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PayoutModel) -> Payout:
        return Payout(
            id=model.id,
            user_id=model.user_id,
            amount=int(model.amount),
            stripe_payout_id=model.stripe_payout_id,
            created_at=model.created_at,
        )

    async def create(self, payout: Payout) -> Payout:
        """创建提现记录"""
        db_payout = PayoutModel(
            id=payout.id,
            user_id=payout.user_id,
            amount=payout.amount,
            stripe_payout_id=payout.stripe_payout_id,
            created_at=payout.created_at,
        )
        self.session.add(db_payout)
        await self.session.flush()
        logger.info(
            "payout_created",
            payout_id=db_payout.id,
            user_id=db_payout.user_id,
            amount=db_payout.amount,
            stripe_payout_id=db_payout.stripe_payout_id,
        )
        return self._to_entity(db_payout)

    async def get_by_stripe_id(self, stripe_payout_id: str) -> Optional[Payout]:
        result = await self.session.execute(
            select(PayoutModel).where(PayoutModel.stripe_payout_id == stripe_payout_id)
        )
        db_payout = result.scalar_one_or_none()
        return self._to_entity(db_payout) if db_payout else None

    async def list_by_user(self, user_id: str, skip: int = 0, limit: int = 100) -> List[Payout]:
        result = await self.session.execute(
            select(PayoutModel)
            .where(PayoutModel.user_id == user_id)
            .order_by(PayoutModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]


class SQLAlchemyWalletRepository(WalletRepository):
    """钱包仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WalletModel) -> Wallet:
        return Wallet(
            user_id=model.user_id,
            balance=int(model.balance),
            last_payout=model.last_payout,
        )

    async def _ensure_row(self, user_id: str) -> None:
        exists = await self.session.execute(
            select(WalletModel.user_id).where(WalletModel.user_id == user_id)
        )
        if exists.scalar_one_or_none() is not None:
            return
        try:
            # 并发首次访问时由主键约束裁决，保存点避免污染外层事务
            async with self.session.begin_nested():
                self.session.add(WalletModel(user_id=user_id, balance=0))
        except IntegrityError:
            logger.debug("wallet_create_race", user_id=user_id)

    async def get(self, user_id: str, *, for_update: bool = False) -> Wallet:
        await self._ensure_row(user_id)
        query = (
            select(WalletModel)
            .where(WalletModel.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return self._to_entity(result.scalar_one())

    async def debit(self, user_id: str, amount: int, *, payout_at: Optional[datetime] = None) -> Wallet:
        ensure_positive_amount(amount)
        await self._ensure_row(user_id)
        values = {"balance": WalletModel.balance - amount}
        if payout_at is not None:
            values["last_payout"] = payout_at
        await self.session.execute(
            update(WalletModel)
            .where(WalletModel.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        wallet = await self.get(user_id)
        logger.info(
            "wallet_debited",
            user_id=user_id,
            amount=amount,
            balance=wallet.balance,
            payout=payout_at is not None,
        )
        return wallet
