"""
用户仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.user.entity import User
from domain.user.repository import UserRepository
from domain.common.exceptions import UserNotFoundException
from infrastructure.models.user import UserModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyUserRepository(UserRepository):
    """用户仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserModel) -> User:
        """将数据库模型转换为领域实体"""
        return User(
            id=model.id,
            email=model.email,
            stripe_account=model.stripe_account,
            stripe_verified=model.stripe_verified,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, user: User) -> User:
        """创建用户"""
        db_user = UserModel(
            id=user.id,
            email=user.email,
            stripe_account=user.stripe_account,
            stripe_verified=user.stripe_verified,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )
        self.session.add(db_user)
        await self.session.flush()
        return self._to_entity(db_user)

    async def get_by_id(self, user_id: str) -> Optional[User]:
        """根据ID获取用户"""
        result = await self.session.execute(select(UserModel).where(UserModel.id == user_id))
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def get_by_stripe_account(self, account_id: str) -> Optional[User]:
        """根据网关账户ID获取用户"""
        result = await self.session.execute(
            select(UserModel).where(UserModel.stripe_account == account_id)
        )
        db_user = result.scalar_one_or_none()
        return self._to_entity(db_user) if db_user else None

    async def update(self, user: User) -> User:
        """更新用户的网关字段"""
        result = await self.session.execute(select(UserModel).where(UserModel.id == user.id))
        db_user = result.scalar_one_or_none()
        if not db_user:
            raise UserNotFoundException(user.id)

        db_user.stripe_account = user.stripe_account
        db_user.stripe_verified = user.stripe_verified
        if user.updated_at is not None:
            db_user.updated_at = user.updated_at

        await self.session.flush()
        logger.info(
            "user_updated",
            user_id=db_user.id,
            stripe_account=db_user.stripe_account,
            stripe_verified=db_user.stripe_verified,
        )
        return self._to_entity(db_user)
