"""
用户数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import Column, String, Boolean, DateTime
from datetime import datetime, timezone

from .base import Base


class UserModel(Base):
    """
    用户数据库模型

    只保存支付相关的字段，所有业务规则都在 domain.user.entity.User 中
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, index=True, nullable=False, comment="邮箱")

    # 网关子账户
    stripe_account = Column(String(255), unique=True, nullable=True, comment="网关子账户ID")
    stripe_verified = Column(Boolean, default=False, nullable=False, comment="是否已开通收款和提现")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<UserModel(id={self.id}, email='{self.email}', stripe_account='{self.stripe_account}')>"
