"""
提现/钱包数据库模型
"""
from sqlalchemy import Column, String, BigInteger, DateTime, ForeignKey, Index
from datetime import datetime, timezone

from .base import Base


class PayoutModel(Base):
    """已由网关确认的提现"""
    __tablename__ = "payouts"

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, comment="用户ID")
    amount = Column(BigInteger, nullable=False, comment="提现金额")
    stripe_payout_id = Column(String(255), unique=True, nullable=False, comment="网关提现ID")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_payouts_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<PayoutModel(id={self.id}, user_id={self.user_id}, amount={self.amount})>"


class WalletModel(Base):
    """用户钱包 - 每个用户一行"""
    __tablename__ = "wallets"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    balance = Column(BigInteger, nullable=False, default=0, comment="余额（最小货币单位）")
    last_payout = Column(DateTime(timezone=True), nullable=True, comment="最近一次提现时间")

    def __repr__(self):
        return f"<WalletModel(user_id={self.user_id}, balance={self.balance})>"
