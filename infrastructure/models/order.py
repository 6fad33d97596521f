"""
订单/退款数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, BigInteger, DateTime, Text, JSON,
    Index, ForeignKey, CheckConstraint
)
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有业务规则都在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)

    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True, comment="买家ID")
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True, comment="卖家ID")
    # 商品删除后订单保留
    product_id = Column(
        String(36),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        comment="商品ID"
    )

    amount = Column(BigInteger, nullable=False, comment="金额（最小货币单位）")
    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="订单状态: PENDING/COMPLETED/FAILED/REFUNDED"
    )

    # 网关结账会话
    checkout_session_id = Column(String(255), unique=True, nullable=True, comment="网关结账会话ID")
    payment_url = Column(String(2048), nullable=True, comment="支付跳转URL")

    refund_id = Column(String(255), nullable=True, comment="网关退款ID")

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

    __table_args__ = (
        Index("ix_orders_buyer_created", "buyer_id", "created_at"),
        Index("ix_orders_seller_created", "seller_id", "created_at"),
        CheckConstraint("amount > 0", name="ck_orders_amount_positive"),
    )

    def __repr__(self):
        return f"<OrderModel(id={self.id}, amount={self.amount}, status='{self.status}')>"


class RefundModel(Base):
    """
    退款数据库模型

    每个订单最多一条退款记录（order_id 唯一）
    """
    __tablename__ = "refunds"

    id = Column(String(36), primary_key=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        comment="订单ID"
    )

    amount = Column(BigInteger, nullable=False, comment="退款金额")
    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="退款状态: PENDING/SUCCEEDED/FAILED"
    )
    gateway_refund_id = Column(String(255), nullable=True, index=True, comment="网关退款ID")
    reason = Column(String(100), nullable=True, comment="退款原因")
    failure_reason = Column(Text, nullable=True, comment="失败原因")
    attempts = Column(Integer, nullable=False, default=1, comment="网关请求次数")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    def __repr__(self):
        return f"<RefundModel(id={self.id}, order_id={self.order_id}, status='{self.status}')>"
