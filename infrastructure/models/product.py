"""
商品数据库模型
"""
from sqlalchemy import Column, String, BigInteger, DateTime, ForeignKey
from datetime import datetime, timezone

from .base import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True)
    seller_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="卖家ID"
    )
    title = Column(String(255), nullable=False, comment="标题")
    price = Column(BigInteger, nullable=False, comment="价格（最小货币单位）")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<ProductModel(id={self.id}, seller_id={self.seller_id}, price={self.price})>"
