"""
Webhook 事件数据库模型 - 以网关事件ID为主键实现幂等
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class WebhookEventModel(Base):
    __tablename__ = "webhook_events"

    id = Column(String(255), primary_key=True, comment="网关事件ID")
    event_type = Column(String(100), nullable=False, index=True, comment="事件类型")
    payload = Column(JSON, nullable=False, comment="原始事件")
    processed = Column(Boolean, nullable=False, default=False, comment="是否已处理")
    error = Column(Text, nullable=True, comment="处理错误")
    attempts = Column(Integer, nullable=False, default=1, comment="处理次数")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    claimed_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="认领时间",
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_webhook_events_processed", "processed", "created_at"),
        Index("ix_webhook_events_unfinished", "processed", "claimed_at"),
    )

    def __repr__(self):
        return f"<WebhookEventModel(id={self.id}, type='{self.event_type}', processed={self.processed})>"
