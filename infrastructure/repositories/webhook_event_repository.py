"""
Webhook 事件仓储实现 - 依赖主键约束实现幂等
"""
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError

from domain.webhook.entity import WebhookEvent
from domain.webhook.repository import WebhookEventRepository
from infrastructure.models.webhook_event import WebhookEventModel
from core.logging_config import get_logger


logger = get_logger(__name__)


def _unfinished(stale_before: datetime):
    """已释放，或认领后超过租期仍在处理中"""
    return and_(
        WebhookEventModel.processed.is_(False),
        or_(
            WebhookEventModel.error.is_not(None),
            WebhookEventModel.claimed_at < stale_before,
        ),
    )


class SQLAlchemyWebhookEventRepository(WebhookEventRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookEventModel) -> WebhookEvent:
        return WebhookEvent(
            id=model.id,
            event_type=model.event_type,
            payload=model.payload or {},
            processed=model.processed,
            error=model.error,
            attempts=model.attempts,
            created_at=model.created_at,
            claimed_at=model.claimed_at,
            processed_at=model.processed_at,
        )

    async def claim(self, event: WebhookEvent, stale_before: datetime) -> bool:
        now = datetime.now(timezone.utc)
        try:
            async with self.session.begin_nested():
                self.session.add(
                    WebhookEventModel(
                        id=event.id,
                        event_type=event.event_type,
                        payload=event.payload,
                        processed=False,
                        error=None,
                        attempts=1,
                        created_at=event.created_at,
                        claimed_at=now,
                    )
                )
            logger.info("webhook_event_claimed", event_id=event.id, event_type=event.event_type)
            return True
        except IntegrityError:
            pass

        # 已存在：只有被释放或租期已过的事件可以被重新认领
        result = await self.session.execute(
            update(WebhookEventModel)
            .where(WebhookEventModel.id == event.id, _unfinished(stale_before))
            .values(error=None, claimed_at=now, attempts=WebhookEventModel.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info("webhook_event_reclaimed", event_id=event.id, event_type=event.event_type)
            return True
        return False

    async def get_by_id(self, event_id: str) -> Optional[WebhookEvent]:
        result = await self.session.execute(
            select(WebhookEventModel)
            .where(WebhookEventModel.id == event_id)
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def mark_processed(self, event_id: str, error: Optional[str] = None) -> None:
        await self.session.execute(
            update(WebhookEventModel)
            .where(WebhookEventModel.id == event_id)
            .values(processed=True, error=error, processed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    async def release(self, event_id: str, error: str) -> None:
        await self.session.execute(
            update(WebhookEventModel)
            .where(WebhookEventModel.id == event_id)
            .values(processed=False, error=error, processed_at=None)
            .execution_options(synchronize_session=False)
        )

    async def list_failed(self, stale_before: datetime, limit: int = 100) -> List[WebhookEvent]:
        result = await self.session.execute(
            select(WebhookEventModel)
            .where(or_(WebhookEventModel.error.is_not(None), _unfinished(stale_before)))
            .order_by(WebhookEventModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
