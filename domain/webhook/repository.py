"""
Webhook 事件仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import WebhookEvent


class WebhookEventRepository(ABC):

    @abstractmethod
    async def claim(self, event: WebhookEvent, stale_before: datetime) -> bool:
        """Insert the event keyed by its id.

        Returns True when this caller now owns processing: either the row was
        new, or a released row (or an in-flight row claimed before
        ``stale_before``) was reclaimed atomically. Returns False for a
        duplicate delivery. Must rely on the store's uniqueness guarantee.
        """
        pass

    @abstractmethod
    async def get_by_id(self, event_id: str) -> Optional[WebhookEvent]:
        pass

    @abstractmethod
    async def mark_processed(self, event_id: str, error: Optional[str] = None) -> None:
        """Terminal: processed=True, optional error annotation."""
        pass

    @abstractmethod
    async def release(self, event_id: str, error: str) -> None:
        """Leave unprocessed with an error so a redelivery can reclaim it."""
        pass

    @abstractmethod
    async def list_failed(self, stale_before: datetime, limit: int = 100) -> List[WebhookEvent]:
        """Processed-with-error, released and stale in-flight events, oldest first."""
        pass
