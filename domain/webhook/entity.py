"""
Webhook 事件实体 - 幂等处理记录

The gateway-assigned event id is the primary key and the deduplication key.
A row moves through three observable states:

- in flight: processed=False, error=None (claimed by one delivery at claimed_at)
- released:  processed=False, error set (handler hit a retryable condition or
  was interrupted; the next delivery may reclaim it)
- processed: processed=True, error optional (terminal; redeliveries are no-ops)

An in-flight row whose lease has run out (the process died mid-handler) counts
as released.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from domain.common.clock import ensure_utc


@dataclass
class WebhookEvent:
    id: str
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    processed: bool = False
    error: Optional[str] = None
    attempts: int = 1
    created_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at) or datetime.now(timezone.utc)
        self.claimed_at = ensure_utc(self.claimed_at) or self.created_at
        self.processed_at = ensure_utc(self.processed_at)
        if self.payload is None:
            self.payload = {}

    @property
    def released(self) -> bool:
        return not self.processed and self.error is not None

    @property
    def failed(self) -> bool:
        return self.processed and self.error is not None

    def is_stale(self, now: datetime, lease: timedelta) -> bool:
        """In flight for longer than the lease."""
        return not self.processed and self.error is None and self.claimed_at < ensure_utc(now) - lease
