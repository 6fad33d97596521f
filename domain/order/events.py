"""
Order domain events.

Dataclass events record ledger lifecycle facts for downstream handling
(notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_id: str
    amount: int
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderPlaced(OrderEvent):
    checkout_session_id: Optional[str] = None


@dataclass
class OrderCompleted(OrderEvent):
    source_event_id: Optional[str] = None


@dataclass
class OrderFailed(OrderEvent):
    source_event_id: Optional[str] = None


@dataclass
class OrderRefunded(OrderEvent):
    refund_id: str = ""
    seller_id: str = ""
