"""
订单领域实体 - 订单聚合根

The order's status follows a fixed state machine:

    PENDING -> COMPLETED -> REFUNDED
    PENDING -> FAILED

Every other move raises IllegalStateTransition. Money is held in minor
currency units (int).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
import uuid

from domain.common.clock import ensure_utc
from domain.common.exceptions import DomainValidationException, IllegalStateTransition


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.COMPLETED, OrderStatus.FAILED}),
    OrderStatus.COMPLETED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}


class RefundStatus(str, Enum):
    """退款状态枚举"""
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Order:
    """
    订单聚合根 - 管理一次购买从结账到退款的生命周期

    业务规则：
    1. 金额必须大于0，创建后不可修改
    2. 状态转换必须遵循状态机
    3. checkout_session_id 只能设置一次（仓储以条件更新保证）
    """

    id: str
    buyer_id: str
    seller_id: str
    product_id: Optional[str]
    amount: int
    status: OrderStatus = OrderStatus.PENDING
    checkout_session_id: Optional[str] = None
    payment_url: Optional[str] = None
    refund_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise DomainValidationException(
                f"Order amount must be an integer in minor units: {self.amount!r}",
                field="amount",
            )
        if self.amount <= 0:
            raise DomainValidationException(
                f"Order amount must be positive: {self.amount}",
                field="amount",
            )
        self.status = OrderStatus(self.status)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @classmethod
    def place(cls, *, buyer_id: str, seller_id: str, product_id: str, amount: int) -> "Order":
        now = datetime.now(timezone.utc)
        return cls(
            id=new_id(),
            buyer_id=buyer_id,
            seller_id=seller_id,
            product_id=product_id,
            amount=amount,
            status=OrderStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    def can_transition_to(self, target: OrderStatus) -> bool:
        return target in ORDER_TRANSITIONS[self.status]

    def transition_to(self, target: OrderStatus) -> OrderStatus:
        """Move to ``target`` and return the previous status.

        Raises IllegalStateTransition for any edge outside the state machine,
        including re-applying the current status.
        """
        target = OrderStatus(target)
        if not self.can_transition_to(target):
            raise IllegalStateTransition("order", self.id, self.status.value, target.value)
        previous = self.status
        self.status = target
        self.updated_at = datetime.now(timezone.utc)
        return previous

    def refund_deadline(self, window: timedelta) -> datetime:
        if self.created_at is None:
            raise DomainValidationException("Order has no creation time", field="created_at")
        return self.created_at + window

    def within_refund_window(self, now: datetime, window: timedelta) -> bool:
        return ensure_utc(now) <= self.refund_deadline(window)


@dataclass
class Refund:
    """
    退款实体 - 与订单一一对应

    A PENDING row exists before the gateway is contacted; its id and attempt
    counter form the gateway idempotency key.
    """

    id: str
    order_id: str
    amount: int
    status: RefundStatus = RefundStatus.PENDING
    gateway_refund_id: Optional[str] = None
    reason: str = "requested_by_customer"
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    attempts: int = 1
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Refund amount must be positive: {self.amount}",
                field="amount",
            )
        self.status = RefundStatus(self.status)
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        if self.metadata is None:
            self.metadata = {}

    @classmethod
    def open_for(cls, order: Order, reason: str = "requested_by_customer") -> "Refund":
        now = datetime.now(timezone.utc)
        return cls(
            id=new_id(),
            order_id=order.id,
            amount=order.amount,
            status=RefundStatus.PENDING,
            reason=reason,
            created_at=now,
            updated_at=now,
        )

    @property
    def idempotency_key(self) -> str:
        return f"refund:{self.id}:{self.attempts}"

    def retry(self) -> None:
        """Re-open for another gateway attempt.

        A FAILED attempt gets a fresh idempotency key. An interrupted PENDING
        attempt keeps its key so the gateway replays the original outcome.
        """
        if self.status is RefundStatus.SUCCEEDED:
            raise IllegalStateTransition("refund", self.id, self.status.value, RefundStatus.PENDING.value)
        if self.status is RefundStatus.FAILED:
            self.attempts += 1
        self.status = RefundStatus.PENDING
        self.failure_reason = None
        self.updated_at = datetime.now(timezone.utc)

    def await_confirmation(self, gateway_refund_id: str) -> None:
        """The gateway accepted the refund but has not settled it yet."""
        if self.status is not RefundStatus.PENDING:
            raise IllegalStateTransition("refund", self.id, self.status.value, RefundStatus.PENDING.value)
        self.gateway_refund_id = gateway_refund_id
        self.updated_at = datetime.now(timezone.utc)

    def mark_succeeded(self, gateway_refund_id: Optional[str]) -> None:
        """PENDING or FAILED -> SUCCEEDED; a FAILED attempt may still have gone through at the gateway."""
        if self.status is RefundStatus.SUCCEEDED:
            raise IllegalStateTransition("refund", self.id, self.status.value, RefundStatus.SUCCEEDED.value)
        self.status = RefundStatus.SUCCEEDED
        self.gateway_refund_id = gateway_refund_id or self.gateway_refund_id
        self.updated_at = datetime.now(timezone.utc)

    def mark_failed(self, reason: Optional[str] = None) -> None:
        if self.status is not RefundStatus.PENDING:
            raise IllegalStateTransition("refund", self.id, self.status.value, RefundStatus.FAILED.value)
        self.status = RefundStatus.FAILED
        self.failure_reason = reason
        self.updated_at = datetime.now(timezone.utc)
