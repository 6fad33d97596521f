"""
提现与钱包领域实体

Payout rows exist only for payouts the gateway has confirmed. The wallet is
a local mirror of what the marketplace owes a user; it is decremented by
payouts and by refunds of the user's sales.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.common.clock import ensure_utc
from domain.order.entity import new_id


def ensure_positive_amount(amount: int, field: str = "amount") -> int:
    """业务规则：金额必须是正整数（最小货币单位）"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise DomainValidationException(
            f"Amount must be an integer in minor units: {amount!r}",
            field=field,
        )
    if amount <= 0:
        raise DomainValidationException(f"Amount must be positive: {amount}", field=field)
    return amount


@dataclass
class Payout:
    id: str
    user_id: str
    amount: int
    stripe_payout_id: str
    created_at: Optional[datetime] = None

    def __post_init__(self):
        ensure_positive_amount(self.amount)
        if not self.stripe_payout_id:
            raise DomainValidationException(
                "Payout requires a gateway payout id",
                field="stripe_payout_id",
            )
        self.created_at = ensure_utc(self.created_at)

    @classmethod
    def confirmed(cls, *, user_id: str, amount: int, stripe_payout_id: str) -> "Payout":
        return cls(
            id=new_id(),
            user_id=user_id,
            amount=amount,
            stripe_payout_id=stripe_payout_id,
            created_at=datetime.now(timezone.utc),
        )


@dataclass
class Wallet:
    user_id: str
    balance: int = 0
    last_payout: Optional[datetime] = None

    def __post_init__(self):
        self.last_payout = ensure_utc(self.last_payout)
