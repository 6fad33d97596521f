"""
用户领域实体 - 市场中的买家/卖家

Identity and credentials live with the authentication service; this side of
the marketplace only tracks what payments need: the connected gateway
account and whether the gateway has enabled it for charges and payouts.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from domain.common.clock import ensure_utc
from domain.common.exceptions import DomainValidationException


@dataclass
class User:
    """用户实体"""

    id: str
    email: str
    stripe_account: Optional[str] = None
    stripe_verified: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    @property
    def can_sell(self) -> bool:
        """业务规则：只有已连接网关账户的用户才能收款"""
        return bool(self.stripe_account)

    def link_stripe_account(self, account_id: str) -> None:
        if not account_id:
            raise DomainValidationException("Gateway account id is required", field="stripe_account")
        if self.stripe_account and self.stripe_account != account_id:
            raise DomainValidationException(
                "User already has a connected gateway account",
                field="stripe_account",
            )
        self.stripe_account = account_id
        self.updated_at = datetime.now(timezone.utc)

    def unlink_stripe_account(self) -> None:
        self.stripe_account = None
        self.stripe_verified = False
        self.updated_at = datetime.now(timezone.utc)

    def mark_verified(self) -> bool:
        """Returns True when the flag actually changed."""
        if self.stripe_verified:
            return False
        self.stripe_verified = True
        self.updated_at = datetime.now(timezone.utc)
        return True
