"""
提现/钱包仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Payout, Wallet


class PayoutRepository(ABC):
    """提现仓储抽象接口"""

    @abstractmethod
    async def create(self, payout: Payout) -> Payout:
        """创建提现记录"""
        pass

    @abstractmethod
    async def get_by_stripe_id(self, stripe_payout_id: str) -> Optional[Payout]:
        """根据网关提现ID获取"""
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str, skip: int = 0, limit: int = 100) -> List[Payout]:
        """用户的提现记录，最新在前"""
        pass


class WalletRepository(ABC):
    """钱包仓储抽象接口"""

    @abstractmethod
    async def get(self, user_id: str, *, for_update: bool = False) -> Wallet:
        """Load the wallet, creating an empty one on first access."""
        pass

    @abstractmethod
    async def debit(self, user_id: str, amount: int, *, payout_at: Optional[datetime] = None) -> Wallet:
        """Atomically ``balance -= amount``; stamps last_payout when ``payout_at`` is given."""
        pass
