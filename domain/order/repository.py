"""
订单仓储接口 - 定义订单数据访问的抽象接口

Mutations that combine a read-check with a write (status transitions,
session attachment) are single conditional operations, never two round trips.
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Order, OrderStatus, Refund


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str, *, for_update: bool = False) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def attach_checkout_session(
        self,
        order_id: str,
        session_id: str,
        payment_url: Optional[str],
    ) -> Order:
        """Set session id and payment url, only if no session is attached yet."""
        pass

    @abstractmethod
    async def compare_and_set_status(
        self,
        order_id: str,
        expected: OrderStatus,
        target: OrderStatus,
        *,
        refund_id: Optional[str] = None,
    ) -> Order:
        """Move ``expected`` -> ``target`` atomically.

        Raises ConcurrentUpdate when the stored status is no longer ``expected``.
        """
        pass

    @abstractmethod
    async def list_by_buyer(self, buyer_id: str, skip: int = 0, limit: int = 100) -> List[Order]:
        """买家的订单，最新在前"""
        pass

    @abstractmethod
    async def list_by_seller(self, seller_id: str, skip: int = 0, limit: int = 100) -> List[Order]:
        """卖家的订单，最新在前"""
        pass


class RefundRepository(ABC):
    """退款仓储抽象接口"""

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """创建退款记录（order_id 唯一）"""
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str, *, for_update: bool = False) -> Optional[Refund]:
        """根据订单ID获取退款"""
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        """更新退款记录"""
        pass

    @abstractmethod
    async def get_by_gateway_refund_id(self, gateway_refund_id: str, *, for_update: bool = False) -> Optional[Refund]:
        """根据网关退款ID获取退款"""
        pass
