"""
结账编排服务 - 创建订单并在网关上开启结账会话

The order is committed before the gateway is contacted, so a gateway failure
or timeout leaves exactly one PENDING order without a session id and no
session ever exists without a local order.
"""
from __future__ import annotations

from typing import Callable, List

from application.dtos.payments import CheckoutSessionDTO, CreateCheckoutSession, OrderDTO
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    GatewayError,
    ProductNotFoundException,
    SellerNotConnectedException,
    UserNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.events import OrderPlaced


logger = get_logger(__name__)


class CheckoutService:
    """结账应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        config: PaymentSettings = payment_settings,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.config = config
        self.events: list = []

    def clear_events(self) -> None:
        self.events.clear()

    async def checkout(self, product_id: str, buyer_id: str) -> CheckoutSessionDTO:
        # 1. 校验并落库 PENDING 订单（全部校验通过后才写入）
        async with self._uow_factory() as uow:
            product = await uow.products.get_by_id(product_id)
            if product is None:
                raise ProductNotFoundException(product_id)
            buyer = await uow.users.get_by_id(buyer_id)
            if buyer is None:
                raise UserNotFoundException(buyer_id)
            seller = await uow.users.get_by_id(product.seller_id)
            if seller is None or not seller.can_sell:
                raise SellerNotConnectedException(product.seller_id)

            order = await uow.orders.create(
                Order.place(
                    buyer_id=buyer.id,
                    seller_id=seller.id,
                    product_id=product.id,
                    amount=product.price,
                )
            )

        # 2. 网关调用（事务外）
        request = CreateCheckoutSession(
            order_id=order.id,
            product_title=product.title,
            unit_amount=product.price,
            currency=self.config.currency,
            application_fee_amount=self.config.application_fee(product.price),
            destination_account=seller.stripe_account,
            customer_email=buyer.email,
            success_url=f"{self.config.frontend_url.rstrip('/')}/user/dashboard/purchased",
            cancel_url=f"{self.config.frontend_url.rstrip('/')}/",
            idempotency_key=f"checkout:{order.id}",
        )
        try:
            session = await self.gateway.create_checkout_session(request)
        except GatewayError as exc:
            logger.warning(
                "checkout_gateway_failed",
                order_id=order.id,
                product_id=product_id,
                error_type=exc.error_type,
            )
            raise

        # 3. 回填会话信息
        async with self._uow_factory() as uow:
            order = await uow.orders.attach_checkout_session(order.id, session.session_id, session.url)

        self.events.append(
            OrderPlaced(order_id=order.id, amount=order.amount, checkout_session_id=session.session_id)
        )
        logger.info(
            "checkout_session_opened",
            order_id=order.id,
            session_id=session.session_id,
            amount=order.amount,
        )
        return CheckoutSessionDTO(order_id=order.id, session_id=session.session_id, url=session.url)

    async def list_purchases(self, buyer_id: str, skip: int = 0, limit: int = 100) -> List[OrderDTO]:
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.orders.list_by_buyer(buyer_id, skip=skip, limit=limit)
        return [OrderDTO.model_validate(o) for o in orders]

    async def list_sales(self, seller_id: str, skip: int = 0, limit: int = 100) -> List[OrderDTO]:
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.orders.list_by_seller(seller_id, skip=skip, limit=limit)
        return [OrderDTO.model_validate(o) for o in orders]
