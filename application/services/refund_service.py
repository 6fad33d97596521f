"""
退款服务 - 三阶段退款，保证网关和本地账本不会分叉

1. 事务内写入 PENDING 退款记录（幂等键来源）
2. 事务外调用网关退款
3. 网关确认成功后，事务内：订单 COMPLETED -> REFUNDED，退款 SUCCEEDED，卖家钱包扣减

A refund the gateway reports as pending stays PENDING locally with its gateway
id stored; the ``charge.refunded`` or ``refund.updated`` webhook finalizes it,
and ``refund.failed`` marks it FAILED. If the process dies between 2 and 3 the
same webhooks converge the ledger.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from application.dtos.payments import RefundDTO, RefundRequest
from application.ports.payment_gateway import PaymentGateway
from application.services.reconciliation import finalize_refund
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.clock import ensure_utc, utcnow
from domain.common.exceptions import (
    GatewayError,
    NotOrderOwnerException,
    OrderNotFoundException,
    OrderNotRefundableException,
    PaymentIntentNotFoundException,
    RefundWindowExpiredException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus, Refund, RefundStatus


logger = get_logger(__name__)


class RefundService:
    """退款应用服务"""

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

    def _check_refundable(self, order: Optional[Order], order_id: str, requester_id: str, now: datetime) -> Order:
        if order is None:
            raise OrderNotFoundException(order_id)
        if order.buyer_id != requester_id:
            raise NotOrderOwnerException(order_id)
        if not order.within_refund_window(now, self.config.refund_window):
            raise RefundWindowExpiredException(order_id, self.config.refund_window_days)
        if order.status is not OrderStatus.COMPLETED:
            raise OrderNotRefundableException(order_id, order.status.value)
        if not order.checkout_session_id:
            raise PaymentIntentNotFoundException(order_id)
        return order

    async def create_refund(
        self,
        order_id: str,
        requester_id: str,
        now: Optional[datetime] = None,
    ) -> RefundDTO:
        now = ensure_utc(now) or utcnow()

        async with self._uow_factory(readonly=True) as uow:
            order = self._check_refundable(await uow.orders.get_by_id(order_id), order_id, requester_id, now)

        session = await self.gateway.retrieve_checkout_session(order.checkout_session_id)
        if not session.payment_intent_id:
            raise PaymentIntentNotFoundException(order_id)

        # Phase 1: PENDING 退款记录
        async with self._uow_factory() as uow:
            order = self._check_refundable(
                await uow.orders.get_by_id(order_id, for_update=True), order_id, requester_id, now
            )
            refund = await uow.refunds.get_by_order_id(order_id, for_update=True)
            if refund is None:
                refund = await uow.refunds.create(Refund.open_for(order))
            else:
                refund.retry()
                refund = await uow.refunds.update(refund)

        logger.info(
            "refund_requested",
            order_id=order_id,
            refund_id=refund.id,
            attempt=refund.attempts,
            amount=refund.amount,
        )

        # Phase 2: 网关退款
        try:
            result = await self.gateway.create_refund(
                RefundRequest(
                    order_id=order_id,
                    payment_intent_id=session.payment_intent_id,
                    amount=order.amount,
                    reason=refund.reason,
                    idempotency_key=refund.idempotency_key,
                )
            )
            if result.status == "failed":
                raise GatewayError(
                    "Refund was declined by the payment gateway",
                    details={"order_id": order_id, "gateway_refund_id": result.refund_id},
                )
        except GatewayError as exc:
            await self._mark_failed(order_id, exc.message)
            logger.warning("refund_gateway_failed", order_id=order_id, refund_id=refund.id, error=exc.message)
            raise

        if result.status != "succeeded":
            # 网关尚未确认：保持 PENDING，由 charge.refunded / refund.* 事件落账
            async with self._uow_factory() as uow:
                refund = await uow.refunds.get_by_order_id(order_id, for_update=True)
                if refund.status is RefundStatus.PENDING:
                    refund.await_confirmation(result.refund_id)
                    refund = await uow.refunds.update(refund)
            logger.info(
                "refund_awaiting_confirmation",
                order_id=order_id,
                refund_id=refund.id,
                gateway_refund_id=result.refund_id,
                gateway_status=result.status,
            )
            return RefundDTO.model_validate(refund)

        # Phase 3: 本地落账
        async with self._uow_factory() as uow:
            refunded = await finalize_refund(uow, order_id, result.refund_id)
            refund = await uow.refunds.get_by_order_id(order_id)
        if refunded is not None:
            self.events.append(refunded)
        return RefundDTO.model_validate(refund)

    async def _mark_failed(self, order_id: str, reason: str) -> None:
        async with self._uow_factory() as uow:
            refund = await uow.refunds.get_by_order_id(order_id, for_update=True)
            if refund is not None and refund.status is RefundStatus.PENDING:
                refund.mark_failed(reason)
                await uow.refunds.update(refund)
