"""
Reconciliation handlers: apply verified gateway events to the local ledger.

Each handler runs inside the caller's unit of work and either succeeds or
raises. Handlers are looked up by event type through an explicit registry;
types without a handler are acknowledged by the dispatcher without effect.

A handler that cannot find the order named in the event raises
OrderNotFoundException; the dispatcher treats that as retryable.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional

from application.dtos.payments import WebhookEvent
from core.logging_config import get_logger
from domain.common.exceptions import MissingEventMetadata, OrderNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus, Refund, RefundStatus
from domain.order.events import OrderCompleted, OrderFailed, OrderRefunded


logger = get_logger(__name__)

ORDER_ID_KEY = "orderId"

EventHandler = Callable[[WebhookEvent, AbstractUnitOfWork], Awaitable[List[Any]]]

_HANDLERS: Dict[str, EventHandler] = {}


def register_handler(event_type: str) -> Callable[[EventHandler], EventHandler]:
    """Decorator registering ``fn`` as the handler for ``event_type``."""

    def decorator(fn: EventHandler) -> EventHandler:
        if event_type in _HANDLERS:
            raise ValueError(f"Handler already registered for {event_type}")
        _HANDLERS[event_type] = fn
        return fn

    return decorator


def get_handler(event_type: str) -> Optional[EventHandler]:
    return _HANDLERS.get(event_type)


def require_order_id(event: WebhookEvent, metadata: Optional[dict] = None) -> str:
    order_id = (metadata if metadata is not None else event.metadata).get(ORDER_ID_KEY)
    if not order_id:
        raise MissingEventMetadata(event.id, event.type, ORDER_ID_KEY)
    return str(order_id)


async def _load_order(uow: AbstractUnitOfWork, order_id: str) -> Order:
    order = await uow.orders.get_by_id(order_id, for_update=True)
    if order is None:
        raise OrderNotFoundException(order_id)
    return order


async def apply_transition(
    uow: AbstractUnitOfWork,
    order_id: str,
    target: OrderStatus,
    *,
    refund_id: Optional[str] = None,
) -> Order:
    """Validate against the state machine, then compare-and-set in the store."""
    order = await _load_order(uow, order_id)
    previous = order.transition_to(target)
    return await uow.orders.compare_and_set_status(order.id, previous, target, refund_id=refund_id)


async def finalize_refund(
    uow: AbstractUnitOfWork,
    order_id: str,
    gateway_refund_id: Optional[str],
) -> Optional[OrderRefunded]:
    """COMPLETED -> REFUNDED, refund row SUCCEEDED, seller wallet debited.

    Shared by the synchronous refund path and the ``charge.refunded`` /
    ``refund.updated`` events; whichever runs second finds the order
    REFUNDED and does nothing.
    """
    order = await _load_order(uow, order_id)
    if order.status is OrderStatus.REFUNDED:
        logger.info("refund_already_finalized", order_id=order_id, refund_id=order.refund_id)
        return None

    refund = await uow.refunds.get_by_order_id(order_id, for_update=True)
    if refund is None:
        # 退款不是通过本服务发起（例如网关控制台）
        refund = await uow.refunds.create(Refund.open_for(order, reason="external"))
    # charge.refunded 不再内嵌 refunds 列表时，沿用发起时记录的网关ID
    gateway_refund_id = gateway_refund_id or refund.gateway_refund_id

    previous = order.transition_to(OrderStatus.REFUNDED)
    await uow.orders.compare_and_set_status(
        order.id, previous, OrderStatus.REFUNDED, refund_id=gateway_refund_id
    )
    refund.mark_succeeded(gateway_refund_id)
    await uow.refunds.update(refund)
    await uow.wallets.debit(order.seller_id, order.amount)

    logger.info(
        "refund_finalized",
        order_id=order.id,
        refund_id=refund.id,
        gateway_refund_id=gateway_refund_id,
        seller_id=order.seller_id,
        amount=order.amount,
    )
    return OrderRefunded(
        order_id=order.id,
        amount=order.amount,
        refund_id=refund.id,
        seller_id=order.seller_id,
    )


@register_handler("checkout.session.completed")
async def on_checkout_completed(event: WebhookEvent, uow: AbstractUnitOfWork) -> List[Any]:
    order_id = require_order_id(event)
    order = await apply_transition(uow, order_id, OrderStatus.COMPLETED)
    return [OrderCompleted(order_id=order.id, amount=order.amount, source_event_id=event.id)]


@register_handler("payment_intent.payment_failed")
async def on_payment_failed(event: WebhookEvent, uow: AbstractUnitOfWork) -> List[Any]:
    order_id = require_order_id(event)
    order = await apply_transition(uow, order_id, OrderStatus.FAILED)
    error = event.data_object.get("last_payment_error") or {}
    logger.info(
        "payment_failed",
        order_id=order.id,
        event_id=event.id,
        decline_code=error.get("decline_code") or error.get("code"),
    )
    return [OrderFailed(order_id=order.id, amount=order.amount, source_event_id=event.id)]


@register_handler("account.updated")
async def on_account_updated(event: WebhookEvent, uow: AbstractUnitOfWork) -> List[Any]:
    account = event.data_object
    account_id = account.get("id") or event.account
    if not account_id:
        logger.info("account_update_without_id", event_id=event.id)
        return []

    user = await uow.users.get_by_stripe_account(account_id)
    if user is None:
        logger.info("account_update_unknown_account", event_id=event.id, account_id=account_id)
        return []

    if account.get("charges_enabled") and account.get("payouts_enabled"):
        if user.mark_verified():
            await uow.users.update(user)
            logger.info("user_verified", user_id=user.id, account_id=account_id)
    return []


def _latest_refund(charge: dict) -> dict:
    refunds = (charge.get("refunds") or {}).get("data") or []
    return refunds[0] if refunds else {}


@register_handler("charge.refunded")
async def on_charge_refunded(event: WebhookEvent, uow: AbstractUnitOfWork) -> List[Any]:
    charge = event.data_object
    latest = _latest_refund(charge)
    metadata = dict(charge.get("metadata") or {})
    metadata.update({k: v for k, v in (latest.get("metadata") or {}).items() if v})
    order_id = require_order_id(event, metadata)

    if not charge.get("refunded"):
        logger.warning(
            "partial_refund_ignored",
            order_id=order_id,
            event_id=event.id,
            amount_refunded=charge.get("amount_refunded"),
        )
        return []

    refunded = await finalize_refund(uow, order_id, latest.get("id"))
    return [refunded] if refunded else []


async def _refund_order_id(event: WebhookEvent, uow: AbstractUnitOfWork) -> Optional[str]:
    """Order behind a refund object: its metadata, else the local refund row."""
    order_id = event.metadata.get(ORDER_ID_KEY)
    if order_id:
        return str(order_id)
    gateway_refund_id = event.data_object.get("id")
    if gateway_refund_id:
        refund = await uow.refunds.get_by_gateway_refund_id(gateway_refund_id)
        if refund is not None:
            return refund.order_id
    return None


async def fail_refund(
    uow: AbstractUnitOfWork,
    order_id: str,
    gateway_refund_id: Optional[str],
    reason: Optional[str],
) -> None:
    """PENDING refund -> FAILED; the order stays COMPLETED and no wallet is touched.

    A failure reported for an already SUCCEEDED refund raises
    IllegalStateTransition: the ledger has been finalized and needs an operator.
    """
    refund = await uow.refunds.get_by_order_id(order_id, for_update=True)
    if refund is None:
        logger.info("refund_failure_unknown_refund", order_id=order_id, gateway_refund_id=gateway_refund_id)
        return
    if refund.status is RefundStatus.FAILED:
        logger.info("refund_already_failed", order_id=order_id, refund_id=refund.id)
        return
    refund.mark_failed(reason or "failed")
    if gateway_refund_id:
        refund.gateway_refund_id = gateway_refund_id
    await uow.refunds.update(refund)
    logger.warning(
        "refund_failed",
        order_id=order_id,
        refund_id=refund.id,
        gateway_refund_id=gateway_refund_id,
        reason=reason,
    )


async def _on_refund_object(event: WebhookEvent, uow: AbstractUnitOfWork, status: Optional[str]) -> List[Any]:
    refund_object = event.data_object
    order_id = await _refund_order_id(event, uow)
    if order_id is None:
        raise MissingEventMetadata(event.id, event.type, ORDER_ID_KEY)

    gateway_refund_id = refund_object.get("id")
    if status == "succeeded":
        refunded = await finalize_refund(uow, order_id, gateway_refund_id)
        return [refunded] if refunded else []
    if status in ("failed", "canceled"):
        await fail_refund(uow, order_id, gateway_refund_id, refund_object.get("failure_reason"))
        return []

    logger.info("refund_still_pending", order_id=order_id, event_id=event.id, status=status)
    return []


@register_handler("refund.updated")
async def on_refund_updated(event: WebhookEvent, uow: AbstractUnitOfWork) -> List[Any]:
    return await _on_refund_object(event, uow, event.data_object.get("status"))


@register_handler("charge.refund.updated")
async def on_charge_refund_updated(event: WebhookEvent, uow: AbstractUnitOfWork) -> List[Any]:
    return await _on_refund_object(event, uow, event.data_object.get("status"))


@register_handler("refund.failed")
async def on_refund_failed(event: WebhookEvent, uow: AbstractUnitOfWork) -> List[Any]:
    return await _on_refund_object(event, uow, "failed")
