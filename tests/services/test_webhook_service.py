import asyncio
from datetime import datetime, timezone

import pytest

from application.services.checkout_service import CheckoutService
from application.services import webhook_service
from application.services.webhook_service import WebhookOutcome, WebhookService
from core.settings import WebhookSettings, payment_settings
from domain.common.exceptions import (
    IllegalStateTransition,
    MissingEventMetadata,
    WebhookRetryableError,
    WebhookSignatureError,
)
from domain.order.entity import OrderStatus
from domain.order.events import OrderCompleted
from domain.webhook.entity import WebhookEvent as WebhookEventRecord

from conftest import BUYER_ID, PRODUCT_ID, SELLER_ACCOUNT, SELLER_ID, VALID_SIGNATURE, make_event


def _completed(event_id, order_id):
    return make_event(
        event_id,
        "checkout.session.completed",
        {"id": "cs_x", "object": "checkout.session", "metadata": {"orderId": order_id}},
    )


@pytest.mark.asyncio
async def test_same_completion_delivered_twice_applies_once(seeded, gateway):
    checkout = await CheckoutService(uow_factory=seeded, gateway=gateway).checkout(PRODUCT_ID, BUYER_ID)
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = _completed("evt_1999", checkout.order_id)

    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.PROCESSED
    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.DUPLICATE

    async with seeded(readonly=True) as uow:
        order = await uow.orders.get_by_id(checkout.order_id)
        record = await uow.webhook_events.get_by_id("evt_1999")
        wallet = await uow.wallets.get(SELLER_ID)
    assert order.status is OrderStatus.COMPLETED
    assert order.amount == 1999
    assert record.processed and record.error is None
    assert record.attempts == 1
    # 钱包只在提现和退款时变动
    assert wallet.balance == 0
    assert [type(e) for e in service.events] == [OrderCompleted]


@pytest.mark.asyncio
async def test_bad_signature_writes_nothing(seeded, gateway):
    service = WebhookService(uow_factory=seeded, gateway=gateway)

    with pytest.raises(WebhookSignatureError):
        await service.receive(_completed("evt_forged", "order-1"), "t=1,v1=forged")

    async with seeded(readonly=True) as uow:
        assert await uow.webhook_events.get_by_id("evt_forged") is None


@pytest.mark.asyncio
async def test_unknown_event_type_is_acknowledged(seeded, gateway):
    service = WebhookService(uow_factory=seeded, gateway=gateway)

    outcome = await service.receive(make_event("evt_cust", "customer.created", {"id": "cus_1"}), VALID_SIGNATURE)

    assert outcome is WebhookOutcome.UNHANDLED
    async with seeded(readonly=True) as uow:
        record = await uow.webhook_events.get_by_id("evt_cust")
    assert record.processed and record.error is None


@pytest.mark.asyncio
async def test_missing_order_metadata_is_recorded_as_failure(seeded, gateway):
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = make_event("evt_nometa", "checkout.session.completed", {"id": "cs_1", "metadata": {}})

    with pytest.raises(MissingEventMetadata):
        await service.receive(payload, VALID_SIGNATURE)
    # 已记录为处理失败，重投视为重复
    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.DUPLICATE

    failed = await service.list_failed_events()
    assert [e.id for e in failed] == ["evt_nometa"]
    assert failed[0].processed is True
    assert "MissingEventMetadata" in failed[0].error


@pytest.mark.asyncio
async def test_event_racing_checkout_is_released_and_reclaimed(seeded, gateway, place_order):
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = _completed("evt_early", "order-late")

    with pytest.raises(WebhookRetryableError):
        await service.receive(payload, VALID_SIGNATURE)

    async with seeded(readonly=True) as uow:
        record = await uow.webhook_events.get_by_id("evt_early")
    assert record.released

    await place_order(order_id="order-late", status=OrderStatus.PENDING, checkout_session_id=None)

    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.PROCESSED
    async with seeded(readonly=True) as uow:
        record = await uow.webhook_events.get_by_id("evt_early")
        order = await uow.orders.get_by_id("order-late")
    assert record.processed and record.error is None
    assert record.attempts == 2
    assert order.status is OrderStatus.COMPLETED
    assert await service.list_failed_events() == []


@pytest.mark.asyncio
async def test_failure_after_completion_is_an_integrity_violation(seeded, gateway, place_order):
    await place_order(order_id="order-done", status=OrderStatus.COMPLETED)
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = make_event(
        "evt_late_fail",
        "payment_intent.payment_failed",
        {"id": "pi_1", "metadata": {"orderId": "order-done"}, "last_payment_error": {"code": "card_declined"}},
    )

    with pytest.raises(IllegalStateTransition):
        await service.receive(payload, VALID_SIGNATURE)

    async with seeded(readonly=True) as uow:
        order = await uow.orders.get_by_id("order-done")
        record = await uow.webhook_events.get_by_id("evt_late_fail")
    assert order.status is OrderStatus.COMPLETED
    assert record.failed


@pytest.mark.asyncio
async def test_payment_failure_marks_pending_order_failed(seeded, gateway, place_order):
    await place_order(order_id="order-p", status=OrderStatus.PENDING)
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = make_event("evt_fail", "payment_intent.payment_failed", {"id": "pi_1", "metadata": {"orderId": "order-p"}})

    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.PROCESSED
    async with seeded(readonly=True) as uow:
        assert (await uow.orders.get_by_id("order-p")).status is OrderStatus.FAILED


@pytest.mark.asyncio
async def test_account_update_verifies_seller(seeded, gateway):
    async with seeded() as uow:
        seller = await uow.users.get_by_id(SELLER_ID)
        seller.stripe_verified = False
        await uow.users.update(seller)
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = make_event(
        "evt_acct",
        "account.updated",
        {"id": SELLER_ACCOUNT, "object": "account", "charges_enabled": True, "payouts_enabled": True},
    )

    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.PROCESSED
    async with seeded(readonly=True) as uow:
        assert (await uow.users.get_by_id(SELLER_ID)).stripe_verified is True


@pytest.mark.asyncio
async def test_account_update_for_unknown_account_is_a_no_op(seeded, gateway):
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = make_event("evt_acct_x", "account.updated", {"id": "acct_unknown", "charges_enabled": True})

    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.PROCESSED


@pytest.mark.asyncio
async def test_interrupted_handler_releases_the_event(seeded, gateway, place_order, monkeypatch):
    await place_order(order_id="order-int", status=OrderStatus.PENDING)
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    payload = _completed("evt_interrupted", "order-int")

    async def _cancelled(event, uow):
        raise asyncio.CancelledError()

    monkeypatch.setattr(webhook_service, "get_handler", lambda event_type: _cancelled)
    with pytest.raises(asyncio.CancelledError):
        await service.receive(payload, VALID_SIGNATURE)

    failed = await service.list_failed_events()
    assert [e.id for e in failed] == ["evt_interrupted"]
    assert failed[0].processed is False

    monkeypatch.undo()
    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.PROCESSED
    async with seeded(readonly=True) as uow:
        order = await uow.orders.get_by_id("order-int")
        record = await uow.webhook_events.get_by_id("evt_interrupted")
    assert order.status is OrderStatus.COMPLETED
    assert record.processed and record.error is None
    assert record.attempts == 2


@pytest.mark.asyncio
async def test_claim_left_by_a_dead_worker_expires(seeded, gateway, place_order):
    await place_order(order_id="order-crash", status=OrderStatus.PENDING)
    config = payment_settings.model_copy(update={"webhook": WebhookSettings(claim_lease_seconds=0)})
    service = WebhookService(uow_factory=seeded, gateway=gateway, config=config)
    payload = _completed("evt_crash", "order-crash")
    # 认领后进程退出：行停留在处理中
    async with seeded() as uow:
        await uow.webhook_events.claim(
            WebhookEventRecord(id="evt_crash", event_type="checkout.session.completed"),
            stale_before=datetime.now(timezone.utc),
        )
    await asyncio.sleep(0.01)

    assert [e.id for e in await service.list_failed_events()] == ["evt_crash"]
    assert await service.receive(payload, VALID_SIGNATURE) is WebhookOutcome.PROCESSED
    async with seeded(readonly=True) as uow:
        assert (await uow.orders.get_by_id("order-crash")).status is OrderStatus.COMPLETED
    assert await service.list_failed_events() == []


@pytest.mark.asyncio
async def test_in_flight_claim_inside_lease_is_a_duplicate(seeded, gateway):
    service = WebhookService(uow_factory=seeded, gateway=gateway)
    async with seeded() as uow:
        await uow.webhook_events.claim(
            WebhookEventRecord(id="evt_busy", event_type="checkout.session.completed"),
            stale_before=datetime.now(timezone.utc),
        )

    assert await service.receive(_completed("evt_busy", "order-1"), VALID_SIGNATURE) is WebhookOutcome.DUPLICATE
    assert await service.list_failed_events() == []
