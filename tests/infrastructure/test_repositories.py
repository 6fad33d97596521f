from datetime import datetime, timedelta, timezone

import pytest

from domain.common.exceptions import ConcurrentUpdate, OrderNotFoundException
from domain.order.entity import OrderStatus
from domain.webhook.entity import WebhookEvent

from conftest import SELLER_ID


LONG_AGO = datetime(2000, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_compare_and_set_rejects_stale_expectation(seeded, place_order):
    await place_order(status=OrderStatus.PENDING)

    async with seeded() as uow:
        order = await uow.orders.compare_and_set_status("order-1", OrderStatus.PENDING, OrderStatus.COMPLETED)
    assert order.status is OrderStatus.COMPLETED

    with pytest.raises(ConcurrentUpdate):
        async with seeded() as uow:
            await uow.orders.compare_and_set_status("order-1", OrderStatus.PENDING, OrderStatus.FAILED)

    with pytest.raises(OrderNotFoundException):
        async with seeded() as uow:
            await uow.orders.compare_and_set_status("nope", OrderStatus.PENDING, OrderStatus.FAILED)


@pytest.mark.asyncio
async def test_session_attaches_only_once(seeded, place_order):
    await place_order(status=OrderStatus.PENDING, checkout_session_id=None)

    async with seeded() as uow:
        order = await uow.orders.attach_checkout_session("order-1", "cs_a", "https://pay/a")
    assert order.checkout_session_id == "cs_a"

    with pytest.raises(ConcurrentUpdate):
        async with seeded() as uow:
            await uow.orders.attach_checkout_session("order-1", "cs_b", "https://pay/b")


@pytest.mark.asyncio
async def test_claim_is_exclusive_until_released(seeded):
    event = WebhookEvent(id="evt_1", event_type="checkout.session.completed")

    async with seeded() as uow:
        assert await uow.webhook_events.claim(event, stale_before=LONG_AGO) is True
    async with seeded() as uow:
        assert await uow.webhook_events.claim(event, stale_before=LONG_AGO) is False

    async with seeded() as uow:
        await uow.webhook_events.release("evt_1", "OrderNotFound")
    async with seeded() as uow:
        assert await uow.webhook_events.claim(event, stale_before=LONG_AGO) is True
    async with seeded() as uow:
        assert await uow.webhook_events.claim(event, stale_before=LONG_AGO) is False

    async with seeded() as uow:
        await uow.webhook_events.mark_processed("evt_1", error="boom")
    async with seeded() as uow:
        assert await uow.webhook_events.claim(event, stale_before=LONG_AGO) is False
        stored = await uow.webhook_events.get_by_id("evt_1")
    assert stored.failed
    assert stored.attempts == 2


@pytest.mark.asyncio
async def test_wallet_is_created_on_first_access(seeded):
    async with seeded() as uow:
        wallet = await uow.wallets.get(SELLER_ID, for_update=True)
        assert wallet.balance == 0
        wallet = await uow.wallets.debit(SELLER_ID, 250)
    assert wallet.balance == -250
    assert wallet.last_payout is None


@pytest.mark.asyncio
async def test_abandoned_claim_is_listed_and_reclaimed_after_lease(seeded):
    event = WebhookEvent(id="evt_stuck", event_type="checkout.session.completed")
    async with seeded() as uow:
        assert await uow.webhook_events.claim(event, stale_before=LONG_AGO) is True

    async with seeded(readonly=True) as uow:
        assert await uow.webhook_events.list_failed(stale_before=LONG_AGO) == []

    lease_expired = datetime.now(timezone.utc) + timedelta(minutes=1)
    async with seeded(readonly=True) as uow:
        listed = await uow.webhook_events.list_failed(stale_before=lease_expired)
    assert [e.id for e in listed] == ["evt_stuck"]

    async with seeded() as uow:
        assert await uow.webhook_events.claim(event, stale_before=lease_expired) is True
        stored = await uow.webhook_events.get_by_id("evt_stuck")
    assert stored.attempts == 2
    assert not stored.processed
