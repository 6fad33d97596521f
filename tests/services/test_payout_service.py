import asyncio
from contextlib import asynccontextmanager

import pytest

from application.services.payout_service import PayoutService
from domain.common.exceptions import (
    DomainValidationException,
    InsufficientFundsException,
    LockLostError,
    PayoutNotFoundException,
    SellerNotConnectedException,
    UserNotFoundException,
)
from domain.payout.events import PayoutIssued
from infrastructure.external.payments.exceptions import PaymentProviderError

from conftest import BUYER_ID, SELLER_ACCOUNT, SELLER_ID


def _fund(gateway, available):
    gateway.balance = gateway.balance.model_copy(update={"available": available})


@pytest.fixture
def service(seeded, gateway, locks):
    return PayoutService(uow_factory=seeded, gateway=gateway, locks=locks)


@pytest.mark.asyncio
async def test_payout_records_row_and_debits_wallet(service, seeded, gateway):
    _fund(gateway, 5000)

    payout = await service.create_payout(SELLER_ID, 1500)

    [request] = gateway.calls_to("create_payout")
    assert request.stripe_account == SELLER_ACCOUNT
    assert request.amount == 1500
    assert request.currency == "pln"
    assert request.idempotency_key.startswith(f"payout:{SELLER_ID}:1500:")

    async with seeded(readonly=True) as uow:
        wallet = await uow.wallets.get(SELLER_ID)
        stored = await uow.payouts.get_by_stripe_id(payout.stripe_payout_id)
    assert wallet.balance == -1500
    assert wallet.last_payout is not None
    assert stored.user_id == SELLER_ID
    assert isinstance(service.events[0], PayoutIssued)


@pytest.mark.asyncio
async def test_insufficient_balance_writes_nothing(service, seeded, gateway):
    _fund(gateway, 999)

    with pytest.raises(InsufficientFundsException):
        await service.create_payout(SELLER_ID, 1000)

    assert gateway.calls_to("create_payout") == []
    async with seeded(readonly=True) as uow:
        wallet = await uow.wallets.get(SELLER_ID)
        assert await uow.payouts.list_by_user(SELLER_ID) == []
    assert wallet.balance == 0
    assert wallet.last_payout is None


@pytest.mark.asyncio
async def test_gateway_payout_failure_writes_nothing(service, seeded, gateway):
    _fund(gateway, 5000)
    gateway.fail["create_payout"] = PaymentProviderError("account restricted", provider="fake")

    with pytest.raises(PaymentProviderError):
        await service.create_payout(SELLER_ID, 1000)

    async with seeded(readonly=True) as uow:
        assert await uow.payouts.list_by_user(SELLER_ID) == []
        assert (await uow.wallets.get(SELLER_ID)).balance == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [0, -100])
async def test_amount_must_be_positive(service, gateway, amount):
    with pytest.raises(DomainValidationException):
        await service.create_payout(SELLER_ID, amount)
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_user_without_account_cannot_withdraw(service):
    with pytest.raises(SellerNotConnectedException):
        await service.create_payout(BUYER_ID, 100)
    with pytest.raises(UserNotFoundException):
        await service.create_payout("ghost", 100)


@pytest.mark.asyncio
async def test_concurrent_payouts_cannot_overdraw(service, seeded, gateway):
    _fund(gateway, 1000)

    results = await asyncio.gather(
        service.create_payout(SELLER_ID, 700),
        service.create_payout(SELLER_ID, 700),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1 and isinstance(failed[0], InsufficientFundsException)
    assert len(gateway.calls_to("create_payout")) == 1
    async with seeded(readonly=True) as uow:
        assert (await uow.wallets.get(SELLER_ID)).balance == -700


class _ExpiringLease:
    """Lease that is lost after the given number of refreshes."""

    def __init__(self, survives):
        self.survives = survives

    async def refresh(self):
        if self.survives == 0:
            raise LockLostError("payout:test")
        self.survives -= 1


class _ExpiringLock:
    def __init__(self, survives):
        self.survives = survives

    @asynccontextmanager
    async def hold(self, key):
        yield _ExpiringLease(self.survives)


@pytest.mark.asyncio
async def test_lost_lock_stops_the_payout_before_the_gateway(seeded, gateway):
    _fund(gateway, 5000)
    # 余额查询前续期成功，出款前锁已过期
    service = PayoutService(uow_factory=seeded, gateway=gateway, locks=_ExpiringLock(survives=1))

    with pytest.raises(LockLostError):
        await service.create_payout(SELLER_ID, 1000)

    assert len(gateway.calls_to("retrieve_balance")) == 1
    assert gateway.calls_to("create_payout") == []
    async with seeded(readonly=True) as uow:
        assert await uow.payouts.list_by_user(SELLER_ID) == []
        assert (await uow.wallets.get(SELLER_ID)).balance == 0


@pytest.mark.asyncio
async def test_balance_comes_from_gateway(service, gateway):
    gateway.balance = gateway.balance.model_copy(update={"available": 4200, "pending": 300})

    balance = await service.get_balance(SELLER_ID)

    assert (balance.available, balance.pending, balance.currency) == (4200, 300, "pln")


@pytest.mark.asyncio
async def test_payouts_are_visible_only_to_their_owner(service, seeded, gateway):
    _fund(gateway, 5000)
    payout = await service.create_payout(SELLER_ID, 1000)

    fetched = await service.get_payout(SELLER_ID, payout.stripe_payout_id)
    assert fetched.payout_id == payout.stripe_payout_id

    async with seeded() as uow:
        buyer = await uow.users.get_by_id(BUYER_ID)
        buyer.link_stripe_account("acct_buyer")
        await uow.users.update(buyer)
    with pytest.raises(PayoutNotFoundException):
        await service.get_payout(BUYER_ID, payout.stripe_payout_id)
    with pytest.raises(PayoutNotFoundException):
        await service.cancel_payout(BUYER_ID, payout.stripe_payout_id)

    canceled = await service.cancel_payout(SELLER_ID, payout.stripe_payout_id)
    assert canceled.status == "canceled"
    assert [p.id for p in await service.list_payouts(SELLER_ID)] == [payout.id]
