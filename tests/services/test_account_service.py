import asyncio

import pytest

from application.services.account_service import AccountService
from domain.common.exceptions import SellerNotConnectedException

from conftest import BUYER_ID, SELLER_ACCOUNT, SELLER_ID


@pytest.fixture
def service(seeded, gateway, locks):
    return AccountService(uow_factory=seeded, gateway=gateway, locks=locks)


@pytest.mark.asyncio
async def test_connect_creates_account_once(service, seeded, gateway):
    first = await service.connect(BUYER_ID)
    second = await service.connect(BUYER_ID)

    assert len(gateway.calls_to("create_account")) == 1
    async with seeded(readonly=True) as uow:
        user = await uow.users.get_by_id(BUYER_ID)
    assert user.stripe_account is not None
    assert first.url == second.url == f"https://connect.test/onboarding/{user.stripe_account}"


@pytest.mark.asyncio
async def test_concurrent_connects_create_a_single_account(service, seeded, gateway):
    links = await asyncio.gather(service.connect(BUYER_ID), service.connect(BUYER_ID))

    assert len(gateway.calls_to("create_account")) == 1
    async with seeded(readonly=True) as uow:
        user = await uow.users.get_by_id(BUYER_ID)
    assert {link.url for link in links} == {f"https://connect.test/onboarding/{user.stripe_account}"}


@pytest.mark.asyncio
async def test_status_refreshes_verified_flag(service, seeded, gateway):
    await service.connect(BUYER_ID)
    status = await service.account_status(BUYER_ID)
    assert status.connected and not status.verified

    async with seeded(readonly=True) as uow:
        account_id = (await uow.users.get_by_id(BUYER_ID)).stripe_account
    gateway.accounts[account_id] = gateway.accounts[account_id].model_copy(
        update={"details_submitted": True, "charges_enabled": True, "payouts_enabled": True}
    )

    status = await service.account_status(BUYER_ID)
    assert status.verified and status.payouts_enabled
    async with seeded(readonly=True) as uow:
        assert (await uow.users.get_by_id(BUYER_ID)).stripe_verified is True


@pytest.mark.asyncio
async def test_status_of_unconnected_user(service):
    status = await service.account_status(BUYER_ID)
    assert status.connected is False
    assert status.account_id is None


@pytest.mark.asyncio
async def test_dashboard_link_requires_account(service):
    with pytest.raises(SellerNotConnectedException):
        await service.dashboard_link(BUYER_ID)
    link = await service.dashboard_link(SELLER_ID)
    assert link.url.endswith(SELLER_ACCOUNT)


@pytest.mark.asyncio
async def test_disconnect_unlinks_locally(service, seeded, gateway):
    await service.disconnect(SELLER_ID)

    assert gateway.calls_to("delete_account") == [SELLER_ACCOUNT]
    async with seeded(readonly=True) as uow:
        seller = await uow.users.get_by_id(SELLER_ID)
    assert seller.stripe_account is None
    assert seller.stripe_verified is False
    with pytest.raises(SellerNotConnectedException):
        await service.disconnect(SELLER_ID)
