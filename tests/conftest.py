"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import asyncio
import functools
import json
import os
from datetime import datetime, timezone
from typing import Any, Optional

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./bookmarket-test.db")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from application.dtos.payments import (
    CheckoutSession,
    CreateCheckoutSession,
    GatewayAccount,
    GatewayBalance,
    PayoutRequest,
    PayoutResult,
    RefundRequest,
    RefundResult,
    WebhookEvent,
)
from domain.catalog.entity import Product
from domain.common.exceptions import WebhookSignatureError
from domain.order.entity import Order, OrderStatus
from domain.user.entity import User
from infrastructure.database import build_engine, create_tables
from infrastructure.external.payments.exceptions import PaymentProviderError
from infrastructure.locks import InProcessKeyedLock
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


BUYER_ID = "buyer-1"
SELLER_ID = "seller-1"
SELLER_ACCOUNT = "acct_seller"
PRODUCT_ID = "product-1"
PRODUCT_PRICE = 1999

VALID_SIGNATURE = "t=1,v1=valid"


class FakeGateway:
    """In-memory stand-in for the payment gateway port.

    Every call is recorded in ``calls`` as ``(method, argument)``. Setting
    ``fail[method]`` to an exception makes that method raise it.
    """

    provider = "fake"

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.fail: dict[str, Exception] = {}
        self.sessions: dict[str, CheckoutSession] = {}
        self.accounts: dict[str, GatewayAccount] = {
            SELLER_ACCOUNT: GatewayAccount(account_id=SELLER_ACCOUNT, charges_enabled=True, payouts_enabled=True),
        }
        self.sessions["cs_seed"] = CheckoutSession(session_id="cs_seed", payment_intent_id="pi_seed", status="complete")
        self.payouts: dict[str, tuple[str, PayoutResult]] = {}
        self.balance = GatewayBalance(available=0, pending=0, currency="pln")
        self.refund_status = "succeeded"
        self._seq = 0

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq}"

    async def _record(self, method: str, arg: Any) -> None:
        self.calls.append((method, arg))
        # 让出事件循环，暴露未加锁的交错执行
        await asyncio.sleep(0)
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    def calls_to(self, method: str) -> list:
        return [arg for name, arg in self.calls if name == method]

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:
        await self._record("create_checkout_session", req)
        session_id = self._next("cs")
        session = CheckoutSession(
            session_id=session_id,
            url=f"https://checkout.test/{session_id}",
            payment_intent_id=self._next("pi"),
            status="open",
            metadata={"orderId": req.order_id},
        )
        self.sessions[session_id] = session
        return session

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        await self._record("retrieve_checkout_session", session_id)
        if session_id not in self.sessions:
            raise PaymentProviderError("No such checkout session", provider=self.provider)
        return self.sessions[session_id]

    async def create_refund(self, req: RefundRequest) -> RefundResult:
        await self._record("create_refund", req)
        return RefundResult(refund_id=self._next("re"), status=self.refund_status, payment_intent_id=req.payment_intent_id)

    async def create_payout(self, req: PayoutRequest) -> PayoutResult:
        await self._record("create_payout", req)
        result = PayoutResult(payout_id=self._next("po"), amount=req.amount, currency=req.currency, status="pending")
        self.payouts[result.payout_id] = (req.stripe_account, result)
        self.balance = self.balance.model_copy(update={"available": self.balance.available - req.amount})
        return result

    async def retrieve_payout(self, payout_id: str, stripe_account: str) -> PayoutResult:
        await self._record("retrieve_payout", payout_id)
        return self.payouts[payout_id][1]

    async def cancel_payout(self, payout_id: str, stripe_account: str) -> PayoutResult:
        await self._record("cancel_payout", payout_id)
        account, result = self.payouts[payout_id]
        canceled = result.model_copy(update={"status": "canceled"})
        self.payouts[payout_id] = (account, canceled)
        return canceled

    async def create_account(self, email: Optional[str]) -> GatewayAccount:
        await self._record("create_account", email)
        account = GatewayAccount(account_id=self._next("acct"), email=email)
        self.accounts[account.account_id] = account
        return account

    async def retrieve_account(self, account_id: str) -> GatewayAccount:
        await self._record("retrieve_account", account_id)
        if account_id not in self.accounts:
            raise PaymentProviderError("No such account", provider=self.provider)
        return self.accounts[account_id]

    async def delete_account(self, account_id: str) -> None:
        await self._record("delete_account", account_id)
        self.accounts.pop(account_id, None)

    async def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        await self._record("create_account_link", account_id)
        return f"https://connect.test/onboarding/{account_id}"

    async def create_login_link(self, account_id: str) -> str:
        await self._record("create_login_link", account_id)
        return f"https://connect.test/login/{account_id}"

    async def retrieve_balance(self, stripe_account: str, currency: str) -> GatewayBalance:
        await self._record("retrieve_balance", stripe_account)
        return self.balance

    def parse_webhook(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        if signature_header != VALID_SIGNATURE:
            raise WebhookSignatureError()
        event = json.loads(payload)
        return WebhookEvent(
            id=event["id"],
            type=event["type"],
            data_object=event["data"]["object"],
            account=event.get("account"),
            payload=event,
        )


def make_event(event_id: str, event_type: str, data_object: dict, **extra) -> bytes:
    """Serialize a gateway event the way it arrives on the wire."""
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": data_object}, **extra}
    ).encode("utf-8")


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def uow_factory(engine):
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    return functools.partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def locks():
    return InProcessKeyedLock(blocking_timeout=5)


@pytest_asyncio.fixture
async def seeded(uow_factory):
    """Buyer, a connected seller and one 19.99 PLN e-book."""
    async with uow_factory() as uow:
        await uow.users.create(User(id=BUYER_ID, email="buyer@example.com"))
        await uow.users.create(
            User(id=SELLER_ID, email="seller@example.com", stripe_account=SELLER_ACCOUNT, stripe_verified=True)
        )
        await uow.products.create(
            Product(id=PRODUCT_ID, seller_id=SELLER_ID, title="Pan Tadeusz", price=PRODUCT_PRICE)
        )
    return uow_factory


@pytest.fixture
def place_order(seeded):
    """Insert an order directly, bypassing checkout."""

    async def _place(
        *,
        order_id: str = "order-1",
        status: OrderStatus = OrderStatus.COMPLETED,
        created_at: Optional[datetime] = None,
        checkout_session_id: Optional[str] = "cs_seed",
    ) -> Order:
        created_at = created_at or datetime.now(timezone.utc)
        async with seeded() as uow:
            return await uow.orders.create(
                Order(
                    id=order_id,
                    buyer_id=BUYER_ID,
                    seller_id=SELLER_ID,
                    product_id=PRODUCT_ID,
                    amount=PRODUCT_PRICE,
                    status=status,
                    checkout_session_id=checkout_session_id,
                    created_at=created_at,
                    updated_at=created_at,
                )
            )

    return _place
