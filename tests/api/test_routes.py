from datetime import datetime, timedelta, timezone

import httpx
import jwt
import pytest
import pytest_asyncio

from api.dependencies import get_gateway, get_locks, get_uow_factory
from core.config import settings
from main import app

from conftest import BUYER_ID, PRODUCT_ID, SELLER_ID, VALID_SIGNATURE, make_event


OPS_ID = "ops-user"


def _token(sub: str, *, expires_in: timedelta = timedelta(hours=1)) -> str:
    payload = {"sub": sub, "exp": datetime.now(timezone.utc) + expires_in}
    return jwt.encode(payload, "test-secret-key", algorithm="HS256")


def _auth(sub: str) -> dict:
    return {"Authorization": f"Bearer {_token(sub)}"}


@pytest_asyncio.fixture
async def client(seeded, gateway, locks):
    app.dependency_overrides[get_uow_factory] = lambda: seeded
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_locks] = lambda: locks
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert "X-Request-ID" in resp.headers


@pytest.mark.asyncio
async def test_missing_and_expired_tokens_are_rejected(client):
    resp = await client.post("/api/v1/orders/checkout", json={"product_id": PRODUCT_ID})
    assert resp.status_code == 401
    assert resp.json()["error"]["type"] == "Unauthorized"

    expired = {"Authorization": f"Bearer {_token(BUYER_ID, expires_in=timedelta(minutes=-5))}"}
    resp = await client.post("/api/v1/orders/checkout", json={"product_id": PRODUCT_ID}, headers=expired)
    assert resp.status_code == 401
    assert resp.json()["error"]["type"] == "TokenExpired"


@pytest.mark.asyncio
async def test_checkout_then_webhook_then_listing(client):
    resp = await client.post("/api/v1/orders/checkout", json={"product_id": PRODUCT_ID}, headers=_auth(BUYER_ID))
    assert resp.status_code == 200
    session = resp.json()["data"]

    body = make_event(
        "evt_1",
        "checkout.session.completed",
        {"id": session["session_id"], "metadata": {"orderId": session["order_id"]}},
    )
    headers = {"Stripe-Signature": VALID_SIGNATURE, "Content-Type": "application/json"}
    first = await client.post("/api/v1/payments/webhooks/stripe", content=body, headers=headers)
    second = await client.post("/api/v1/payments/webhooks/stripe", content=body, headers=headers)
    assert first.status_code == second.status_code == 200
    assert first.json()["data"]["outcome"] == "processed"
    assert second.json()["data"]["outcome"] == "duplicate"

    purchased = await client.get("/api/v1/orders/purchased", headers=_auth(BUYER_ID))
    [order] = purchased.json()["data"]
    assert order["id"] == session["order_id"]
    assert order["status"] == "COMPLETED"

    sold = await client.get("/api/v1/orders/sold", headers=_auth(SELLER_ID))
    assert [o["id"] for o in sold.json()["data"]] == [session["order_id"]]


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_400(client):
    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=make_event("evt_x", "checkout.session.completed", {}),
        headers={"Stripe-Signature": "t=1,v1=nope"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "WebhookSignatureError"


@pytest.mark.asyncio
async def test_webhook_for_unknown_order_asks_for_redelivery(client, monkeypatch):
    monkeypatch.setattr(settings, "OPS_USER_IDS", [OPS_ID])
    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=make_event("evt_race", "checkout.session.completed", {"metadata": {"orderId": "not-yet"}}),
        headers={"Stripe-Signature": VALID_SIGNATURE},
    )
    assert resp.status_code == 503
    assert resp.headers["Retry-After"] == "30"

    failed = await client.get("/api/v1/payments/webhooks/failed", headers=_auth(OPS_ID))
    assert failed.status_code == 200
    assert [e["id"] for e in failed.json()["data"]] == ["evt_race"]


@pytest.mark.asyncio
async def test_failed_events_are_for_operators_only(client, monkeypatch):
    monkeypatch.setattr(settings, "OPS_USER_IDS", [OPS_ID])

    resp = await client.get("/api/v1/payments/webhooks/failed", headers=_auth(SELLER_ID))
    assert resp.status_code == 403
    assert (await client.get("/api/v1/payments/webhooks/failed")).status_code == 401
    assert (await client.get("/api/v1/payments/webhooks/failed", headers=_auth(OPS_ID))).status_code == 200


@pytest.mark.asyncio
async def test_webhook_integrity_violation_is_500(client):
    resp = await client.post(
        "/api/v1/payments/webhooks/stripe",
        content=make_event("evt_nometa", "checkout.session.completed", {"metadata": {}}),
        headers={"Stripe-Signature": VALID_SIGNATURE},
    )
    assert resp.status_code == 500
    assert resp.json()["error"]["type"] == "MissingEventMetadata"


@pytest.mark.asyncio
async def test_refund_outside_window_is_403(client, place_order):
    await place_order(created_at=datetime.now(timezone.utc) - timedelta(days=15))

    resp = await client.post("/api/v1/orders/order-1/refund", headers=_auth(BUYER_ID))

    assert resp.status_code == 403
    assert resp.json()["error"]["type"] == "RefundWindowExpired"


@pytest.mark.asyncio
async def test_refund_inside_window(client, place_order):
    await place_order()

    resp = await client.post("/api/v1/orders/order-1/refund", headers=_auth(BUYER_ID))
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "SUCCEEDED"

    again = await client.post("/api/v1/orders/order-1/refund", headers=_auth(BUYER_ID))
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_payout_flow(client, gateway):
    gateway.balance = gateway.balance.model_copy(update={"available": 1000})

    too_much = await client.post("/api/v1/payouts", json={"amount": 5000}, headers=_auth(SELLER_ID))
    assert too_much.status_code == 409
    assert too_much.json()["error"]["type"] == "InsufficientFunds"

    invalid = await client.post("/api/v1/payouts", json={"amount": 0}, headers=_auth(SELLER_ID))
    assert invalid.status_code == 422

    ok = await client.post("/api/v1/payouts", json={"amount": 600}, headers=_auth(SELLER_ID))
    assert ok.status_code == 200
    payout_id = ok.json()["data"]["stripe_payout_id"]

    balance = await client.get("/api/v1/payouts/balance", headers=_auth(SELLER_ID))
    assert balance.json()["data"]["available"] == 400

    listed = await client.get("/api/v1/payouts", headers=_auth(SELLER_ID))
    assert [p["stripe_payout_id"] for p in listed.json()["data"]] == [payout_id]

    detail = await client.get(f"/api/v1/payouts/{payout_id}", headers=_auth(SELLER_ID))
    assert detail.json()["data"]["payout_id"] == payout_id

    canceled = await client.post(f"/api/v1/payouts/{payout_id}/cancel", headers=_auth(SELLER_ID))
    assert canceled.json()["data"]["status"] == "canceled"

    foreign = await client.get(f"/api/v1/payouts/{payout_id}", headers=_auth(BUYER_ID))
    assert foreign.status_code == 404


@pytest.mark.asyncio
async def test_account_endpoints(client):
    connect = await client.post("/api/v1/accounts/connect", headers=_auth(BUYER_ID))
    assert connect.status_code == 200
    assert connect.json()["data"]["url"].startswith("https://connect.test/onboarding/")

    status = await client.get("/api/v1/accounts/status", headers=_auth(BUYER_ID))
    assert status.json()["data"]["connected"] is True

    link = await client.get("/api/v1/accounts/dashboard-link", headers=_auth(BUYER_ID))
    assert link.json()["data"]["url"].startswith("https://connect.test/login/")

    gone = await client.delete("/api/v1/accounts/connect", headers=_auth(BUYER_ID))
    assert gone.status_code == 200
    status = await client.get("/api/v1/accounts/status", headers=_auth(BUYER_ID))
    assert status.json()["data"]["connected"] is False
