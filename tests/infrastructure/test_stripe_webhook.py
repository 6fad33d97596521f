import hashlib
import hmac
import json
import time

import pytest

from domain.common.exceptions import WebhookSignatureError
from infrastructure.external.payments.exceptions import PaymentProviderError
from infrastructure.external.payments.stripe_client import StripeClient


WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def client():
    return StripeClient(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET, tolerance_seconds=300)


@pytest.fixture
def payload():
    return json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": "checkout.session.completed",
            "account": "acct_seller",
            "data": {"object": {"id": "cs_1", "metadata": {"orderId": "order-1"}}},
        }
    ).encode("utf-8")


def test_valid_signature_is_parsed(client, payload):
    event = client.parse_webhook(payload, _sign(payload))

    assert event.id == "evt_1"
    assert event.type == "checkout.session.completed"
    assert event.metadata == {"orderId": "order-1"}
    assert event.account == "acct_seller"


def test_tampered_body_is_rejected(client, payload):
    header = _sign(payload)
    tampered = payload.replace(b"order-1", b"order-2")

    with pytest.raises(WebhookSignatureError):
        client.parse_webhook(tampered, header)


def test_wrong_secret_is_rejected(client, payload):
    with pytest.raises(WebhookSignatureError):
        client.parse_webhook(payload, _sign(payload, secret="whsec_other"))


def test_stale_timestamp_is_rejected(client, payload):
    with pytest.raises(WebhookSignatureError):
        client.parse_webhook(payload, _sign(payload, timestamp=int(time.time()) - 3600))


@pytest.mark.parametrize("header", [None, ""])
def test_missing_header_is_rejected(client, payload, header):
    with pytest.raises(WebhookSignatureError):
        client.parse_webhook(payload, header)


def test_signed_garbage_is_a_provider_error(client):
    body = b"not json"
    with pytest.raises(PaymentProviderError):
        client.parse_webhook(body, _sign(body))


def test_client_requires_secret_key(monkeypatch):
    from core.settings import payment_settings

    monkeypatch.setattr(payment_settings.stripe, "secret_key", None)
    with pytest.raises(RuntimeError):
        StripeClient()
