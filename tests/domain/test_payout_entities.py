import pytest

from domain.common.exceptions import DomainValidationException
from domain.payout.entity import Payout, ensure_positive_amount
from domain.user.entity import User
from domain.webhook.entity import WebhookEvent

@pytest.mark.parametrize("amount", [0, -5, 1.5, "100", False])
def test_ensure_positive_amount_rejects(amount):
    with pytest.raises(DomainValidationException):
        ensure_positive_amount(amount)

def test_payout_requires_gateway_id():
    with pytest.raises(DomainValidationException):
        Payout(id="p1", user_id="u1", amount=100, stripe_payout_id="")

def test_user_gateway_account_lifecycle():
    user = User(id="u1", email="u1@example.com")
    assert not user.can_sell
    user.link_stripe_account("acct_1")
    user.link_stripe_account("acct_1")
    with pytest.raises(DomainValidationException):
        user.link_stripe_account("acct_2")
    assert user.mark_verified() is True
    assert user.mark_verified() is False
    user.unlink_stripe_account()
    assert user.stripe_account is None
    assert user.stripe_verified is False

def test_webhook_event_states():
    event = WebhookEvent(id="evt_1", event_type="x")
    assert not event.released and not event.failed
    event.error = "OrderNotFound"
    assert event.released
    event.processed = True
    assert event.failed
