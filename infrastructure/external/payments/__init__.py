"""
Factory for the payment gateway client.
"""
from __future__ import annotations

from functools import lru_cache

from application.ports.payment_gateway import PaymentGateway


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    from .stripe_client import StripeClient
    return StripeClient()
