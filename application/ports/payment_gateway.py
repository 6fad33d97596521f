"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Every method raises GatewayError (or a subclass) on failure; parse_webhook
raises WebhookSignatureError when the payload cannot be authenticated.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

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


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the marketplace's payment processor."""

    provider: str

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession: ...

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession: ...

    async def create_refund(self, req: RefundRequest) -> RefundResult: ...

    async def create_payout(self, req: PayoutRequest) -> PayoutResult: ...

    async def retrieve_payout(self, payout_id: str, stripe_account: str) -> PayoutResult: ...

    async def cancel_payout(self, payout_id: str, stripe_account: str) -> PayoutResult: ...

    async def create_account(self, email: Optional[str]) -> GatewayAccount: ...

    async def retrieve_account(self, account_id: str) -> GatewayAccount: ...

    async def delete_account(self, account_id: str) -> None: ...

    async def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> str: ...

    async def create_login_link(self, account_id: str) -> str: ...

    async def retrieve_balance(self, stripe_account: str, currency: str) -> GatewayBalance: ...

    def parse_webhook(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent: ...
