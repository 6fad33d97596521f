"""
Stripe adapter (Checkout, Connect, Refunds, Payouts) using the official
stripe-python SDK.

Notes on SDK usage:
- Module-level resource helpers with a per-call ``api_key`` so no global key
  is mutated. Idempotency keys and the connected account are request
  options (``idempotency_key`` / ``stripe_account`` kwargs).
- The SDK is blocking; calls run in a worker thread via ``anyio``.
- Webhook verification uses ``stripe.WebhookSignature.verify_header`` over
  the raw body with the ``Stripe-Signature`` header.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import stripe

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
from domain.common.exceptions import WebhookSignatureError
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)
from core.settings import payment_settings


TRANSIENT_ERRORS = (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)


def _id_of(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return getattr(value, "id", None)


class StripeClient(BasePaymentClient):
    provider = "stripe"

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        *,
        tolerance_seconds: Optional[int] = None,
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={
                "max": payment_settings.retry.max,
                "base": payment_settings.retry.base_backoff,
                "max_backoff": payment_settings.retry.max_backoff,
            },
        )
        self._api_key = secret_key or payment_settings.stripe.secret_key
        if not self._api_key:
            raise RuntimeError("PAYMENT__STRIPE__SECRET_KEY not configured")
        self._webhook_secret = webhook_secret or payment_settings.stripe.webhook_secret
        self._tolerance = tolerance_seconds or payment_settings.webhook.tolerance_seconds
        self._api_version = payment_settings.stripe.api_version
        # 重试由 tenacity 负责，SDK 自身不重试
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=self.request_timeout)

    def _options(self, **extra: Any) -> dict[str, Any]:
        opts: dict[str, Any] = {"api_key": self._api_key}
        if self._api_version:
            opts["stripe_version"] = self._api_version
        opts.update({k: v for k, v in extra.items() if v is not None})
        return opts

    def _map_error(self, exc: Exception) -> PaymentProviderError | PaymentRecoverableError:
        code = getattr(exc, "code", None)
        message = getattr(exc, "user_message", None) or str(exc)
        if isinstance(exc, TRANSIENT_ERRORS):
            return PaymentRecoverableError(message, provider=self.provider, provider_code=code)
        return PaymentProviderError(message, provider=self.provider, provider_code=code)

    # ------------------------------------------------------------------ checkout

    def _to_checkout_session(self, session: Any) -> CheckoutSession:
        metadata = getattr(session, "metadata", None)
        return CheckoutSession(
            session_id=str(session.id),
            url=getattr(session, "url", None),
            payment_intent_id=_id_of(getattr(session, "payment_intent", None)),
            status=getattr(session, "status", None),
            metadata=dict(metadata) if metadata else {},
        )

    async def create_checkout_session(self, req: CreateCheckoutSession) -> CheckoutSession:
        metadata = {"orderId": req.order_id}
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": payment_settings.payment_method_types,
            "line_items": [
                {
                    "price_data": {
                        "currency": req.currency,
                        "product_data": {"name": req.product_title},
                        "unit_amount": req.unit_amount,
                    },
                    "quantity": 1,
                }
            ],
            "payment_intent_data": {
                "application_fee_amount": req.application_fee_amount,
                "transfer_data": {"destination": req.destination_account},
                "metadata": metadata,
            },
            "success_url": req.success_url,
            "cancel_url": req.cancel_url,
            "billing_address_collection": "auto",
            "invoice_creation": {"enabled": True},
            "metadata": metadata,
        }
        if req.customer_email:
            params["customer_email"] = req.customer_email

        session = await self._retry(
            lambda: self._call(
                "create_checkout_session",
                stripe.checkout.Session.create,
                **params,
                **self._options(idempotency_key=req.idempotency_key),
            )
        )
        self._log("checkout_session_created", order_id=req.order_id, session_id=session.id)
        return self._to_checkout_session(session)

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        session = await self._retry(
            lambda: self._call(
                "retrieve_checkout_session",
                stripe.checkout.Session.retrieve,
                session_id,
                **self._options(),
            )
        )
        return self._to_checkout_session(session)

    # ------------------------------------------------------------------ refunds

    async def create_refund(self, req: RefundRequest) -> RefundResult:
        refund = await self._retry(
            lambda: self._call(
                "create_refund",
                stripe.Refund.create,
                payment_intent=req.payment_intent_id,
                amount=req.amount,
                reason=req.reason,
                metadata={"orderId": req.order_id},
                **self._options(idempotency_key=req.idempotency_key),
            )
        )
        status = self._map_status(getattr(refund, "status", None))
        self._log("refund_requested", order_id=req.order_id, refund_id=refund.id, status=status)
        return RefundResult(
            refund_id=str(refund.id),
            status=status,
            payment_intent_id=_id_of(getattr(refund, "payment_intent", None)),
        )

    # ------------------------------------------------------------------ payouts

    def _to_payout(self, payout: Any) -> PayoutResult:
        arrival = getattr(payout, "arrival_date", None)
        return PayoutResult(
            payout_id=str(payout.id),
            amount=int(payout.amount),
            currency=str(payout.currency),
            status=self._map_payout_status(getattr(payout, "status", None)),
            arrival_date=datetime.fromtimestamp(arrival, tz=timezone.utc) if arrival else None,
        )

    async def create_payout(self, req: PayoutRequest) -> PayoutResult:
        payout = await self._retry(
            lambda: self._call(
                "create_payout",
                stripe.Payout.create,
                amount=req.amount,
                currency=req.currency,
                **self._options(idempotency_key=req.idempotency_key, stripe_account=req.stripe_account),
            )
        )
        self._log("payout_requested", stripe_account=req.stripe_account, payout_id=payout.id, amount=req.amount)
        return self._to_payout(payout)

    async def retrieve_payout(self, payout_id: str, stripe_account: str) -> PayoutResult:
        payout = await self._retry(
            lambda: self._call(
                "retrieve_payout",
                stripe.Payout.retrieve,
                payout_id,
                **self._options(stripe_account=stripe_account),
            )
        )
        return self._to_payout(payout)

    async def cancel_payout(self, payout_id: str, stripe_account: str) -> PayoutResult:
        # 取消不是幂等调用，不重试
        payout = await self._call(
            "cancel_payout",
            stripe.Payout.cancel,
            payout_id,
            **self._options(stripe_account=stripe_account),
        )
        self._log("payout_canceled", stripe_account=stripe_account, payout_id=payout_id)
        return self._to_payout(payout)

    async def retrieve_balance(self, stripe_account: str, currency: str) -> GatewayBalance:
        balance = await self._retry(
            lambda: self._call(
                "retrieve_balance",
                stripe.Balance.retrieve,
                **self._options(stripe_account=stripe_account),
            )
        )
        currency = currency.lower()

        def _sum(entries: Any) -> int:
            return sum(int(e.amount) for e in (entries or []) if str(e.currency).lower() == currency)

        return GatewayBalance(
            available=_sum(getattr(balance, "available", None)),
            pending=_sum(getattr(balance, "pending", None)),
            currency=currency,
        )

    # ------------------------------------------------------------------ connect

    def _to_account(self, account: Any) -> GatewayAccount:
        return GatewayAccount(
            account_id=str(account.id),
            email=getattr(account, "email", None),
            details_submitted=bool(getattr(account, "details_submitted", False)),
            charges_enabled=bool(getattr(account, "charges_enabled", False)),
            payouts_enabled=bool(getattr(account, "payouts_enabled", False)),
        )

    async def create_account(self, email: Optional[str]) -> GatewayAccount:
        # 账户创建不带幂等键，不重试，避免重复开户
        account = await self._call(
            "create_account",
            stripe.Account.create,
            type="express",
            email=email,
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            **self._options(),
        )
        self._log("account_created", account_id=account.id)
        return self._to_account(account)

    async def retrieve_account(self, account_id: str) -> GatewayAccount:
        account = await self._retry(
            lambda: self._call("retrieve_account", stripe.Account.retrieve, account_id, **self._options())
        )
        return self._to_account(account)

    async def delete_account(self, account_id: str) -> None:
        await self._call("delete_account", stripe.Account.delete, account_id, **self._options())
        self._log("account_deleted", account_id=account_id)

    async def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> str:
        link = await self._call(
            "create_account_link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
            **self._options(),
        )
        return str(link.url)

    async def create_login_link(self, account_id: str) -> str:
        link = await self._call(
            "create_login_link",
            stripe.Account.create_login_link,
            account_id,
            **self._options(),
        )
        return str(link.url)

    # ------------------------------------------------------------------ webhooks

    def parse_webhook(self, payload: bytes, signature_header: Optional[str]) -> WebhookEvent:
        if not self._webhook_secret:
            raise WebhookSignatureError("Missing PAYMENT__STRIPE__WEBHOOK_SECRET")
        if not signature_header:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                text,
                signature_header,
                self._webhook_secret,
                tolerance=self._tolerance,
            )
        except (UnicodeDecodeError, stripe.SignatureVerificationError) as exc:
            raise WebhookSignatureError(str(exc)) from exc

        try:
            event = json.loads(text)
        except ValueError as exc:
            raise PaymentProviderError("Malformed webhook payload", provider=self.provider) from exc
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise PaymentProviderError("Webhook payload is not an event", provider=self.provider)

        data_object = (event.get("data") or {}).get("object") or {}
        return WebhookEvent(
            id=str(event["id"]),
            type=str(event["type"]),
            data_object=data_object,
            account=event.get("account"),
            payload=event,
        )
