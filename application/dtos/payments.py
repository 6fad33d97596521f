"""
Payment DTOs (Pydantic v2) used at application boundaries.

Two groups live here: gateway-facing requests/results exchanged with the
PaymentGateway port, and API-facing views returned by the services.
All money fields are integers in minor currency units.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _lower_currency(v: str) -> str:
    c = (v or "").lower()
    if len(c) != 3 or not c.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return c


# ---------------------------------------------------------------- gateway side


class CreateCheckoutSession(BaseModel):
    order_id: str
    product_title: str
    unit_amount: int = Field(gt=0)
    currency: str = "pln"
    application_fee_amount: int = Field(ge=0)
    destination_account: str
    customer_email: Optional[str] = None
    success_url: str
    cancel_url: str
    idempotency_key: str

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _lower_currency(v)


class CheckoutSession(BaseModel):
    session_id: str
    url: Optional[str] = None
    payment_intent_id: Optional[str] = None
    status: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RefundRequest(BaseModel):
    order_id: str
    payment_intent_id: str
    amount: int = Field(gt=0)
    reason: str = "requested_by_customer"
    idempotency_key: str


class RefundResult(BaseModel):
    refund_id: str
    status: str
    payment_intent_id: Optional[str] = None


class PayoutRequest(BaseModel):
    stripe_account: str
    amount: int = Field(gt=0)
    currency: str = "pln"
    idempotency_key: str

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _lower_currency(v)


class PayoutResult(BaseModel):
    payout_id: str
    amount: int
    currency: str
    status: str
    arrival_date: Optional[datetime] = None


class GatewayAccount(BaseModel):
    account_id: str
    email: Optional[str] = None
    details_submitted: bool = False
    charges_enabled: bool = False
    payouts_enabled: bool = False

    @property
    def fully_enabled(self) -> bool:
        return self.charges_enabled and self.payouts_enabled


class GatewayBalance(BaseModel):
    available: int = 0
    pending: int = 0
    currency: str = "pln"


class WebhookEvent(BaseModel):
    """A verified, parsed gateway event."""

    id: str
    type: str
    data_object: dict[str, Any] = Field(default_factory=dict)
    account: Optional[str] = None
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def metadata(self) -> dict[str, Any]:
        return self.data_object.get("metadata") or {}


# ---------------------------------------------------------------- API side


class CheckoutRequest(BaseModel):
    product_id: str = Field(min_length=1)


class PayoutCreateRequest(BaseModel):
    amount: int = Field(gt=0, description="金额（最小货币单位）")


class CheckoutSessionDTO(BaseModel):
    order_id: str
    session_id: str
    url: Optional[str] = None


class OrderDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    buyer_id: str
    seller_id: str
    product_id: Optional[str] = None
    amount: int
    status: str
    checkout_session_id: Optional[str] = None
    payment_url: Optional[str] = None
    refund_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)


class RefundDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    amount: int
    status: str
    gateway_refund_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)


class PayoutDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    amount: int
    stripe_payout_id: str
    created_at: Optional[datetime] = None


class BalanceDTO(BaseModel):
    available: int
    pending: int
    currency: str


class AccountStatusDTO(BaseModel):
    connected: bool
    account_id: Optional[str] = None
    details_submitted: bool = False
    charges_enabled: bool = False
    payouts_enabled: bool = False
    verified: bool = False


class LinkDTO(BaseModel):
    url: str


class WebhookEventDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_type: str
    processed: bool
    error: Optional[str] = None
    attempts: int
    created_at: Optional[datetime] = None
    claimed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
