"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials and marketplace
money rules can be tuned without touching application settings, e.g.
``PAYMENT__STRIPE__SECRET_KEY`` or ``PAYMENT__REFUND_WINDOW_DAYS``.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2
    max_backoff: float = 2.0


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    # 认领后超过该时长仍未完成的事件视为中断，可被重新认领
    claim_lease_seconds: int = 60

    @property
    def claim_lease(self) -> timedelta:
        return timedelta(seconds=self.claim_lease_seconds)


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)

    # 市场规则
    currency: str = "pln"
    payment_method_types: list[str] = Field(default_factory=lambda: ["card", "blik", "p24", "klarna"])
    application_fee_bps: int = 500  # 5%
    refund_window_days: int = 14
    frontend_url: str = "http://localhost:3000"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @property
    def refund_window(self) -> timedelta:
        return timedelta(days=self.refund_window_days)

    @property
    def gateway_call_budget(self) -> float:
        """Worst-case seconds one retried gateway call can take."""
        attempts = self.retry.max + 1
        return attempts * self.timeouts.total + self.retry.max * self.retry.max_backoff

    def application_fee(self, amount: int) -> int:
        """Platform fee in minor units, rounded down."""
        return amount * self.application_fee_bps // 10_000


payment_settings = PaymentSettings()
