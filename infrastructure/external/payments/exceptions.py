"""
Exceptions for the payment provider mapped to unified GatewayError variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import GatewayError
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(GatewayError):
    """Non-retryable provider failure (invalid request, card error, auth)."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_ERROR,
            error_type="PaymentProviderError",
            details=full_details,
        )


class PaymentRecoverableError(GatewayError):
    """Transient provider failure (network, rate limit); safe to retry with the same idempotency key."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="PaymentRecoverableError",
            details=full_details,
        )
