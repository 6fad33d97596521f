"""
Base payment client implementing shared concerns: retry, thread offload,
error mapping, logging.

Concrete providers subclass and implement provider-specific calls.
"""
from __future__ import annotations

import functools
from typing import Any, Callable, Optional, TypeVar

import anyio
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)
from shared.codes.payment_codes import PAYOUT_STATUS_TO_INTERNAL, PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

T = TypeVar("T")


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "write": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    @property
    def request_timeout(self) -> float:
        return float(self._timeouts_cfg["total"])

    async def _retry(self, fn: Callable[[], Any]):
        """Retry transient failures. Only for calls carrying an idempotency key."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(
                multiplier=self._retry_cfg["base"],
                min=0.1,
                max=self._retry_cfg.get("max_backoff", 2.0),
            ),
            retry=retry_if_exception_type(PaymentRecoverableError),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking SDK call in a worker thread and map its errors."""
        try:
            return await anyio.to_thread.run_sync(functools.partial(fn, *args, **kwargs))
        except (PaymentProviderError, PaymentRecoverableError):
            raise
        except Exception as exc:
            mapped = self._map_error(exc)
            logger.warning(
                "gateway_call_failed",
                provider=self.provider,
                operation=operation,
                error_type=mapped.error_type,
                error=str(exc),
            )
            raise mapped from exc

    def _map_error(self, exc: Exception) -> PaymentProviderError | PaymentRecoverableError:
        return PaymentProviderError(str(exc), provider=self.provider)

    # Helpers
    def _map_status(self, provider_status: Optional[str]) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        status = provider_status or ""
        return mapping.get(status, status)

    def _map_payout_status(self, provider_status: Optional[str]) -> str:
        mapping = PAYOUT_STATUS_TO_INTERNAL.get(self.provider, {})
        status = provider_status or ""
        return mapping.get(status, status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
