"""
Webhook 分发服务 - 验签、幂等认领、按类型分发、记录处理结果

Every delivery goes through four steps:

1. verify the signature over the raw body (no row is written on failure);
2. claim the event id in the store; a duplicate delivery stops here;
3. run the registered handler in its own transaction;
4. record the outcome in a separate transaction.

An order that is not there yet (the event raced the checkout commit) releases
the event and asks the gateway to redeliver. A handler interrupted by
cancellation releases the event too. Any other handler failure is terminal:
the event is marked processed with the error and the error propagates.

A claim that is never resolved (the process died mid-handler) expires after
the configured lease; the next delivery reclaims it and the ops listing shows
it in the meantime.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

import anyio

from application.dtos.payments import WebhookEventDTO
from application.ports.payment_gateway import PaymentGateway
from application.services.reconciliation import get_handler
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import (
    BusinessException,
    IntegrityViolation,
    OrderNotFoundException,
    WebhookRetryableError,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.webhook.entity import WebhookEvent as WebhookEventRecord


logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    UNHANDLED = "unhandled"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, BusinessException):
        return f"{exc.error_type}: {exc.message}"
    return f"{type(exc).__name__}: {exc}"


class WebhookService:
    """Webhook 应用服务"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        config: PaymentSettings = payment_settings,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.config = config
        self.events: list = []

    def clear_events(self) -> None:
        self.events.clear()

    def _stale_before(self) -> datetime:
        return datetime.now(timezone.utc) - self.config.webhook.claim_lease

    async def receive(self, raw_payload: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        event = self.gateway.parse_webhook(raw_payload, signature_header)
        log = logger.bind(event_id=event.id, event_type=event.type)

        async with self._uow_factory() as uow:
            claimed = await uow.webhook_events.claim(
                WebhookEventRecord(id=event.id, event_type=event.type, payload=event.payload),
                stale_before=self._stale_before(),
            )
        if not claimed:
            log.info("webhook_duplicate_ignored")
            return WebhookOutcome.DUPLICATE

        handler = get_handler(event.type)
        if handler is None:
            log.info("webhook_unhandled_event_type")
            await self._mark_processed(event.id)
            return WebhookOutcome.UNHANDLED

        try:
            async with self._uow_factory() as uow:
                produced = await handler(event, uow)
        except OrderNotFoundException as exc:
            await self._release(event.id, _describe(exc))
            log.warning("webhook_deferred", order_id=exc.order_id)
            raise WebhookRetryableError(event.id, exc.message) from exc
        except Exception as exc:
            await self._mark_processed(event.id, error=_describe(exc))
            log.error(
                "webhook_handler_failed",
                error=_describe(exc),
                integrity_violation=isinstance(exc, IntegrityViolation),
                exc_info=not isinstance(exc, BusinessException),
            )
            raise
        except BaseException as exc:
            # 取消/关停：释放认领，否则重投会被当作重复事件
            with anyio.CancelScope(shield=True):
                await self._release(event.id, _describe(exc))
            log.warning("webhook_interrupted", error=_describe(exc))
            raise

        await self._mark_processed(event.id)
        self.events.extend(produced or [])
        log.info("webhook_processed")
        return WebhookOutcome.PROCESSED

    async def _mark_processed(self, event_id: str, error: Optional[str] = None) -> None:
        async with self._uow_factory() as uow:
            await uow.webhook_events.mark_processed(event_id, error=error)

    async def _release(self, event_id: str, error: str) -> None:
        async with self._uow_factory() as uow:
            await uow.webhook_events.release(event_id, error)

    async def list_failed_events(self, limit: int = 100) -> List[WebhookEventDTO]:
        async with self._uow_factory(readonly=True) as uow:
            records = await uow.webhook_events.list_failed(stale_before=self._stale_before(), limit=limit)
        return [WebhookEventDTO.model_validate(r) for r in records]
