"""
Webhook 路由 - 网关回调入口

The handler reads the raw body untouched: the signature covers the exact
bytes the gateway sent.
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from api.dependencies import get_current_operator, get_webhook_service
from application.dtos.payments import WebhookEventDTO
from application.services.webhook_service import WebhookService
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/payments/webhooks", tags=["Webhooks"])


@router.post("/stripe", summary="Stripe webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    service: WebhookService = Depends(get_webhook_service),
):
    raw_body = await request.body()
    outcome = await service.receive(raw_body, stripe_signature)
    # 重复投递同样返回200，网关据此停止重试
    return success_response(data={"outcome": outcome.value}, message="Webhook received")


@router.get("/failed", summary="Failed webhook events", response_model=ApiResponse[List[WebhookEventDTO]])
async def failed_events(
    limit: int = Query(default=100, ge=1, le=500),
    _: str = Depends(get_current_operator),
    service: WebhookService = Depends(get_webhook_service),
):
    """处理失败或等待重投的事件，供人工对账"""
    events = await service.list_failed_events(limit=limit)
    return success_response(data=events)
