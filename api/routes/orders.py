"""
订单路由 - 结账、退款、订单查询
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_checkout_service, get_current_user_id, get_refund_service
from application.dtos.payments import CheckoutRequest, CheckoutSessionDTO, OrderDTO, RefundDTO
from application.services.checkout_service import CheckoutService
from application.services.refund_service import RefundService
from core.config import settings
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("/checkout", summary="Start checkout", response_model=ApiResponse[CheckoutSessionDTO])
async def checkout(
    payload: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
):
    """
    为商品创建待支付订单与网关结账会话

    - **product_id**: 商品ID
    """
    session = await service.checkout(payload.product_id, user_id)
    return success_response(data=session, message="Checkout session created")


@router.post("/{order_id}/refund", summary="Refund order", response_model=ApiResponse[RefundDTO])
async def refund(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RefundService = Depends(get_refund_service),
):
    result = await service.create_refund(order_id, user_id)
    return success_response(data=result, message="Refund succeeded")


@router.get("/purchased", summary="Orders I bought", response_model=ApiResponse[List[OrderDTO]])
async def purchased(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    user_id: str = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
):
    orders = await service.list_purchases(user_id, skip=skip, limit=limit)
    return success_response(data=orders)


@router.get("/sold", summary="Orders I sold", response_model=ApiResponse[List[OrderDTO]])
async def sold(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    user_id: str = Depends(get_current_user_id),
    service: CheckoutService = Depends(get_checkout_service),
):
    orders = await service.list_sales(user_id, skip=skip, limit=limit)
    return success_response(data=orders)
