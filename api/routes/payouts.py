"""
提现路由
"""
from typing import List

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_current_user_id, get_payout_service
from application.dtos.payments import BalanceDTO, PayoutCreateRequest, PayoutDTO, PayoutResult
from application.services.payout_service import PayoutService
from core.config import settings
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/payouts", tags=["Payouts"])


@router.get("/balance", summary="Gateway balance", response_model=ApiResponse[BalanceDTO])
async def balance(
    user_id: str = Depends(get_current_user_id),
    service: PayoutService = Depends(get_payout_service),
):
    return success_response(data=await service.get_balance(user_id))


@router.post("", summary="Request payout", response_model=ApiResponse[PayoutDTO])
async def create_payout(
    payload: PayoutCreateRequest,
    user_id: str = Depends(get_current_user_id),
    service: PayoutService = Depends(get_payout_service),
):
    """
    发起提现

    - **amount**: 金额（最小货币单位），不得超过网关可用余额
    """
    payout = await service.create_payout(user_id, payload.amount)
    return success_response(data=payout, message="Payout issued")


@router.get("", summary="My payouts", response_model=ApiResponse[List[PayoutDTO]])
async def list_payouts(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    user_id: str = Depends(get_current_user_id),
    service: PayoutService = Depends(get_payout_service),
):
    return success_response(data=await service.list_payouts(user_id, skip=skip, limit=limit))


@router.get("/{payout_id}", summary="Payout details", response_model=ApiResponse[PayoutResult])
async def get_payout(
    payout_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PayoutService = Depends(get_payout_service),
):
    return success_response(data=await service.get_payout(user_id, payout_id))


@router.post("/{payout_id}/cancel", summary="Cancel payout", response_model=ApiResponse[PayoutResult])
async def cancel_payout(
    payout_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PayoutService = Depends(get_payout_service),
):
    result = await service.cancel_payout(user_id, payout_id)
    return success_response(data=result, message="Payout cancel requested")
