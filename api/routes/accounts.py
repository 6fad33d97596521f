"""
网关子账户路由
"""
from fastapi import APIRouter, Depends

from api.dependencies import get_account_service, get_current_user_id
from application.dtos.payments import AccountStatusDTO, LinkDTO
from application.services.account_service import AccountService
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/accounts", tags=["Accounts"])


@router.post("/connect", summary="Connect payout account", response_model=ApiResponse[LinkDTO])
async def connect(
    user_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    """首次调用时创建子账户，返回开户引导链接"""
    return success_response(data=await service.connect(user_id))


@router.get("/status", summary="Payout account status", response_model=ApiResponse[AccountStatusDTO])
async def status(
    user_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    return success_response(data=await service.account_status(user_id))


@router.get("/dashboard-link", summary="Gateway dashboard link", response_model=ApiResponse[LinkDTO])
async def dashboard_link(
    user_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    return success_response(data=await service.dashboard_link(user_id))


@router.delete("/connect", summary="Disconnect payout account")
async def disconnect(
    user_id: str = Depends(get_current_user_id),
    service: AccountService = Depends(get_account_service),
):
    await service.disconnect(user_id)
    return success_response(message="Account disconnected")
