"""
API依赖项 - 认证与服务装配

令牌由认证服务签发，这里只做校验：HS256 JWT，`sub` 为用户ID。
"""
from typing import Callable, Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from application.ports.locks import KeyedLock
from application.ports.payment_gateway import PaymentGateway
from application.services.account_service import AccountService
from application.services.checkout_service import CheckoutService
from application.services.payout_service import PayoutService
from application.services.refund_service import RefundService
from application.services.webhook_service import WebhookService
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from core.logging_config import get_logger
from domain.common.exceptions import AuthorizationDeniedException
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.external.payments import get_payment_gateway
from infrastructure.locks import get_lock_provider
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork



logger = get_logger(__name__)

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication",
    auto_error=False,
)


def decode_user_id(token: str) -> str:
    """校验令牌并返回 sub（用户ID）"""
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException()
    except jwt.InvalidTokenError as exc:
        logger.info("token_rejected", reason=str(exc))
        raise UnauthorizedException("Invalid authentication credentials")
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise UnauthorizedException("Invalid authentication credentials")
    return user_id


async def get_current_user_id(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """获取当前调用者ID"""
    if bearer_token is None or not bearer_token.credentials:
        raise UnauthorizedException("Authentication credentials were not provided")
    user_id = decode_user_id(bearer_token.credentials)
    structlog.contextvars.bind_contextvars(user_id=user_id)
    return user_id


async def get_current_operator(user_id: str = Depends(get_current_user_id)) -> str:
    """获取当前运维用户（OPS_USER_IDS）"""
    if user_id not in settings.OPS_USER_IDS:
        logger.info("operator_access_denied", user_id=user_id)
        raise AuthorizationDeniedException("Operator access required")
    return user_id


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return SQLAlchemyUnitOfWork


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_locks() -> KeyedLock:
    return get_lock_provider()


async def get_checkout_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_gateway),
) -> CheckoutService:
    return CheckoutService(uow_factory=uow_factory, gateway=gateway)


async def get_refund_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_gateway),
) -> RefundService:
    return RefundService(uow_factory=uow_factory, gateway=gateway)


async def get_webhook_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_gateway),
) -> WebhookService:
    return WebhookService(uow_factory=uow_factory, gateway=gateway)


async def get_payout_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_gateway),
    locks: KeyedLock = Depends(get_locks),
) -> PayoutService:
    return PayoutService(uow_factory=uow_factory, gateway=gateway, locks=locks)


async def get_account_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    gateway: PaymentGateway = Depends(get_gateway),
    locks: KeyedLock = Depends(get_locks),
) -> AccountService:
    return AccountService(uow_factory=uow_factory, gateway=gateway, locks=locks)
