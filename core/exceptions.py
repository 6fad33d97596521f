"""
自定义异常映射与全局异常处理器
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import traceback
import uuid
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode
from core.logging_config import get_logger
from domain.common.exceptions import (
    AuthorizationDeniedException,
    BusinessException,
    DomainValidationException,
    GatewayError,
    InsufficientFundsException,
    IntegrityViolation,
    LockAcquisitionTimeout,
    LockLostError,
    NotFoundException,
    OrderNotRefundableException,
    WebhookRetryableError,
    WebhookSignatureError,
)


class UnauthorizedException(BusinessException):
    """未授权异常"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
        )


class TokenExpiredException(BusinessException):
    """Token过期异常"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_EXPIRED,
            message="Token expired",
            error_type="TokenExpired",
        )


# 按异常类型映射HTTP状态码，先匹配的优先（子类放在父类前面）
EXCEPTION_STATUS_MAP = (
    (WebhookSignatureError, http_status.HTTP_400_BAD_REQUEST),
    (WebhookRetryableError, http_status.HTTP_503_SERVICE_UNAVAILABLE),
    (LockAcquisitionTimeout, http_status.HTTP_503_SERVICE_UNAVAILABLE),
    (LockLostError, http_status.HTTP_503_SERVICE_UNAVAILABLE),
    (NotFoundException, http_status.HTTP_404_NOT_FOUND),
    (AuthorizationDeniedException, http_status.HTTP_403_FORBIDDEN),
    (InsufficientFundsException, http_status.HTTP_409_CONFLICT),
    (OrderNotRefundableException, http_status.HTTP_409_CONFLICT),
    (DomainValidationException, http_status.HTTP_422_UNPROCESSABLE_ENTITY),
    (GatewayError, http_status.HTTP_502_BAD_GATEWAY),
    (IntegrityViolation, http_status.HTTP_500_INTERNAL_SERVER_ERROR),
    (UnauthorizedException, http_status.HTTP_401_UNAUTHORIZED),
    (TokenExpiredException, http_status.HTTP_401_UNAUTHORIZED),
)


def business_exception_status(exc: BusinessException) -> int:
    """根据异常类型映射HTTP状态码（默认400）。"""
    for exc_type, status_code in EXCEPTION_STATUS_MAP:
        if isinstance(exc, exc_type):
            return status_code
    return http_status.HTTP_400_BAD_REQUEST


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常"""
        request_id = _request_id(request)
        status_code = business_exception_status(exc)
        if isinstance(exc, IntegrityViolation):
            logger.error(
                "integrity_violation",
                request_id=request_id,
                error_type=exc.error_type,
                details=exc.details,
            )
        response = error_response(
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
        )
        headers = None
        if status_code == http_status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        elif status_code == http_status.HTTP_503_SERVICE_UNAVAILABLE:
            headers = {"Retry-After": "30"}
        return JSONResponse(status_code=status_code, content=response.model_dump(mode='json'), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常"""
        errors = exc.errors()

        # 提取第一个错误的详细信息
        first_error = errors[0] if errors else {}
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])

        response = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Validation failed: {first_error.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": [
                {k: v for k, v in err.items() if k in ("loc", "msg", "type")} for err in errors
            ]},
            field=field,
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=response.model_dump(mode='json')
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """处理HTTP异常"""
        code_mapping = {
            401: BusinessCode.UNAUTHORIZED,
            403: BusinessCode.FORBIDDEN,
            404: BusinessCode.NOT_FOUND,
            500: BusinessCode.SYSTEM_ERROR,
            503: BusinessCode.SERVICE_UNAVAILABLE
        }
        code = code_mapping.get(exc.status_code, BusinessCode.SYSTEM_ERROR)

        response = error_response(
            code=code,
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=response.model_dump(mode='json'),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = _request_id(request)

        # 在开发环境可以返回详细错误信息
        details = None
        if app.debug:
            details = {
                "exception": str(exc),
                "traceback": traceback.format_exc()
            }

        response = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )

        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error=str(exc),
            exc_info=True,
        )

        return JSONResponse(
            status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=response.model_dump(mode='json')
        )
