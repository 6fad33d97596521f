"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。

Taxonomy used by the payment core:

- NotFoundException: a referenced entity does not exist locally.
- AuthorizationDeniedException: the actor may not perform the action.
- InsufficientFundsException: live gateway balance below the requested payout.
- GatewayError: the external processor failed or answered unexpectedly.
- IntegrityViolation: an invariant the core relies on was broken. Always
  logged at error severity by whoever catches it.
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


# ---------------------------------------------------------------- NotFound


class NotFoundException(BusinessException):
    def __init__(self, message: str, *, code: int = BusinessCode.NOT_FOUND,
                 error_type: str = "NotFound", details: Optional[dict] = None):
        super().__init__(code=code, message=message, error_type=error_type, details=details)


class UserNotFoundException(NotFoundException):
    def __init__(self, user_id: Optional[str] = None):
        details = {"user_id": user_id} if user_id else None
        super().__init__(
            "User not found",
            code=BusinessCode.USER_NOT_FOUND,
            error_type="UserNotFound",
            details=details,
        )


class OrderNotFoundException(NotFoundException):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(
            f"Order not found: {order_id}",
            code=PaymentCode.ORDER_NOT_FOUND,
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class ProductNotFoundException(NotFoundException):
    def __init__(self, product_id: str):
        super().__init__(
            f"Product not found: {product_id}",
            code=PaymentCode.PRODUCT_NOT_FOUND,
            error_type="ProductNotFound",
            details={"product_id": product_id},
        )


class SellerNotConnectedException(NotFoundException):
    """Seller (or any payee) has no gateway sub-account to route funds to."""

    def __init__(self, user_id: str):
        super().__init__(
            "Seller not found or not connected to the payment gateway",
            code=PaymentCode.SELLER_NOT_CONNECTED,
            error_type="SellerNotConnected",
            details={"user_id": user_id},
        )


class PaymentIntentNotFoundException(NotFoundException):
    def __init__(self, order_id: str):
        super().__init__(
            "Payment intent not found for order",
            code=PaymentCode.PAYMENT_INTENT_NOT_FOUND,
            error_type="PaymentIntentNotFound",
            details={"order_id": order_id},
        )


class PayoutNotFoundException(NotFoundException):
    def __init__(self, payout_id: str):
        super().__init__(
            f"Payout not found: {payout_id}",
            code=PaymentCode.PAYOUT_NOT_FOUND,
            error_type="PayoutNotFound",
            details={"payout_id": payout_id},
        )


# ---------------------------------------------------------------- AuthorizationDenied


class AuthorizationDeniedException(BusinessException):
    def __init__(self, message: str, *, code: int = BusinessCode.FORBIDDEN,
                 error_type: str = "AuthorizationDenied", details: Optional[dict] = None):
        super().__init__(code=code, message=message, error_type=error_type, details=details)


class NotOrderOwnerException(AuthorizationDeniedException):
    def __init__(self, order_id: str):
        super().__init__(
            "Only the buyer may request a refund for this order",
            code=PaymentCode.NOT_ORDER_OWNER,
            error_type="NotOrderOwner",
            details={"order_id": order_id},
        )


class RefundWindowExpiredException(AuthorizationDeniedException):
    def __init__(self, order_id: str, window_days: int):
        super().__init__(
            f"Refund can be made only within {window_days} days of purchase",
            code=PaymentCode.REFUND_WINDOW_EXPIRED,
            error_type="RefundWindowExpired",
            details={"order_id": order_id, "window_days": window_days},
        )


# ---------------------------------------------------------------- Business rules


class InsufficientFundsException(BusinessException):
    def __init__(self, requested: int, available: int):
        super().__init__(
            code=PaymentCode.INSUFFICIENT_FUNDS,
            message=f"Insufficient funds: requested {requested}, available {available}",
            error_type="InsufficientFunds",
            details={"requested": requested, "available": available},
        )


class OrderNotRefundableException(BusinessException):
    def __init__(self, order_id: str, status: str):
        super().__init__(
            code=PaymentCode.ORDER_NOT_REFUNDABLE,
            message=f"Order in status {status} cannot be refunded",
            error_type="OrderNotRefundable",
            details={"order_id": order_id, "status": status},
        )


# ---------------------------------------------------------------- Gateway


class GatewayError(BusinessException):
    """The external payment processor failed or returned an unexpected shape."""

    def __init__(self, message: str, *, code: int = PaymentCode.PROVIDER_ERROR,
                 error_type: str = "GatewayError", details: Optional[dict] = None):
        super().__init__(code=code, message=message, error_type=error_type, details=details)


# ---------------------------------------------------------------- Integrity


class IntegrityViolation(BusinessException):
    """An invariant of the ledger was broken (bug or upstream contract break)."""

    def __init__(self, message: str, *, code: int = BusinessCode.INTEGRITY_ERROR,
                 error_type: str = "IntegrityViolation", details: Optional[dict] = None):
        super().__init__(code=code, message=message, error_type=error_type, details=details)


class IllegalStateTransition(IntegrityViolation):
    def __init__(self, entity: str, entity_id: str, current: str, target: str):
        super().__init__(
            f"Illegal {entity} transition {current} -> {target}",
            code=PaymentCode.ILLEGAL_STATE_TRANSITION,
            error_type="IllegalStateTransition",
            details={"entity": entity, "id": entity_id, "current": current, "target": target},
        )


class MissingEventMetadata(IntegrityViolation):
    def __init__(self, event_id: str, event_type: str, key: str):
        super().__init__(
            f"Webhook event {event_id} ({event_type}) carries no metadata.{key}",
            code=PaymentCode.MISSING_EVENT_METADATA,
            error_type="MissingEventMetadata",
            details={"event_id": event_id, "event_type": event_type, "key": key},
        )


class ConcurrentUpdate(IntegrityViolation):
    def __init__(self, entity: str, entity_id: str, expected: str):
        super().__init__(
            f"{entity} {entity_id} changed concurrently (expected {expected})",
            code=PaymentCode.CONCURRENT_UPDATE,
            error_type="ConcurrentUpdate",
            details={"entity": entity, "id": entity_id, "expected": expected},
        )


class WebhookSignatureError(GatewayError):
    """Webhook payload or signature header failed verification."""

    def __init__(self, message: str = "Invalid webhook signature", *, details: Optional[dict] = None):
        super().__init__(
            message,
            code=PaymentCode.SIGNATURE_ERROR,
            error_type="WebhookSignatureError",
            details=details,
        )


class WebhookRetryableError(BusinessException):
    """Event could not be applied yet; the gateway should redeliver it."""

    def __init__(self, event_id: str, reason: str):
        super().__init__(
            code=PaymentCode.WEBHOOK_RETRY,
            message=f"Webhook event {event_id} deferred: {reason}",
            error_type="WebhookRetryable",
            details={"event_id": event_id, "reason": reason},
        )


class LockAcquisitionTimeout(BusinessException):
    """A per-key critical section stayed busy past the wait limit."""

    def __init__(self, key: str, waited_seconds: float):
        super().__init__(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message=f"Resource busy, try again later: {key}",
            error_type="LockTimeout",
            details={"key": key, "waited_seconds": waited_seconds},
        )


class LockLostError(BusinessException):
    """The lock expired while its holder was still inside the critical section."""

    def __init__(self, key: str):
        super().__init__(
            code=BusinessCode.SERVICE_UNAVAILABLE,
            message=f"Lock expired before the operation finished, try again: {key}",
            error_type="LockLost",
            details={"key": key},
        )
