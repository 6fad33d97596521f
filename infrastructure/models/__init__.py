"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .product import ProductModel
from .order import OrderModel, RefundModel
from .payout import PayoutModel, WalletModel
from .webhook_event import WebhookEventModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "ProductModel",
    "OrderModel",
    "RefundModel",
    "PayoutModel",
    "WalletModel",
    "WebhookEventModel",
]
