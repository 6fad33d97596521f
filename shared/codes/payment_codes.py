"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Ledger / reconciliation (2xxxx, business range)
    ORDER_NOT_FOUND = 20100
    PRODUCT_NOT_FOUND = 20101
    SELLER_NOT_CONNECTED = 20102
    PAYMENT_INTENT_NOT_FOUND = 20103
    PAYOUT_NOT_FOUND = 20104
    ORDER_NOT_REFUNDABLE = 20105
    INSUFFICIENT_FUNDS = 20106
    REFUND_WINDOW_EXPIRED = 20107
    NOT_ORDER_OWNER = 20108

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    WEBHOOK_RETRY = 60005

    # Integrity (7xxxx)
    ILLEGAL_STATE_TRANSITION = 70000
    MISSING_EVENT_METADATA = 70001
    CONCURRENT_UPDATE = 70002


# Gateway → internal status mapping (refunds)
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        "pending": "pending",
        "requires_action": "pending",
        "succeeded": "succeeded",
        "failed": "failed",
        "canceled": "failed",
    },
}

# Gateway → internal status mapping (payouts)
PAYOUT_STATUS_TO_INTERNAL = {
    "stripe": {
        "pending": "pending",
        "in_transit": "pending",
        "paid": "succeeded",
        "failed": "failed",
        "canceled": "canceled",
    },
}
