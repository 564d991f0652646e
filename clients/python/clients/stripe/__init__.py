from .client import (
    CURRENCY,
    CheckoutSession,
    LineItem,
    MockPaymentClient,
    PaymentNotification,
    SessionStatus,
    StripePaymentClient,
    parse_notification,
)
from .exceptions import (
    NotificationSignatureError,
    PaymentClientError,
    PaymentSessionError,
)

__all__ = [
    "CURRENCY",
    "CheckoutSession",
    "LineItem",
    "MockPaymentClient",
    "PaymentNotification",
    "SessionStatus",
    "StripePaymentClient",
    "parse_notification",
    "NotificationSignatureError",
    "PaymentClientError",
    "PaymentSessionError",
]
