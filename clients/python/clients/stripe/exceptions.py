class PaymentClientError(Exception):
    """Base exception for the payment client."""
    pass


class PaymentSessionError(PaymentClientError):
    """Raised when the provider cannot create or look up a checkout session."""
    pass


class NotificationSignatureError(PaymentClientError):
    """Raised when a webhook payload cannot be authenticated."""
    pass
