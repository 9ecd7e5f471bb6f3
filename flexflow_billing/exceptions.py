"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

The Apple billing errors are intentionally coarse: the message a caller sees
never carries the underlying verifier or network failure. That cause is
logged where the error is raised and chained via ``__cause__``.
"""


class BillingError(Exception):
    """Base exception for all billing errors."""

    pass


class PaymentProviderError(BillingError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SubscriptionStatusError(PaymentProviderError):
    """Raised when subscription history cannot be fetched or decoded."""

    def __init__(self) -> None:
        super().__init__("Failed to get subscription status")


class InvalidReceiptError(PaymentProviderError):
    """Raised when an app receipt cannot be verified."""

    def __init__(self) -> None:
        super().__init__("Invalid receipt")


class WebhookVerificationError(BillingError):
    """Raised when a signed server notification fails verification."""

    def __init__(self, message: str = "Invalid notification payload") -> None:
        self.message = message
        super().__init__(message)


class ProviderNotConfiguredError(BillingError):
    """Raised when a payment provider is required but not configured."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Payment provider not configured: {provider}")
