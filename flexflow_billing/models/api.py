"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from flexflow_billing.models.apple_store import (
    NotificationAction,
    NotificationOutcome,
    SubscriptionInfo,
)

# ============================================================================
# Apple Subscription Models
# ============================================================================


class AppleReceiptVerifyRequest(BaseModel):
    """POST /v1/apple/receipts/verify request body."""

    receipt: str = Field(..., min_length=1, description="Base64 app receipt from the device")


class SubscriptionStatusResponse(BaseModel):
    """Current Apple subscription state."""

    is_active: bool
    expires_date: str | None = Field(None, description="ISO 8601 timestamp (UTC)")
    original_transaction_id: str | None = None
    product_id: str | None = None
    auto_renew_status: bool | None = None

    @classmethod
    def from_info(cls, info: SubscriptionInfo) -> "SubscriptionStatusResponse":
        """Build the response from the service's SubscriptionInfo."""
        return cls(
            is_active=info.is_active,
            expires_date=info.expires_date.isoformat() if info.expires_date else None,
            original_transaction_id=info.original_transaction_id,
            product_id=info.product_id,
            auto_renew_status=info.auto_renew_status,
        )


class AppleNotificationRequest(BaseModel):
    """
    POST /v1/apple/notifications request body.

    App Store Server Notifications V2 deliver {"signedPayload": "<JWS>"}.
    """

    model_config = ConfigDict(populate_by_name=True)

    signed_payload: str = Field(..., min_length=1, alias="signedPayload")


class AppleNotificationResponse(BaseModel):
    """POST /v1/apple/notifications response."""

    status: Literal["received"] = "received"
    action: NotificationAction
    notification_type: str | None = None
    subtype: str | None = None
    original_transaction_id: str | None = None

    @classmethod
    def from_outcome(
        cls,
        outcome: NotificationOutcome,
        notification_type: str | None,
        subtype: str | None,
    ) -> "AppleNotificationResponse":
        """Build the response from a classified notification."""
        return cls(
            action=outcome.action,
            notification_type=notification_type,
            subtype=subtype,
            original_transaction_id=outcome.original_transaction_id,
        )


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy"]
    apple_store: Literal["configured", "not_configured"]
    timestamp: str
