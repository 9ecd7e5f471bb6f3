"""
Apple App Store routes - receipt verification, subscription status, and
App Store Server Notifications V2.

NO DICTIONARIES - All requests/responses use Pydantic models.

These routes only verify and classify. Mapping an original transaction ID
to a FlexFlow user and persisting entitlement changes stay with the caller.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from structlog import get_logger

from flexflow_billing.api.dependencies import get_apple_store_service
from flexflow_billing.exceptions import (
    InvalidReceiptError,
    SubscriptionStatusError,
    WebhookVerificationError,
)
from flexflow_billing.models.api import (
    AppleNotificationRequest,
    AppleNotificationResponse,
    AppleReceiptVerifyRequest,
    SubscriptionStatusResponse,
)
from flexflow_billing.services.apple_store import AppleStoreService, notification_kind

logger = get_logger(__name__)
router = APIRouter(tags=["apple"])


@router.post("/v1/apple/receipts/verify", response_model=SubscriptionStatusResponse)
async def verify_receipt(
    request: AppleReceiptVerifyRequest,
    service: AppleStoreService = Depends(get_apple_store_service),
) -> SubscriptionStatusResponse:
    """
    Verify an app receipt and return the subscription it belongs to.

    Returns 400 when the receipt cannot be verified.
    """
    try:
        info = await service.verify_receipt(request.receipt)
    except InvalidReceiptError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc

    return SubscriptionStatusResponse.from_info(info)


@router.get(
    "/v1/apple/subscriptions/{original_transaction_id}",
    response_model=SubscriptionStatusResponse,
)
async def get_subscription_status(
    original_transaction_id: str,
    service: AppleStoreService = Depends(get_apple_store_service),
) -> SubscriptionStatusResponse:
    """
    Get the current subscription state for an original transaction ID.

    Returns 502 when Apple cannot be reached or its data fails verification.
    """
    try:
        info = await service.get_subscription_status(original_transaction_id)
    except SubscriptionStatusError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc

    return SubscriptionStatusResponse.from_info(info)


@router.post("/v1/apple/notifications", response_model=AppleNotificationResponse)
async def apple_notification_webhook(
    request: AppleNotificationRequest,
    service: AppleStoreService = Depends(get_apple_store_service),
) -> AppleNotificationResponse:
    """
    Handle App Store Server Notifications V2.

    Apple retries any non-2xx response, so only payloads that fail
    verification are rejected (400). Every verified notification is
    acknowledged, including ones classified as unknown.
    """
    try:
        notification = await service.verify_and_decode_notification(request.signed_payload)
        outcome = await service.handle_notification(notification)
    except WebhookVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc

    logger.info(
        "apple_notification_received",
        notification_uuid=notification.notificationUUID,
        action=outcome.action.value,
        original_transaction_id=outcome.original_transaction_id,
    )

    notification_type, subtype = notification_kind(notification)
    return AppleNotificationResponse.from_outcome(
        outcome,
        notification_type=notification_type,
        subtype=subtype,
    )
