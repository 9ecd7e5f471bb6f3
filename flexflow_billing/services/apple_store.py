"""
Apple App Store Service Implementation.

NO DICTIONARIES - All data uses strongly typed models.

Thin façade over Apple's App Store Server Library:
- SignedDataVerifier validates JWS payloads against the Apple root CAs,
  the configured bundle ID and environment
- AsyncAppStoreServerAPIClient reads subscription transaction history
https://developer.apple.com/documentation/appstoreserverapi

The service holds no mutable state. Every call recomputes from Apple's
data; persisting the result is the caller's job.
"""

import time
from datetime import UTC, datetime
from enum import Enum

from appstoreserverlibrary.api_client import (
    APIException,
    AsyncAppStoreServerAPIClient,
    GetTransactionHistoryVersion,
)
from appstoreserverlibrary.models.AutoRenewStatus import AutoRenewStatus
from appstoreserverlibrary.models.Environment import Environment
from appstoreserverlibrary.models.JWSTransactionDecodedPayload import (
    JWSTransactionDecodedPayload,
)
from appstoreserverlibrary.models.NotificationTypeV2 import NotificationTypeV2
from appstoreserverlibrary.models.ResponseBodyV2DecodedPayload import (
    ResponseBodyV2DecodedPayload,
)
from appstoreserverlibrary.models.Subtype import Subtype
from appstoreserverlibrary.models.TransactionHistoryRequest import (
    Order,
    ProductType,
    TransactionHistoryRequest,
)
from appstoreserverlibrary.receipt_utility import ReceiptUtility
from appstoreserverlibrary.signed_data_verifier import SignedDataVerifier, VerificationException
from starlette.concurrency import run_in_threadpool
from structlog import get_logger

from flexflow_billing.config import Settings
from flexflow_billing.exceptions import (
    InvalidReceiptError,
    SubscriptionStatusError,
    WebhookVerificationError,
)
from flexflow_billing.models.apple_store import (
    AppleStoreConfig,
    NotificationAction,
    NotificationOutcome,
    SubscriptionInfo,
)
from flexflow_billing.observability.metrics import metrics
from flexflow_billing.observability.tracing import get_tracer
from flexflow_billing.services.apple_root_certificates import load_apple_root_certificates

logger = get_logger(__name__)
tracer = get_tracer(__name__)

# Actions that depend on notificationType alone
_ACTION_BY_NOTIFICATION_TYPE: dict[str, NotificationAction] = {
    NotificationTypeV2.DID_RENEW.value: NotificationAction.RENEWED,
    NotificationTypeV2.EXPIRED.value: NotificationAction.EXPIRED,
    NotificationTypeV2.REFUND.value: NotificationAction.REFUNDED,
}


def _enum_value(value: Enum | str | None) -> str | None:
    """Plain string for a library enum member or raw string."""
    if isinstance(value, Enum):
        return str(value.value)
    return value


def _parse_expires_date(value: int | str | None) -> datetime | None:
    """
    Parse expiresDate given as epoch milliseconds or an ISO-8601 string.

    Zero and empty values mean no expiry.
    """
    if not value:
        return None
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def resolve_subscription_info(
    transaction: JWSTransactionDecodedPayload,
    now: datetime,
    auto_renew_status: bool | None = True,
) -> SubscriptionInfo:
    """
    Reduce the latest decoded transaction to the current subscription state.

    Active means expiresDate is strictly after ``now``; there is no grace
    period. A transaction without expiresDate is never active.

    Args:
        transaction: Latest decoded transaction
        now: Timezone-aware comparison instant
        auto_renew_status: Value reported as-is (True unless derived from renewal info)

    Returns:
        Subscription state
    """
    expires_date = _parse_expires_date(transaction.expiresDate)
    is_active = expires_date is not None and expires_date > now

    return SubscriptionInfo(
        is_active=is_active,
        expires_date=expires_date,
        original_transaction_id=transaction.originalTransactionId,
        product_id=transaction.productId,
        auto_renew_status=auto_renew_status,
    )


def classify_notification(
    notification_type: NotificationTypeV2 | str | None,
    subtype: Subtype | str | None,
) -> NotificationAction:
    """
    Map an App Store notification type/subtype onto a subscriber action.

    DID_CHANGE_RENEWAL_STATUS only counts as a cancellation when the subtype
    is AUTO_RENEW_DISABLED; re-enabling auto-renew is UNKNOWN.
    """
    notification_type = _enum_value(notification_type)
    subtype = _enum_value(subtype)

    if notification_type in _ACTION_BY_NOTIFICATION_TYPE:
        return _ACTION_BY_NOTIFICATION_TYPE[notification_type]

    if (
        notification_type == NotificationTypeV2.DID_CHANGE_RENEWAL_STATUS.value
        and subtype == Subtype.AUTO_RENEW_DISABLED.value
    ):
        return NotificationAction.CANCELLED

    return NotificationAction.UNKNOWN


def notification_kind(
    notification: ResponseBodyV2DecodedPayload,
) -> tuple[str | None, str | None]:
    """
    Get (notificationType, subtype) as plain strings.

    Falls back to the raw values so types newer than the installed
    library are still reported.
    """
    notification_type = (
        _enum_value(notification.notificationType) or notification.rawNotificationType
    )
    subtype = _enum_value(notification.subtype) or notification.rawSubtype
    return notification_type, subtype


class AppleStoreService:
    """
    Apple App Store subscription verification.

    Handles receipt verification, subscription status lookup, and
    App Store Server Notification V2 decoding and classification.
    """

    def __init__(
        self,
        config: AppleStoreConfig,
        enable_online_checks: bool = True,
        resolve_auto_renew_status: bool = False,
        api_client: AsyncAppStoreServerAPIClient | None = None,
        verifier: SignedDataVerifier | None = None,
        receipt_utility: ReceiptUtility | None = None,
    ) -> None:
        """
        Initialize the App Store service.

        Args:
            config: App Store Server API credentials and app identity
            enable_online_checks: Check certificate revocation while verifying
            resolve_auto_renew_status: Read autoRenewStatus from renewal info
                instead of always reporting True
            api_client: Prebuilt API client (built from config when omitted)
            verifier: Prebuilt signed-data verifier (built from config when omitted)
            receipt_utility: Prebuilt receipt utility

        Raises:
            ValueError: If the key material, app id or root certificates are invalid
        """
        self.config = config
        self.resolve_auto_renew_status = resolve_auto_renew_status

        if verifier is None and config.store_environment == Environment.PRODUCTION:
            if config.apple_app_id is None:
                raise ValueError("App Apple ID is required to verify production payloads")

        self._client = api_client or AsyncAppStoreServerAPIClient(
            config.signing_key,
            config.key_id,
            config.issuer_id,
            config.bundle_id,
            config.store_environment,
        )
        self._verifier = verifier or SignedDataVerifier(
            load_apple_root_certificates(),
            enable_online_checks,
            config.store_environment,
            config.bundle_id,
            config.apple_app_id,
        )
        self._receipt_utility = receipt_utility or ReceiptUtility()

        logger.info(
            "apple_store_service_initialized",
            bundle_id=config.bundle_id,
            environment=config.environment,
            online_checks=enable_online_checks,
            resolve_auto_renew_status=resolve_auto_renew_status,
        )

    async def aclose(self) -> None:
        """Release the API client's HTTP connections."""
        await self._client.async_close()

    async def _decode_transaction(self, signed_transaction: str) -> JWSTransactionDecodedPayload:
        """Verify and decode a signed transaction (JWS) off the event loop."""
        return await run_in_threadpool(
            self._verifier.verify_and_decode_signed_transaction, signed_transaction
        )

    async def _fetch_latest_transactions(self, original_transaction_id: str) -> list[str]:
        """
        Fetch the first page of auto-renewable transaction history, newest first.

        Later pages are never requested: the newest transaction decides the
        current status.
        """
        request = TransactionHistoryRequest(
            sort=Order.DESCENDING,
            revoked=False,
            productTypes=[ProductType.AUTO_RENEWABLE],
        )
        response = await self._client.get_transaction_history(
            original_transaction_id,
            None,
            request,
            GetTransactionHistoryVersion.V2,
        )
        return response.signedTransactions or []

    async def _fetch_auto_renew_status(self, original_transaction_id: str) -> bool | None:
        """Read autoRenewStatus from the subscription's latest renewal info."""
        response = await self._client.get_all_subscription_statuses(original_transaction_id)

        for group in response.data or []:
            for item in group.lastTransactions or []:
                if item.originalTransactionId != original_transaction_id:
                    continue
                if not item.signedRenewalInfo:
                    continue
                renewal = await run_in_threadpool(
                    self._verifier.verify_and_decode_renewal_info, item.signedRenewalInfo
                )
                return renewal.autoRenewStatus == AutoRenewStatus.ON

        return None

    async def get_subscription_status(self, original_transaction_id: str) -> SubscriptionInfo:
        """
        Get the current subscription state for an original transaction ID.

        Args:
            original_transaction_id: Original transaction ID from a purchase or restore

        Returns:
            Subscription state; inactive with no other fields when there is no history

        Raises:
            SubscriptionStatusError: If Apple cannot be reached or the
                transaction cannot be verified
        """
        start = time.perf_counter()
        logger.info(
            "getting_apple_subscription_status",
            original_transaction_id=original_transaction_id,
        )

        with tracer.start_as_current_span("apple.get_subscription_status"):
            try:
                signed_transactions = await self._fetch_latest_transactions(
                    original_transaction_id
                )

                if not signed_transactions:
                    info = SubscriptionInfo.inactive()
                else:
                    latest = await self._decode_transaction(signed_transactions[0])

                    auto_renew_status: bool | None = True
                    if self.resolve_auto_renew_status:
                        auto_renew_status = await self._fetch_auto_renew_status(
                            latest.originalTransactionId or original_transaction_id
                        )

                    info = resolve_subscription_info(
                        latest,
                        now=datetime.now(UTC),
                        auto_renew_status=auto_renew_status,
                    )

            except APIException as exc:
                logger.error(
                    "apple_subscription_status_api_error",
                    original_transaction_id=original_transaction_id,
                    http_status=exc.http_status_code,
                    api_error=exc.raw_api_error,
                    error=exc.error_message,
                )
                self._record("subscription_status", "api_error", start)
                raise SubscriptionStatusError() from exc
            except VerificationException as exc:
                logger.error(
                    "apple_subscription_status_verification_failed",
                    original_transaction_id=original_transaction_id,
                    verification_status=exc.status.name,
                )
                self._record("subscription_status", "verification_failed", start)
                raise SubscriptionStatusError() from exc
            except Exception as exc:
                logger.exception(
                    "apple_subscription_status_failed",
                    original_transaction_id=original_transaction_id,
                    error_type=type(exc).__name__,
                )
                self._record("subscription_status", "error", start)
                raise SubscriptionStatusError() from exc

        logger.info(
            "apple_subscription_status_resolved",
            original_transaction_id=original_transaction_id,
            is_active=info.is_active,
            product_id=info.product_id,
            expires_date=info.expires_date.isoformat() if info.expires_date else None,
        )
        self._record("subscription_status", "active" if info.is_active else "inactive", start)

        return info

    async def verify_receipt(self, receipt: str) -> SubscriptionInfo:
        """
        Verify an app receipt and return the subscription it belongs to.

        Args:
            receipt: Base64 app receipt from the device

        Returns:
            Subscription state for the receipt's transaction

        Raises:
            InvalidReceiptError: If the receipt is unreadable or its
                subscription status cannot be resolved
        """
        start = time.perf_counter()
        logger.info("verifying_apple_receipt")

        try:
            transaction_id = self._receipt_utility.extract_transaction_id_from_app_receipt(
                receipt
            )
            if not transaction_id:
                raise ValueError("Unable to extract transaction ID from receipt")

            info = await self.get_subscription_status(transaction_id)

        except Exception as exc:
            logger.warning(
                "apple_receipt_verification_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            self._record("receipt", "invalid", start)
            raise InvalidReceiptError() from exc

        self._record("receipt", "verified", start)
        return info

    async def verify_and_decode_notification(
        self, signed_payload: str
    ) -> ResponseBodyV2DecodedPayload:
        """
        Verify and decode an App Store Server Notification V2.

        Args:
            signed_payload: The notification's signedPayload (JWS)

        Returns:
            Decoded notification envelope

        Raises:
            WebhookVerificationError: If the payload fails verification
        """
        start = time.perf_counter()

        try:
            notification = await run_in_threadpool(
                self._verifier.verify_and_decode_notification, signed_payload
            )
        except VerificationException as exc:
            logger.warning(
                "apple_notification_verification_failed",
                verification_status=exc.status.name,
            )
            self._record("notification", "invalid", start)
            raise WebhookVerificationError() from exc
        except Exception as exc:
            logger.exception(
                "apple_notification_decode_failed",
                error_type=type(exc).__name__,
            )
            self._record("notification", "invalid", start)
            raise WebhookVerificationError() from exc

        notification_type, subtype = notification_kind(notification)
        logger.info(
            "apple_notification_verified",
            notification_type=notification_type,
            subtype=subtype,
            notification_uuid=notification.notificationUUID,
        )
        self._record("notification", "verified", start)

        return notification

    async def handle_notification(
        self, notification: ResponseBodyV2DecodedPayload
    ) -> NotificationOutcome:
        """
        Classify a decoded notification into a subscriber action.

        Args:
            notification: Output of verify_and_decode_notification()

        Returns:
            Action plus the original transaction ID when the notification carries one

        Raises:
            WebhookVerificationError: If the embedded transaction fails verification
        """
        original_transaction_id: str | None = None
        data = notification.data

        if data is not None and data.signedTransactionInfo:
            try:
                transaction = await self._decode_transaction(data.signedTransactionInfo)
            except VerificationException as exc:
                logger.warning(
                    "apple_notification_transaction_verification_failed",
                    verification_status=exc.status.name,
                )
                raise WebhookVerificationError() from exc
            except Exception as exc:
                logger.exception(
                    "apple_notification_transaction_decode_failed",
                    error_type=type(exc).__name__,
                )
                raise WebhookVerificationError() from exc
            original_transaction_id = transaction.originalTransactionId

        notification_type, subtype = notification_kind(notification)
        action = classify_notification(notification_type, subtype)

        logger.info(
            "apple_notification_classified",
            notification_type=notification_type,
            subtype=subtype,
            action=action.value,
            original_transaction_id=original_transaction_id,
        )
        metrics.record_apple_notification(action.value)

        return NotificationOutcome(
            action=action,
            original_transaction_id=original_transaction_id,
        )

    @staticmethod
    def _record(operation: str, outcome: str, start: float) -> None:
        metrics.record_apple_operation(operation, outcome, time.perf_counter() - start)


def create_apple_store_service(settings: Settings | None = None) -> AppleStoreService | None:
    """
    Build the App Store service from environment configuration.

    Returns None when Apple billing is not configured (a warning) or cannot
    be initialized (an error), so the application runs without it.

    Args:
        settings: Settings to read; the environment is re-read when omitted

    Returns:
        Configured service, or None if unavailable
    """
    settings = settings or Settings()

    missing = settings.missing_apple_credentials
    if missing:
        logger.warning(
            "apple_store_not_configured",
            missing=missing,
            detail="Apple subscription features are disabled",
        )
        return None

    try:
        config = AppleStoreConfig(
            private_key=settings.apple_private_key,
            key_id=settings.apple_key_id,
            issuer_id=settings.apple_issuer_id,
            bundle_id=settings.apple_bundle_id,
            environment=settings.apple_environment or "sandbox",
            app_apple_id=settings.apple_app_id or None,
        )
        return AppleStoreService(
            config,
            enable_online_checks=settings.apple_enable_online_checks,
            resolve_auto_renew_status=settings.apple_resolve_auto_renew_status,
        )
    except Exception as exc:
        logger.error(
            "apple_store_initialization_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return None
