"""
Apple App Store domain models - Immutable dataclasses for subscription verification.

NO DICTIONARIES - All data uses strongly typed models.

Decoded transaction and notification payloads are the App Store Server
Library's own models (JWSTransactionDecodedPayload,
ResponseBodyV2DecodedPayload). The types here are what this service
produces from them.
"""

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from appstoreserverlibrary.models.Environment import Environment


@dataclass(frozen=True)
class AppleStoreConfig:
    """Configuration for the App Store Server API and signed-data verifier."""

    private_key: str  # Private key (.p8 contents)
    key_id: str  # Key ID from App Store Connect
    issuer_id: str  # Issuer ID from App Store Connect
    bundle_id: str  # App bundle ID
    environment: str  # "production" or "sandbox"
    app_apple_id: str | None = None  # Numeric Apple ID of the app

    def __post_init__(self) -> None:
        """Validate configuration fields."""
        if not self.private_key:
            raise ValueError("App Store private_key is required")
        if not self.key_id:
            raise ValueError("App Store key_id is required")
        if not self.issuer_id:
            raise ValueError("App Store issuer_id is required")
        if not self.bundle_id:
            raise ValueError("App Store bundle_id is required")
        if self.environment.lower() not in ("production", "sandbox"):
            raise ValueError("Environment must be 'production' or 'sandbox'")
        if self.app_apple_id is not None and not self.app_apple_id.strip().isdigit():
            raise ValueError(f"App Apple ID must be numeric, got: {self.app_apple_id}")

    @property
    def store_environment(self) -> Environment:
        """Get the App Store Server Library environment."""
        if self.environment.lower() == "production":
            return Environment.PRODUCTION
        return Environment.SANDBOX

    @property
    def api_base_url(self) -> str:
        """Get the API base URL for the configured environment."""
        if self.environment.lower() == "production":
            return "https://api.storekit.itunes.apple.com"
        return "https://api.storekit-sandbox.itunes.apple.com"

    @property
    def apple_app_id(self) -> int | None:
        """Get the numeric app Apple ID, if configured."""
        if self.app_apple_id is None:
            return None
        return int(self.app_apple_id.strip())

    @property
    def signing_key(self) -> bytes:
        """
        Get the private key as PEM bytes.

        Environment variables rarely carry a multi-line PEM cleanly, so the
        key may be given as PEM text, PEM text with literal "\\n" escapes, or
        base64 of the PEM text.
        """
        key = self.private_key.strip()
        if "-----BEGIN" in key:
            return key.replace("\\n", "\n").encode("utf-8")

        try:
            return base64.b64decode(key, validate=True)
        except binascii.Error as exc:
            raise ValueError("App Store private_key is neither PEM nor base64") from exc


@dataclass(frozen=True)
class SubscriptionInfo:
    """Current subscription state derived from the latest App Store transaction.

    Output-only and recomputed on every query; persisting it is the caller's job.
    """

    is_active: bool
    expires_date: datetime | None = None  # UTC
    original_transaction_id: str | None = None
    product_id: str | None = None
    auto_renew_status: bool | None = None

    @classmethod
    def inactive(cls) -> "SubscriptionInfo":
        """Subscription state for a purchase with no transaction history."""
        return cls(is_active=False)


class NotificationAction(str, Enum):
    """What an App Store server notification means for the subscriber."""

    RENEWED = "renewed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NotificationOutcome:
    """Classified App Store server notification.

    user_id is never resolved here: mapping an original transaction to an
    application user belongs to the caller.
    """

    action: NotificationAction
    original_transaction_id: str | None = None
    user_id: str | None = None
