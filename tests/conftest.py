"""
Pytest Configuration and Centralized Fixtures.

Provides reusable mocks and fixtures for testing:
- App Store configuration and a real ES256 signing key
- App Store Server Library client/verifier doubles
- AppleStoreService wired to those doubles
- Decoded transaction and history response builders
- API test client with the service injected on app.state
"""

import os
from collections.abc import Callable, Iterator
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from appstoreserverlibrary.models.HistoryResponse import HistoryResponse
from appstoreserverlibrary.models.JWSTransactionDecodedPayload import (
    JWSTransactionDecodedPayload,
)
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from fastapi.testclient import TestClient

# Set environment variables BEFORE importing application modules
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from flexflow_billing.models.apple_store import AppleStoreConfig
from flexflow_billing.services.apple_store import AppleStoreService

APPLE_ENV_VARS = (
    "APPLE_PRIVATE_KEY",
    "APPLE_KEY_ID",
    "APPLE_ISSUER_ID",
    "APPLE_BUNDLE_ID",
    "APPLE_ENVIRONMENT",
    "APPLE_APP_ID",
    "APPLE_ENABLE_ONLINE_CHECKS",
    "APPLE_RESOLVE_AUTO_RENEW_STATUS",
)

TEST_BUNDLE_ID = "com.flexflow.app"
TEST_PRODUCT_ID = "premium.monthly"
TEST_ORIGINAL_TRANSACTION_ID = "1000"


def to_millis(value: datetime) -> int:
    """Epoch milliseconds, as Apple encodes dates."""
    return int(value.timestamp() * 1000)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def signing_key_pem() -> str:
    """A real P-256 private key in PKCS#8 PEM, like an App Store Connect .p8 file."""
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()).decode("ascii")


@pytest.fixture
def apple_config(signing_key_pem: str) -> AppleStoreConfig:
    """Sandbox App Store configuration."""
    return AppleStoreConfig(
        private_key=signing_key_pem,
        key_id="ABC123DEFG",
        issuer_id="57246542-96fe-1a63-e053-0824d011072a",
        bundle_id=TEST_BUNDLE_ID,
        environment="sandbox",
    )


@pytest.fixture
def apple_env(monkeypatch: pytest.MonkeyPatch, signing_key_pem: str) -> pytest.MonkeyPatch:
    """Complete Apple environment variables (sandbox, no online checks)."""
    for name in APPLE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APPLE_PRIVATE_KEY", signing_key_pem)
    monkeypatch.setenv("APPLE_KEY_ID", "ABC123DEFG")
    monkeypatch.setenv("APPLE_ISSUER_ID", "57246542-96fe-1a63-e053-0824d011072a")
    monkeypatch.setenv("APPLE_BUNDLE_ID", TEST_BUNDLE_ID)
    monkeypatch.setenv("APPLE_ENVIRONMENT", "sandbox")
    monkeypatch.setenv("APPLE_ENABLE_ONLINE_CHECKS", "false")
    return monkeypatch


# ============================================================================
# App Store Server Library Doubles
# ============================================================================


@pytest.fixture
def mock_api_client() -> AsyncMock:
    """AsyncAppStoreServerAPIClient double with an empty history by default."""
    client = AsyncMock()
    client.get_transaction_history = AsyncMock(
        return_value=HistoryResponse(signedTransactions=[], hasMore=False)
    )
    client.get_all_subscription_statuses = AsyncMock()
    client.async_close = AsyncMock()
    return client


@pytest.fixture
def mock_verifier() -> MagicMock:
    """SignedDataVerifier double."""
    return MagicMock()


@pytest.fixture
def mock_receipt_utility() -> MagicMock:
    """ReceiptUtility double."""
    utility = MagicMock()
    utility.extract_transaction_id_from_app_receipt = MagicMock(
        return_value=TEST_ORIGINAL_TRANSACTION_ID
    )
    return utility


@pytest.fixture
def apple_service(
    apple_config: AppleStoreConfig,
    mock_api_client: AsyncMock,
    mock_verifier: MagicMock,
    mock_receipt_utility: MagicMock,
) -> AppleStoreService:
    """AppleStoreService wired to library doubles."""
    return AppleStoreService(
        apple_config,
        api_client=mock_api_client,
        verifier=mock_verifier,
        receipt_utility=mock_receipt_utility,
    )


# ============================================================================
# Payload Builders
# ============================================================================


@pytest.fixture
def make_transaction() -> Callable[..., JWSTransactionDecodedPayload]:
    """Factory for decoded transactions."""

    def _make(
        original_transaction_id: str = TEST_ORIGINAL_TRANSACTION_ID,
        product_id: str = TEST_PRODUCT_ID,
        expires_date: datetime | None = None,
    ) -> JWSTransactionDecodedPayload:
        return JWSTransactionDecodedPayload(
            originalTransactionId=original_transaction_id,
            transactionId="2000",
            productId=product_id,
            bundleId=TEST_BUNDLE_ID,
            expiresDate=to_millis(expires_date) if expires_date else None,
        )

    return _make


@pytest.fixture
def history_with(
    mock_api_client: AsyncMock,
) -> Callable[..., None]:
    """Make the client return a single history page with the given JWS strings."""

    def _set(*signed_transactions: str, has_more: bool = False) -> None:
        mock_api_client.get_transaction_history.return_value = HistoryResponse(
            signedTransactions=list(signed_transactions),
            hasMore=has_more,
            revision="rev-1" if has_more else None,
        )

    return _set


# ============================================================================
# API Client Fixtures
# ============================================================================


@pytest.fixture
def api_client() -> Iterator[Callable[[AppleStoreService | None], TestClient]]:
    """
    Test client factory with the given service on app.state.

    The lifespan is not run, so no real App Store service is built.
    """
    from flexflow_billing.api import status_routes
    from flexflow_billing.main import app

    def _client(service: AppleStoreService | None) -> TestClient:
        app.state.apple_store_service = service
        return TestClient(app)

    yield _client

    app.state.apple_store_service = None
    status_routes._status_cache.clear()
