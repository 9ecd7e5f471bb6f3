"""
FastAPI Dependencies - Service lookup.

NO DICTIONARIES - All dependencies return typed objects.
"""

from fastapi import Request

from flexflow_billing.exceptions import ProviderNotConfiguredError
from flexflow_billing.services.apple_store import AppleStoreService

APPLE_PROVIDER = "apple_app_store"


def get_optional_apple_store_service(request: Request) -> AppleStoreService | None:
    """
    Get the App Store service built at startup, or None if unavailable.

    The service is created once by the application lifespan and stored on
    app.state; routes that can work without it use this dependency.
    """
    return getattr(request.app.state, "apple_store_service", None)


def get_apple_store_service(request: Request) -> AppleStoreService:
    """
    FastAPI dependency returning the App Store service.

    Usage:
        @router.get("/v1/apple/subscriptions/{original_transaction_id}")
        async def get_status(
            service: AppleStoreService = Depends(get_apple_store_service),
        ):
            ...

    Raises:
        ProviderNotConfiguredError: If Apple billing is not configured (503)
    """
    service = get_optional_apple_store_service(request)
    if service is None:
        raise ProviderNotConfiguredError(APPLE_PROVIDER)
    return service
