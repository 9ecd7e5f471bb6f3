"""
Status API routes - Health checks for FlexFlow Billing dependencies.

Public endpoints (no auth) for liveness probes and status page aggregation.
Rate limited to prevent abuse.
"""

import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from structlog import get_logger

from flexflow_billing.api.dependencies import get_optional_apple_store_service
from flexflow_billing.config import settings
from flexflow_billing.models.api import HealthResponse
from flexflow_billing.services.apple_store import AppleStoreService

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

# Timeout for health checks
CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

# Rate limiting: cache last result for 10 seconds
_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Status of a single provider."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str = "flexflow-billing"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


async def check_app_store(service: AppleStoreService | None) -> ProviderStatus:
    """Check App Store Server API reachability."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    # If not configured, report as operational (not used)
    if service is None:
        return ProviderStatus(
            status=StatusLevel.OPERATIONAL,
            latency_ms=0,
            last_check=timestamp,
            message="Not configured",
        )

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            # Unauthenticated request: 401/404 prove the endpoint is reachable
            response = await client.get(service.config.api_base_url)
            latency_ms = int((time.perf_counter() - start) * 1000)

            if response.status_code < 500:
                status = (
                    StatusLevel.DEGRADED
                    if latency_ms > DEGRADED_LATENCY_THRESHOLD
                    else StatusLevel.OPERATIONAL
                )
                return ProviderStatus(
                    status=status,
                    latency_ms=latency_ms,
                    last_check=timestamp,
                    message="High latency" if status == StatusLevel.DEGRADED else None,
                )

            return ProviderStatus(
                status=StatusLevel.DEGRADED,
                latency_ms=latency_ms,
                last_check=timestamp,
                message=f"Unexpected status: {response.status_code}",
            )
    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except Exception as e:
        logger.warning("app_store_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from provider statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/health", response_model=HealthResponse)
async def health(
    service: AppleStoreService | None = Depends(get_optional_apple_store_service),
) -> HealthResponse:
    """Liveness probe. Never calls Apple."""
    return HealthResponse(
        status="healthy",
        apple_store="configured" if service is not None else "not_configured",
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status(
    service: AppleStoreService | None = Depends(get_optional_apple_store_service),
) -> ServiceStatusResponse:
    """
    Get FlexFlow Billing service status.

    Public endpoint (no auth) for status page aggregation.

    Rate limited via 10-second cache to prevent abuse.
    """
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    providers = {
        "app_store": await check_app_store(service),
    }

    response = ServiceStatusResponse(
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )

    _status_cache[cache_key] = (now, response)

    return response
