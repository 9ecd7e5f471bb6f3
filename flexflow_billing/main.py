"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.routing import Match

from flexflow_billing.api.apple_routes import router as apple_router
from flexflow_billing.api.status_routes import router as status_router
from flexflow_billing.config import settings
from flexflow_billing.exceptions import ProviderNotConfiguredError
from flexflow_billing.observability import get_logger, log_context, metrics, setup_logging
from flexflow_billing.observability.tracing import instrument_fastapi, setup_tracing
from flexflow_billing.services.apple_store import create_apple_store_service

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Builds the App Store service once; it stays None when Apple billing is
    not configured and the Apple routes answer 503.
    """
    # Startup
    apple_store_service = create_apple_store_service(settings)
    app.state.apple_store_service = apple_store_service

    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        apple_store_configured=apple_store_service is not None,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if apple_store_service is not None:
        await apple_store_service.aclose()
        logger.info("apple_store_client_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


# Add validation error logging handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Log detailed validation errors for debugging."""
    # Drop "input" and "ctx": request bodies carry receipts and signed payloads
    sanitized_errors = [
        {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        for error in exc.errors()
    ]

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": sanitized_errors},
    )


@app.exception_handler(ProviderNotConfiguredError)
async def provider_not_configured_handler(
    request: Request, exc: ProviderNotConfiguredError
) -> JSONResponse:
    """Answer 503 for routes whose payment provider is not configured."""
    logger.warning(
        "payment_provider_unavailable",
        provider=exc.provider,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=503,
        content={"detail": "Apple App Store billing not configured"},
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)


UNMATCHED_ENDPOINT = "unmatched"


def route_template(request: Request) -> str:
    """
    Metric label for a request: the matched route template, not the raw path.

    Path parameters (transaction IDs) would otherwise create one series per value.
    """
    partial: str | None = None
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return str(getattr(route, "path", UNMATCHED_ENDPOINT))
        if match == Match.PARTIAL and partial is None:
            # Path matched, method did not (405)
            partial = str(getattr(route, "path", UNMATCHED_ENDPOINT))
    return partial or UNMATCHED_ENDPOINT


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    path = request.url.path
    endpoint = route_template(request)
    method = request.method

    with log_context(request_id=request_id):
        logger.info("request_started", method=method, path=path)

        if settings.metrics_enabled:
            metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            if settings.metrics_enabled:
                metrics.record_http_request(endpoint, method, response.status_code, duration)

            logger.info(
                "request_completed",
                method=method,
                path=path,
                status_code=response.status_code,
                duration_seconds=duration,
            )

            return response
        except Exception as e:
            duration = time.time() - start_time
            if settings.metrics_enabled:
                metrics.record_http_request(endpoint, method, 500, duration)
                metrics.record_error(type(e).__name__, "http_request")

            logger.error(
                "request_failed",
                method=method,
                path=path,
                error=str(e),
                duration_seconds=duration,
                exc_info=True,
            )
            raise
        finally:
            if settings.metrics_enabled:
                metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


# Register routes
app.include_router(apple_router)  # Apple App Store subscription routes
app.include_router(status_router)  # Health and status routes


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "flexflow_billing.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
