"""
Metrics Collection with Prometheus.

Exposes HTTP and Apple App Store integration metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from flexflow_billing.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ACTION = "action"
    ERROR_TYPE = "error_type"


class BillingMetrics:
    """
    Centralized metrics for the FlexFlow Billing API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Apple operations (receipt, status, notification outcomes and latency)
    - Notification actions (renewed, expired, cancelled, refunded, unknown)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "flexflow_billing_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "flexflow_billing_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "flexflow_billing_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "flexflow_billing_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Apple App Store Metrics
        # ====================================================================
        self.apple_operations_total = Counter(
            "flexflow_billing_apple_operations_total",
            "Apple App Store operations by outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.apple_operation_duration_seconds = Histogram(
            "flexflow_billing_apple_operation_duration_seconds",
            "Apple App Store operation duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.apple_notifications_total = Counter(
            "flexflow_billing_apple_notifications_total",
            "Apple server notifications by classified action",
            [MetricLabels.ACTION],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "flexflow_billing_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Convenience Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_apple_operation(self, operation: str, outcome: str, duration: float) -> None:
        """Record the outcome and latency of an Apple App Store operation."""
        self.apple_operations_total.labels(operation=operation, outcome=outcome).inc()
        self.apple_operation_duration_seconds.labels(operation=operation).observe(duration)

    def record_apple_notification(self, action: str) -> None:
        """Record a classified Apple server notification."""
        self.apple_notifications_total.labels(action=action).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = BillingMetrics()
