"""
Observability module - Logging, Metrics, and Tracing.
"""

from flexflow_billing.observability.logging import get_logger, log_context, setup_logging
from flexflow_billing.observability.metrics import metrics
from flexflow_billing.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "get_logger",
    "get_tracer",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
