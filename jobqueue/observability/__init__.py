"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from jobqueue.observability.logging import bind_context, get_logger, setup_logging
from jobqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    start_metrics_server,
)
from jobqueue.observability.tracing import get_tracer, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "bind_context",
    "setup_metrics",
    "get_metrics",
    "start_metrics_server",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
]
