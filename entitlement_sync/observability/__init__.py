"""
Observability module - Logging, Metrics, and Tracing.
"""

from entitlement_sync.observability.logging import get_logger, log_context, setup_logging
from entitlement_sync.observability.metrics import metrics
from entitlement_sync.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
