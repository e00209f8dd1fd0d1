"""
Metrics Collection with Prometheus.

Exposes reconciliation and acknowledgement metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from entitlement_sync.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    RESPONSE_CLASS = "response_class"
    REASON = "reason"
    ERROR_TYPE = "error_type"


class EntitlementMetrics:
    """
    Centralized metrics for the Entitlement Sync API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Reconciliation passes (rate, outcome, duration)
    - Acknowledgement attempts and final outcomes
    - Backend of record calls and pending requests
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "entitlement_sync_service",
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
            "entitlement_sync_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "entitlement_sync_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "entitlement_sync_http_requests_in_progress",
            "HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconciliation_passes_total = Counter(
            "entitlement_sync_reconciliation_passes_total",
            "Total reconciliation passes",
            [MetricLabels.OUTCOME],
        )

        self.reconciliation_duration_seconds = Histogram(
            "entitlement_sync_reconciliation_duration_seconds",
            "Reconciliation pass duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.retained_foreign_records_total = Counter(
            "entitlement_sync_retained_foreign_records_total",
            "Already-owned records kept because their token is still on the device",
        )

        # ====================================================================
        # Acknowledgement Metrics
        # ====================================================================
        self.acknowledgement_attempts_total = Counter(
            "entitlement_sync_acknowledgement_attempts_total",
            "Billing provider acknowledgement attempts by response class",
            [MetricLabels.RESPONSE_CLASS],
        )

        self.acknowledgement_outcomes_total = Counter(
            "entitlement_sync_acknowledgement_outcomes_total",
            "Final acknowledgement outcomes",
            [MetricLabels.REASON],
        )

        # ====================================================================
        # Backend of Record Metrics
        # ====================================================================
        self.remote_requests_total = Counter(
            "entitlement_sync_remote_requests_total",
            "Requests to the backend of record",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.remote_requests_pending = Gauge(
            "entitlement_sync_remote_requests_pending",
            "Requests to the backend of record currently in flight",
        )

        self.user_sessions_active = Gauge(
            "entitlement_sync_user_sessions_active",
            "Per-user reconciliation sessions held in memory",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "entitlement_sync_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
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

    def record_reconciliation(self, outcome: str, duration: float, retained: int = 0) -> None:
        """Record one reconciliation pass."""
        self.reconciliation_passes_total.labels(outcome=outcome).inc()
        self.reconciliation_duration_seconds.observe(duration)
        if retained:
            self.retained_foreign_records_total.inc(retained)

    def record_acknowledgement_attempt(self, response_class: str) -> None:
        """Record a single provider acknowledgement call."""
        self.acknowledgement_attempts_total.labels(response_class=response_class).inc()

    def record_acknowledgement_outcome(self, reason: str) -> None:
        """Record the final outcome of an acknowledgement."""
        self.acknowledgement_outcomes_total.labels(reason=reason).inc()

    def record_remote_request(self, operation: str, outcome: str) -> None:
        """Record a backend of record call."""
        self.remote_requests_total.labels(operation=operation, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EntitlementMetrics()
