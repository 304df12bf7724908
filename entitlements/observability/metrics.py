"""
Metrics Collection with Prometheus.

Exposes purchase, validation and entitlement metrics for monitoring.
"""

import time
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from entitlements.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    RESULT = "result"
    STATUS = "status"
    SOURCE = "source"


class EntitlementMetrics:
    """
    Centralized metrics for the entitlements service.

    Covers:
    - HTTP requests (rate, duration)
    - Validator calls (rate, outcome, duration)
    - Purchases (rate by outcome)
    - Transaction updates (rate, local verification outcome)
    - Entitlement flag (current value)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "entitlements_service",
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
            "entitlements_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "entitlements_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Validator Metrics
        # ====================================================================
        self.validations_total = Counter(
            "entitlements_validations_total",
            "Total validator calls by outcome (valid, rejected, error)",
            [MetricLabels.RESULT],
        )

        self.validation_duration_seconds = Histogram(
            "entitlements_validation_duration_seconds",
            "Validator call duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Purchase Metrics
        # ====================================================================
        self.purchases_total = Counter(
            "entitlements_purchases_total",
            "Total purchase attempts by outcome",
            [MetricLabels.STATUS],
        )

        self.transaction_updates_total = Counter(
            "entitlements_transaction_updates_total",
            "Transactions received from the store",
            [MetricLabels.SOURCE, "verified"],
        )

        # ====================================================================
        # Entitlement Metrics
        # ====================================================================
        self.has_pro = Gauge(
            "entitlements_has_pro",
            "1 when the user holds an active validated subscription",
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

    def record_validation(self, result: str, duration: float) -> None:
        """Record a validator call."""
        self.validations_total.labels(result=result).inc()
        self.validation_duration_seconds.observe(duration)

    def record_purchase(self, status: str) -> None:
        """Record a purchase attempt."""
        self.purchases_total.labels(status=status).inc()

    def record_transaction(self, source: str, verified: bool) -> None:
        """Record a transaction delivered by the store."""
        self.transaction_updates_total.labels(source=source, verified=str(verified)).inc()

    def set_entitlement(self, has_pro: bool) -> None:
        """Publish the current entitlement flag."""
        self.has_pro.set(1 if has_pro else 0)


# Global metrics instance
metrics = EntitlementMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/v1/purchases", "POST") as tracker:
            # ... process request
            tracker.set_status_code(201)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        """Start tracking."""
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Record metrics."""
        duration = time.time() - self.start_time
        if exc_type is not None:
            self.status_code = 500
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)
