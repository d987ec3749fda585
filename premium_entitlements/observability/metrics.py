"""
Metrics Collection with Prometheus.

Exposes entitlement and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from premium_entitlements.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ENVIRONMENT = "environment"
    NOTIFICATION_TYPE = "notification_type"
    SUBSCRIPTION_STATUS = "subscription_status"
    ERROR_TYPE = "error_type"
    SERVICE = "service"


class EntitlementMetrics:
    """
    Centralized metrics for the entitlement service.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Receipt verifications (outcome, Apple status codes, duration)
    - App Store notifications (type, resulting status, signature failures)
    - Upstream availability and errors
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

        self.http_requests_in_progress = Gauge(
            "entitlements_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Receipt Verification Metrics
        # ====================================================================
        self.receipt_verifications_total = Counter(
            "entitlements_receipt_verifications_total",
            "Receipt verifications by outcome",
            [MetricLabels.OUTCOME],
        )

        self.apple_receipt_status_total = Counter(
            "entitlements_apple_receipt_status_total",
            "verifyReceipt status codes returned by Apple",
            ["status", MetricLabels.ENVIRONMENT],
        )

        self.receipt_verification_duration_seconds = Histogram(
            "entitlements_receipt_verification_duration_seconds",
            "Receipt verification duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Notification Metrics
        # ====================================================================
        self.notifications_total = Counter(
            "entitlements_notifications_total",
            "App Store notifications applied",
            [MetricLabels.NOTIFICATION_TYPE, MetricLabels.SUBSCRIPTION_STATUS, "matched"],
        )

        self.signature_failures_total = Counter(
            "entitlements_signature_failures_total",
            "Signed payloads that failed verification",
        )

        # ====================================================================
        # Upstream / Error Metrics
        # ====================================================================
        self.upstream_errors_total = Counter(
            "entitlements_upstream_errors_total",
            "Failures reaching Apple endpoints",
            [MetricLabels.SERVICE],
        )

        self.errors_total = Counter(
            "entitlements_errors_total",
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

    def record_receipt_verification(self, outcome: str, duration: float) -> None:
        """Record a receipt verification attempt."""
        self.receipt_verifications_total.labels(outcome=outcome).inc()
        self.receipt_verification_duration_seconds.observe(duration)

    def record_apple_status(self, status: int, environment: str) -> None:
        """Record a verifyReceipt status code."""
        self.apple_receipt_status_total.labels(status=str(status), environment=environment).inc()

    def record_notification(
        self, notification_type: str, subscription_status: str, matched: bool
    ) -> None:
        """Record an applied notification."""
        self.notifications_total.labels(
            notification_type=notification_type,
            subscription_status=subscription_status,
            matched=str(matched),
        ).inc()

    def record_upstream_error(self, service: str) -> None:
        """Record an unreachable upstream."""
        self.upstream_errors_total.labels(service=service).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EntitlementMetrics()
