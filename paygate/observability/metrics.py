"""
Metrics Collection with Prometheus.

Exposes payment and HTTP metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    PROVIDER = "provider"
    OUTCOME = "outcome"
    OPERATION = "operation"
    ERROR_TYPE = "error_type"


class PaymentMetrics:
    """
    Centralized metrics for the payment core.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Payments (rate by provider/outcome, duration, amount)
    - Intents (created, transitions)
    - Webhooks (accepted, replayed, rejected, ignored)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "paygate_service",
            "Service information",
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "paygate_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "paygate_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "paygate_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payments_total = Counter(
            "paygate_payments_total",
            "Total payment attempts",
            [MetricLabels.PROVIDER, "success", MetricLabels.ERROR_TYPE],
        )

        self.payment_duration_seconds = Histogram(
            "paygate_payment_duration_seconds",
            "Payment processing duration in seconds",
            [MetricLabels.PROVIDER],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 4.0, 5.0, 10.0, 30.0),
        )

        self.payment_amount = Histogram(
            "paygate_payment_amount",
            "Successful payment amounts in major units",
            [MetricLabels.PROVIDER],
            buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000, 10000),
        )

        # ====================================================================
        # Intent Metrics
        # ====================================================================
        self.intents_created_total = Counter(
            "paygate_intents_created_total",
            "Total payment intents created",
            [MetricLabels.PROVIDER],
        )

        self.intent_transitions_total = Counter(
            "paygate_intent_transitions_total",
            "Payment intent status transitions",
            ["from_status", "to_status"],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhooks_total = Counter(
            "paygate_webhooks_total",
            "Webhook deliveries by outcome",
            [MetricLabels.PROVIDER, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "paygate_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def set_service_info(self, version: str, service_name: str) -> None:
        self.service_info.info({"version": version, "service_name": service_name})

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

    def record_payment(
        self,
        provider: str,
        success: bool,
        duration: float,
        amount: float | None = None,
        error_type: str | None = None,
    ) -> None:
        """Record payment attempt metrics."""
        self.payments_total.labels(
            provider=provider, success=str(success), error_type=error_type or "none"
        ).inc()
        self.payment_duration_seconds.labels(provider=provider).observe(duration)
        if success and amount is not None:
            self.payment_amount.labels(provider=provider).observe(amount)

    def record_intent_created(self, provider: str) -> None:
        self.intents_created_total.labels(provider=provider).inc()

    def record_transition(self, from_status: str, to_status: str) -> None:
        self.intent_transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    def record_webhook(self, provider: str, outcome: str) -> None:
        """Record a webhook delivery (accepted, replayed, rejected, ignored, failed)."""
        self.webhooks_total.labels(provider=provider, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance (Prometheus collectors register once per process)
metrics = PaymentMetrics()
