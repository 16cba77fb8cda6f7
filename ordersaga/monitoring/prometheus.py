"""
Prometheus metrics integration for ordersaga.

Quick Start:
    >>> from ordersaga.monitoring.prometheus import PrometheusOrderMetrics, start_metrics_server
    >>>
    >>> start_metrics_server(port=8000)
    >>> metrics = PrometheusOrderMetrics()
    >>> orchestrator = OrderSagaOrchestrator(..., metrics=metrics)
"""

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from ordersaga.core.logger import get_logger

logger = get_logger(__name__)


class PrometheusOrderMetrics:
    """
    Prometheus-compatible metrics collector for the order saga.

    Exposes the following metrics:
        - <prefix>_saga_total: Counter of sagas by outcome ("success" or failure code)
        - <prefix>_saga_duration_seconds: Histogram of saga durations
        - <prefix>_compensation_failures_total: Counter of failed compensations by step
        - <prefix>_notification_failures_total: Counter of failed publishes by event type
        - <prefix>_reconciler_orders_total: Counter of reconciler outcomes
        - <prefix>_saga_active: Gauge of currently running sagas

    Same method surface as OrderMetrics, so either can be handed to the
    orchestrator and the reconciler.
    """

    def __init__(self, prefix: str = "ordersaga", registry: CollectorRegistry | None = None):
        """
        Args:
            prefix: Metric name prefix
            registry: Registry to register into (default: the global registry)
        """
        registry = registry if registry is not None else REGISTRY
        self._prefix = prefix

        self._saga_total = Counter(
            f"{prefix}_saga_total",
            "Total order sagas by outcome",
            ["outcome"],
            registry=registry,
        )
        self._saga_duration = Histogram(
            f"{prefix}_saga_duration_seconds",
            "Order saga duration in seconds",
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry,
        )
        self._compensation_failures = Counter(
            f"{prefix}_compensation_failures_total",
            "Compensating actions that failed",
            ["step"],
            registry=registry,
        )
        self._notification_failures = Counter(
            f"{prefix}_notification_failures_total",
            "Order event publishes that failed",
            ["event_type"],
            registry=registry,
        )
        self._reconciler_total = Counter(
            f"{prefix}_reconciler_orders_total",
            "Orders handled by the abandoned order reconciler",
            ["outcome"],
            registry=registry,
        )
        self._active = Gauge(
            f"{prefix}_saga_active",
            "Number of currently running order sagas",
            registry=registry,
        )

    def saga_started(self) -> None:
        self._active.inc()

    def saga_finished(self) -> None:
        self._active.dec()

    def record_saga(self, outcome: str, duration: float) -> None:
        self._saga_total.labels(outcome=outcome).inc()
        self._saga_duration.observe(duration)

    def record_compensation_failure(self, step: str) -> None:
        self._compensation_failures.labels(step=step).inc()

    def record_notification_failure(self, event_type: str) -> None:
        self._notification_failures.labels(event_type=event_type).inc()

    def record_reconcile(self, outcome: str, count: int = 1) -> None:
        if count:
            self._reconciler_total.labels(outcome=outcome).inc(count)


def start_metrics_server(port: int = 8000, addr: str = "0.0.0.0") -> None:
    """
    Start a Prometheus HTTP metrics server.

    Example:
        >>> start_metrics_server(port=8000)
        >>> # Metrics available at http://localhost:8000/metrics
    """
    start_http_server(port, addr)
    logger.info(f"Prometheus metrics server started on port {port}")
