"""
Observability for the order saga: metrics collectors and structured logging.
"""

from ordersaga.monitoring.logging import (
    OrderContextFilter,
    OrderJsonFormatter,
    clear_order_context,
    set_order_context,
    setup_json_logging,
)
from ordersaga.monitoring.metrics import OrderMetrics
from ordersaga.monitoring.prometheus import PrometheusOrderMetrics, start_metrics_server

__all__ = [
    "OrderMetrics",
    "PrometheusOrderMetrics",
    "start_metrics_server",
    "OrderJsonFormatter",
    "OrderContextFilter",
    "set_order_context",
    "clear_order_context",
    "setup_json_logging",
]
