"""
OrderSaga - order creation saga with compensations

Places an order across collaborators that share no transaction (inventory,
payments, order storage, notifications) and guarantees that every failure
after a side effect is followed by its compensation:

- Per-item inventory reservation, released on any later failure
- Payment capture with cancellation and release on decline or timeout
- An order status state machine with an append-only audit history
- Deterministic pricing with cent rounding (tax and shipping per state)
- An abandoned-order reconciler for orders stuck in PENDING
- Prometheus metrics and JSON structured logging

Usage:
    >>> from ordersaga import OrderSagaOrchestrator, OrderRequest, LineItemRequest
    >>> from ordersaga.storage import InMemoryOrderRepository
    >>>
    >>> orchestrator = OrderSagaOrchestrator(
    ...     repository=InMemoryOrderRepository(),
    ...     inventory=inventory,
    ...     payments=payments,
    ...     users=users,
    ...     catalog=catalog,
    ...     publisher=publisher,
    ... )
    >>> order = await orchestrator.create_order(
    ...     OrderRequest(
    ...         items=[LineItemRequest("SKU-1", 2)],
    ...         shipping_address=address,
    ...         payment_method="credit_card",
    ...     ),
    ...     user_id="user-1",
    ... )

Reconciliation (schedule it with cron, a timer, or the CLI):
    >>> report = await orchestrator.handle_abandoned_orders()
    >>> report.abandoned
    ['9f1c...']
"""

from ordersaga.core import (
    CancellationNotAllowed,
    ConcurrentModification,
    DuplicateOrderNumber,
    GatewayError,
    InsufficientStock,
    InvalidTransition,
    ItemInvalid,
    LineItemRequest,
    Order,
    OrderItem,
    OrderNotFound,
    OrderPage,
    OrderRequest,
    OrderSagaError,
    OrderStats,
    OrderStatus,
    PaymentFailed,
    PaymentMethod,
    PaymentStatus,
    PersistenceFailed,
    Pricing,
    ProductRecord,
    RateLimitExceeded,
    ReservationFailed,
    ShippingAddress,
    Unauthorized,
    UserInvalid,
    UserRecord,
    configure_default_logging,
    generate_order_number,
    get_logger,
    set_logger,
)

# Configuration
from ordersaga.core.config import OrderSagaConfig
from ordersaga.notifications import (
    InMemoryNotificationPublisher,
    LoggingNotificationPublisher,
    NotificationDispatcher,
    NotificationPublisher,
)
from ordersaga.orchestrator import OrderSagaOrchestrator
from ordersaga.pricing import PricingConfig, PricingEngine
from ordersaga.ratelimit import SlidingWindowRateLimiter
from ordersaga.reconciler import AbandonedOrderReconciler, ReconcileReport
from ordersaga.state_machine import OrderStateMachine

__version__ = "0.1.0"

__all__ = [
    # Saga
    "OrderSagaOrchestrator",
    "AbandonedOrderReconciler",
    "ReconcileReport",
    # State machine and pricing
    "OrderStateMachine",
    "PricingEngine",
    "PricingConfig",
    # Configuration
    "OrderSagaConfig",
    # Notifications
    "NotificationPublisher",
    "NotificationDispatcher",
    "InMemoryNotificationPublisher",
    "LoggingNotificationPublisher",
    "SlidingWindowRateLimiter",
    # Types
    "Order",
    "OrderItem",
    "OrderPage",
    "OrderRequest",
    "OrderStats",
    "OrderStatus",
    "LineItemRequest",
    "PaymentMethod",
    "PaymentStatus",
    "Pricing",
    "ProductRecord",
    "ShippingAddress",
    "UserRecord",
    "generate_order_number",
    # Exceptions
    "OrderSagaError",
    "UserInvalid",
    "ItemInvalid",
    "InsufficientStock",
    "ReservationFailed",
    "PersistenceFailed",
    "PaymentFailed",
    "InvalidTransition",
    "CancellationNotAllowed",
    "ConcurrentModification",
    "OrderNotFound",
    "Unauthorized",
    "DuplicateOrderNumber",
    "RateLimitExceeded",
    "GatewayError",
    # Logging
    "get_logger",
    "set_logger",
    "configure_default_logging",
]
