"""
Shared building blocks: order types, the error taxonomy and logging.
"""

from ordersaga.core.exceptions import (
    CancellationNotAllowed,
    ConcurrentModification,
    DuplicateOrderNumber,
    GatewayError,
    InsufficientStock,
    InvalidTransition,
    ItemInvalid,
    OrderNotFound,
    OrderSagaError,
    PaymentFailed,
    PersistenceFailed,
    RateLimitExceeded,
    ReservationFailed,
    Unauthorized,
    UserInvalid,
)
from ordersaga.core.logger import configure_default_logging, get_logger, set_logger
from ordersaga.core.types import (
    LineItemRequest,
    Order,
    OrderItem,
    OrderPage,
    OrderRequest,
    OrderStats,
    OrderStatus,
    PaymentInfo,
    PaymentMethod,
    PaymentResult,
    PaymentStatus,
    Pricing,
    ProductRecord,
    RefundResult,
    ShippingAddress,
    StatusHistoryEntry,
    UserRecord,
    generate_order_number,
)

__all__ = [
    # Errors
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
    # Types
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "PaymentInfo",
    "Pricing",
    "ShippingAddress",
    "StatusHistoryEntry",
    "LineItemRequest",
    "OrderRequest",
    "UserRecord",
    "ProductRecord",
    "PaymentResult",
    "RefundResult",
    "OrderPage",
    "OrderStats",
    "generate_order_number",
]
