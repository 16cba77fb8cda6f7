"""
All order-saga exceptions

Every failure the saga, the state machine or a collaborator can surface to a
caller carries a stable ``code`` and a human ``message``. None of them carry
retry hints: retrying is the caller's decision.
"""

from typing import Any


class OrderSagaError(Exception):
    """Base order saga error"""

    code = "ORDER_SAGA_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, str]:
        """User-facing representation (code and message only)."""
        return {"code": self.code, "message": self.message}


class UserInvalid(OrderSagaError):
    """User is missing or not active"""

    code = "USER_INVALID"


class ItemInvalid(OrderSagaError):
    """Line item or request shape rejected"""

    code = "ITEM_INVALID"


class InsufficientStock(OrderSagaError):
    """Requested quantity exceeds available stock"""

    code = "INSUFFICIENT_STOCK"


class ReservationFailed(OrderSagaError):
    """Inventory gateway rejected a reservation"""

    code = "RESERVATION_FAILED"


class PersistenceFailed(OrderSagaError):
    """Order repository failed to persist a change"""

    code = "PERSISTENCE_FAILED"


class PaymentFailed(OrderSagaError):
    """Payment was declined or the gateway failed"""

    code = "PAYMENT_FAILED"


class InvalidTransition(OrderSagaError):
    """
    Status transition not present in the transition table.

    Raised before any field of the order is written, so the order is left
    exactly as it was.
    """

    code = "INVALID_TRANSITION"

    def __init__(self, order_id: str, from_status: Any, to_status: Any, message: str | None = None):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            message or f"Cannot transition order {order_id} from {from_value} to {to_value}",
            details={"order_id": order_id, "from": from_value, "to": to_value},
        )


class CancellationNotAllowed(InvalidTransition):
    """Order is in a status that cannot be cancelled"""

    code = "CANCELLATION_NOT_ALLOWED"


class ConcurrentModification(OrderSagaError):
    """Order changed underneath a conditional update"""

    code = "CONCURRENT_MODIFICATION"

    def __init__(self, order_id: str, expected_version: int, actual_version: int):
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Order {order_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            details={"order_id": order_id},
        )


class OrderNotFound(OrderSagaError):
    """No order with the given id"""

    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found", details={"order_id": order_id})


class Unauthorized(OrderSagaError):
    """Caller does not own the order"""

    code = "UNAUTHORIZED"


class DuplicateOrderNumber(OrderSagaError):
    """Repository already holds an order with this number"""

    code = "DUPLICATE_ORDER_NUMBER"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(
            f"Order number already exists: {order_number}",
            details={"order_number": order_number},
        )


class RateLimitExceeded(OrderSagaError):
    """Too many order requests for one key within the window"""

    code = "RATE_LIMIT_EXCEEDED"


class GatewayError(OrderSagaError):
    """A collaborator failed or timed out (internal, wrapped before surfacing)"""

    code = "GATEWAY_ERROR"
