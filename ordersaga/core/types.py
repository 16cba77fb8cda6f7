"""
All type definitions, enums, and dataclasses

The Order aggregate and its value objects, plus the small records exchanged
with the inventory, payment, user and catalog collaborators.
"""

import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class OrderStatus(Enum):
    """Order lifecycle status"""

    PENDING = "pending"
    """Order created but not paid"""

    CONFIRMED = "confirmed"
    """Payment captured"""

    PROCESSING = "processing"
    """Being prepared"""

    SHIPPED = "shipped"
    DELIVERED = "delivered"

    CANCELLED = "cancelled"
    """Cancelled by the user, an admin, or saga compensation"""

    ABANDONED = "abandoned"
    """Stuck in PENDING past the timeout, closed by the reconciler"""

    REFUNDED = "refunded"


class PaymentStatus(Enum):
    """Status of the payment attached to an order"""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    STRIPE = "stripe"


def utcnow() -> datetime:
    return datetime.now(UTC)


def generate_order_number() -> str:
    """Human-traceable order number: ``ORD-<epoch ms>-<0..999>``."""
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999)}"


@dataclass(frozen=True)
class OrderItem:
    """
    Enriched line item.

    Name and unit price are snapshots taken from the catalog at creation time;
    later catalog changes never touch an existing order.
    """

    product_id: str
    product_name: str
    price: Decimal
    quantity: int
    subtotal: Decimal

    @classmethod
    def priced(cls, product_id: str, product_name: str, price: Decimal, quantity: int) -> "OrderItem":
        price = Decimal(price)
        return cls(
            product_id=product_id,
            product_name=product_name,
            price=price,
            quantity=quantity,
            subtotal=price * quantity,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "price": str(self.price),
            "quantity": self.quantity,
            "subtotal": str(self.subtotal),
        }


@dataclass(frozen=True)
class Pricing:
    """Monetary breakdown, each field already rounded to cents."""

    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal

    def to_dict(self) -> dict[str, str]:
        return {
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "shipping": str(self.shipping),
            "discount": str(self.discount),
            "total": str(self.total),
        }


@dataclass(frozen=True)
class ShippingAddress:
    """Shipping address snapshot. ``state`` drives tax and shipping rates."""

    full_name: str
    street: str
    city: str
    zip_code: str
    state: str | None = None
    country: str = "USA"
    phone: str | None = None

    def missing_fields(self) -> list[str]:
        """Names of required fields that are empty."""
        required = {
            "full_name": self.full_name,
            "street": self.street,
            "city": self.city,
            "zip_code": self.zip_code,
        }
        return [name for name, value in required.items() if not value]

    def to_dict(self) -> dict[str, Any]:
        return {
            "full_name": self.full_name,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "country": self.country,
            "phone": self.phone,
        }


@dataclass
class PaymentInfo:
    method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: str | None = None
    paid_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "status": self.status.value,
            "transaction_id": self.transaction_id,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: OrderStatus
    timestamp: datetime
    reason: str
    actor: str

    def to_dict(self) -> dict[str, str]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "actor": self.actor,
        }


@dataclass
class Order:
    """
    Order aggregate root.

    Status and history only change together, through
    ``OrderStateMachine.apply_transition``. ``version`` is bumped by the
    repository on every stored mutation and backs conditional updates.

    Attributes:
        id: Internal identifier
        order_number: Unique, human-traceable number
        user_id: Owner of the order
        user_email: Email snapshot at creation
        items: Enriched line items (immutable once CONFIRMED)
        pricing: Totals computed once at creation
        shipping_address: Address snapshot
        payment: Payment method, status and transaction id
        status: Current lifecycle status
        status_history: Append-only audit trail, one entry per status change
    """

    user_id: str
    user_email: str
    items: list[OrderItem]
    pricing: Pricing
    shipping_address: ShippingAddress
    payment: PaymentInfo

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    order_number: str = field(default_factory=generate_order_number)
    status: OrderStatus = OrderStatus.PENDING
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    notes: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    delivered_at: datetime | None = None
    abandoned_at: datetime | None = None
    version: int = 0

    def __post_init__(self):
        """Record the initial history entry for a freshly built order."""
        if not self.status_history:
            self.status_history.append(
                StatusHistoryEntry(
                    status=self.status,
                    timestamp=self.created_at,
                    reason="Order created",
                    actor="system",
                )
            )

    @property
    def can_be_cancelled(self) -> bool:
        return self.status in (
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
            OrderStatus.PROCESSING,
        )

    def to_dict(self) -> dict[str, Any]:
        """Snapshot used as notification payload."""
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "items": [item.to_dict() for item in self.items],
            "pricing": self.pricing.to_dict(),
            "shipping_address": self.shipping_address.to_dict(),
            "payment": self.payment.to_dict(),
            "status": self.status.value,
            "status_history": [entry.to_dict() for entry in self.status_history],
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "abandoned_at": self.abandoned_at.isoformat() if self.abandoned_at else None,
            "version": self.version,
        }


# ---------------------------------------------------------------------------
# Request / collaborator records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItemRequest:
    product_id: str
    quantity: int


@dataclass
class OrderRequest:
    """Client intent to place an order."""

    items: list[LineItemRequest]
    shipping_address: ShippingAddress | None
    payment_method: PaymentMethod | str | None
    payment_details: dict[str, Any] = field(default_factory=dict)
    notes: str = ""


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    is_active: bool = True


@dataclass(frozen=True)
class ProductRecord:
    id: str
    name: str
    price: Decimal
    stock: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    transaction_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_id: str | None = None
    error: str | None = None


@dataclass
class OrderPage:
    """One page of a user's orders."""

    data: list[Order]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return -(-self.total // self.limit)


@dataclass
class OrderStats:
    total_orders: int = 0
    total_spent: Decimal = Decimal("0.00")
    average_order_value: Decimal = Decimal("0.00")
    orders_by_status: dict[str, int] = field(default_factory=dict)
