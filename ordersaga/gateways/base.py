"""
Collaborator interfaces consumed by the order saga.

Inventory, payment, user and catalog services are external; the saga only
depends on these contracts. Every call may have network latency and the
orchestrator bounds each one with a timeout.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from ordersaga.core.types import Order, OrderItem, PaymentResult, ProductRecord, RefundResult, UserRecord


class InventoryGateway(ABC):
    """
    Stock service contract.

    The gateway is the sole arbiter of stock consistency: it must serialize or
    compare-and-swap its per-product counters. Holds are tracked per
    ``reference`` (the order id) so releasing one order never frees another
    order's stock.
    """

    @abstractmethod
    async def check_availability(self, items: Sequence[OrderItem]) -> bool:
        """True if every item's quantity is covered by that product's stock."""
        ...

    @abstractmethod
    async def reserve(self, items: Sequence[OrderItem], reference: str) -> bool:
        """
        Place a hold for ``items`` under ``reference``.

        Returns:
            False if the hold was rejected; a rejection is authoritative
        """
        ...

    @abstractmethod
    async def release(self, items: Sequence[OrderItem], reference: str) -> None:
        """Drop holds. Must be a no-op for items that are not (or no longer) held."""
        ...

    @abstractmethod
    async def finalize(self, items: Sequence[OrderItem], reference: str) -> None:
        """Turn holds into a permanent deduction."""
        ...

    @abstractmethod
    async def restock(self, items: Sequence[OrderItem], reference: str) -> None:
        """
        Return units finalized under ``reference`` to stock (cancelled or
        refunded after confirmation). Idempotent like ``release``.
        """
        ...


class PaymentGateway(ABC):
    @abstractmethod
    async def capture(self, amount: Decimal, payment_details: dict[str, Any]) -> PaymentResult:
        """Charge ``amount``. A decline is reported with success=False, not raised."""
        ...

    @abstractmethod
    async def refund(self, order: Order) -> RefundResult: ...


class UserDirectory(ABC):
    @abstractmethod
    async def get_user(self, user_id: str) -> UserRecord | None: ...


class ProductCatalog(ABC):
    @abstractmethod
    async def get_product(self, product_id: str) -> ProductRecord | None: ...
