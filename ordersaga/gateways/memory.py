"""
In-memory collaborators - For testing and development.

Each fake records the calls it receives so tests can assert on compensation
behaviour (for example that every reserve is matched by a release).
"""

import asyncio
import itertools
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from ordersaga.core.exceptions import GatewayError
from ordersaga.core.types import Order, OrderItem, PaymentResult, ProductRecord, RefundResult, UserRecord
from ordersaga.gateways.base import InventoryGateway, PaymentGateway, ProductCatalog, UserDirectory


class InMemoryInventoryGateway(InventoryGateway):
    """
    In-memory stock service.

    Usage:
        >>> inventory = InMemoryInventoryGateway({"SKU-1": 10})
        >>> await inventory.reserve([item], reference="order-1")
        True
        >>> inventory.available("SKU-1")
        8
    """

    def __init__(self, stock: dict[str, int] | None = None):
        self._available: dict[str, int] = dict(stock or {})
        self._holds: dict[str, dict[str, int]] = {}
        self._sold: dict[str, int] = {}
        self._finalized: dict[str, dict[str, int]] = {}
        self._lock = asyncio.Lock()
        self.calls: list[tuple[str, str, str, int]] = []
        """(operation, reference, product_id, quantity) for every stock movement"""

        # Failure injection for tests
        self.reject_products: set[str] = set()
        self.fail_release = False
        self.delay: float = 0.0

    async def check_availability(self, items: Sequence[OrderItem]) -> bool:
        await self._simulate_latency()
        wanted: dict[str, int] = {}
        for item in items:
            wanted[item.product_id] = wanted.get(item.product_id, 0) + item.quantity
        async with self._lock:
            return all(
                quantity <= self._available.get(product_id, 0)
                for product_id, quantity in wanted.items()
            )

    async def reserve(self, items: Sequence[OrderItem], reference: str) -> bool:
        await self._simulate_latency()
        async with self._lock:
            for item in items:
                if item.product_id in self.reject_products:
                    return False
                if self._available.get(item.product_id, 0) < item.quantity:
                    return False

            holds = self._holds.setdefault(reference, {})
            for item in items:
                self._available[item.product_id] -= item.quantity
                holds[item.product_id] = holds.get(item.product_id, 0) + item.quantity
                self.calls.append(("reserve", reference, item.product_id, item.quantity))
            return True

    async def release(self, items: Sequence[OrderItem], reference: str) -> None:
        if self.fail_release:
            msg = "Inventory service unavailable"
            raise GatewayError(msg)
        async with self._lock:
            holds = self._holds.get(reference, {})
            for item in items:
                held = holds.get(item.product_id, 0)
                quantity = min(held, item.quantity)
                if quantity <= 0:
                    continue
                holds[item.product_id] = held - quantity
                self._available[item.product_id] = self._available.get(item.product_id, 0) + quantity
                self.calls.append(("release", reference, item.product_id, quantity))
            self._drop_empty(reference)

    async def finalize(self, items: Sequence[OrderItem], reference: str) -> None:
        async with self._lock:
            holds = self._holds.get(reference, {})
            finalized = self._finalized.setdefault(reference, {})
            for item in items:
                quantity = min(holds.get(item.product_id, 0), item.quantity)
                if quantity <= 0:
                    continue
                holds[item.product_id] -= quantity
                finalized[item.product_id] = finalized.get(item.product_id, 0) + quantity
                self._sold[item.product_id] = self._sold.get(item.product_id, 0) + quantity
                self.calls.append(("finalize", reference, item.product_id, quantity))
            self._drop_empty(reference)

    async def restock(self, items: Sequence[OrderItem], reference: str) -> None:
        async with self._lock:
            finalized = self._finalized.get(reference, {})
            for item in items:
                quantity = min(finalized.get(item.product_id, 0), item.quantity)
                if quantity <= 0:
                    continue
                finalized[item.product_id] -= quantity
                self._sold[item.product_id] -= quantity
                self._available[item.product_id] = self._available.get(item.product_id, 0) + quantity
                self.calls.append(("restock", reference, item.product_id, quantity))

    def _drop_empty(self, reference: str) -> None:
        holds = self._holds.get(reference)
        if holds is not None and not any(holds.values()):
            del self._holds[reference]

    async def _simulate_latency(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    def available(self, product_id: str) -> int:
        return self._available.get(product_id, 0)

    def held(self, reference: str | None = None) -> int:
        """Units currently on hold, for one reference or overall."""
        if reference is not None:
            return sum(self._holds.get(reference, {}).values())
        return sum(sum(h.values()) for h in self._holds.values())

    def sold(self, product_id: str) -> int:
        return self._sold.get(product_id, 0)

    def calls_for(self, operation: str, reference: str | None = None) -> list[tuple[str, int]]:
        """(product_id, quantity) pairs of one operation, optionally for one reference."""
        return [
            (product_id, quantity)
            for op, ref, product_id, quantity in self.calls
            if op == operation and (reference is None or ref == reference)
        ]


class InMemoryPaymentGateway(PaymentGateway):
    """
    Mock payment provider.

    Set ``decline_reason`` to decline every capture, ``error`` to make captures
    raise, and ``delay`` to simulate a slow provider.
    """

    def __init__(self):
        self._sequence = itertools.count(1)
        self.captures: list[tuple[Decimal, str | None]] = []
        self.refunds: list[str] = []
        self.decline_reason: str | None = None
        self.error: Exception | None = None
        self.delay: float = 0.0

    async def capture(self, amount: Decimal, payment_details: dict[str, Any]) -> PaymentResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.decline_reason is not None:
            self.captures.append((amount, None))
            return PaymentResult(success=False, error=self.decline_reason)

        transaction_id = f"TXN-{next(self._sequence):06d}"
        self.captures.append((amount, transaction_id))
        return PaymentResult(success=True, transaction_id=transaction_id)

    async def refund(self, order: Order) -> RefundResult:
        self.refunds.append(order.id)
        return RefundResult(success=True, refund_id=f"REFUND-{order.payment.transaction_id or order.id}")

    @property
    def successful_captures(self) -> list[str]:
        return [txn for _, txn in self.captures if txn]


class InMemoryUserDirectory(UserDirectory):
    def __init__(self, users: Sequence[UserRecord] = ()):
        self._users = {user.id: user for user in users}

    def add(self, user: UserRecord) -> None:
        self._users[user.id] = user

    async def get_user(self, user_id: str) -> UserRecord | None:
        return self._users.get(user_id)


class InMemoryProductCatalog(ProductCatalog):
    def __init__(self, products: Sequence[ProductRecord] = ()):
        self._products = {product.id: product for product in products}

    def add(self, product: ProductRecord) -> None:
        self._products[product.id] = product

    async def get_product(self, product_id: str) -> ProductRecord | None:
        return self._products.get(product_id)
