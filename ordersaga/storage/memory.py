"""
In-memory order repository

Reference implementation of the repository contract for development and
testing. State is lost on process restart.
"""

import asyncio
import copy
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal

from ordersaga.core.exceptions import ConcurrentModification, DuplicateOrderNumber, OrderNotFound
from ordersaga.core.types import Order, OrderPage, OrderStats, OrderStatus, PaymentStatus, utcnow
from ordersaga.pricing import round_money
from ordersaga.state_machine import OrderStateMachine
from ordersaga.storage.base import OrderRepository


class InMemoryOrderRepository(OrderRepository):
    """
    In-memory implementation of the order repository

    Every mutation runs under one asyncio.Lock, which makes single-order
    updates atomic and lets ``expected_version`` act as a compare-and-swap.
    Callers always receive copies, never the stored instance.
    """

    def __init__(
        self,
        state_machine: OrderStateMachine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._orders: dict[str, Order] = {}
        self._by_number: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._state_machine = state_machine or OrderStateMachine()
        self._clock = clock

    async def create(self, order: Order) -> Order:
        async with self._lock:
            if order.order_number in self._by_number:
                raise DuplicateOrderNumber(order.order_number)

            stored = copy.deepcopy(order)
            stored.version = 1
            self._orders[stored.id] = stored
            self._by_number[stored.order_number] = stored.id
            return copy.deepcopy(stored)

    async def find_by_id(self, order_id: str) -> Order | None:
        async with self._lock:
            order = self._orders.get(order_id)
            return copy.deepcopy(order) if order else None

    async def find_by_order_number(self, order_number: str) -> Order | None:
        async with self._lock:
            order_id = self._by_number.get(order_number)
            if order_id is None:
                return None
            return copy.deepcopy(self._orders[order_id])

    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        reason: str,
        actor: str,
        expected_version: int | None = None,
    ) -> Order:
        async with self._lock:
            stored = self._get_for_update(order_id, expected_version)

            # Work on a copy so a rejected transition leaves storage untouched
            updated = copy.deepcopy(stored)
            self._state_machine.apply_transition(updated, new_status, reason, actor)
            updated.version = stored.version + 1

            self._orders[order_id] = updated
            return copy.deepcopy(updated)

    async def update_payment_status(
        self,
        order_id: str,
        new_payment_status: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Order:
        async with self._lock:
            stored = self._get_for_update(order_id, None)
            now = self._clock()

            stored.payment.status = new_payment_status
            if transaction_id is not None:
                stored.payment.transaction_id = transaction_id
            if new_payment_status == PaymentStatus.COMPLETED:
                stored.payment.paid_at = now
            stored.updated_at = now
            stored.version += 1
            return copy.deepcopy(stored)

    def _get_for_update(self, order_id: str, expected_version: int | None) -> Order:
        stored = self._orders.get(order_id)
        if stored is None:
            raise OrderNotFound(order_id)
        if expected_version is not None and stored.version != expected_version:
            raise ConcurrentModification(order_id, expected_version, stored.version)
        return stored

    async def find_pending_older_than(self, duration: timedelta) -> list[Order]:
        cutoff = self._clock() - duration
        async with self._lock:
            return [
                copy.deepcopy(order)
                for order in sorted(self._orders.values(), key=lambda o: o.created_at)
                if order.status == OrderStatus.PENDING and order.created_at < cutoff
            ]

    async def find_by_user_id(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: OrderStatus | None = None,
    ) -> OrderPage:
        page = max(page, 1)
        async with self._lock:
            matches = [
                order
                for order in self._orders.values()
                if order.user_id == user_id and (status is None or order.status == status)
            ]
            matches.sort(key=lambda o: o.created_at, reverse=True)
            start = (page - 1) * limit
            return OrderPage(
                data=[copy.deepcopy(o) for o in matches[start : start + limit]],
                page=page,
                limit=limit,
                total=len(matches),
            )

    async def get_order_stats(self, user_id: str) -> OrderStats:
        async with self._lock:
            orders = [o for o in self._orders.values() if o.user_id == user_id]

        if not orders:
            return OrderStats()

        total_spent = sum((o.pricing.total for o in orders), Decimal("0.00"))
        by_status: dict[str, int] = {}
        for order in orders:
            by_status[order.status.value] = by_status.get(order.status.value, 0) + 1

        return OrderStats(
            total_orders=len(orders),
            total_spent=total_spent,
            average_order_value=round_money(total_spent / len(orders)),
            orders_by_status=by_status,
        )

    def get_order_count(self) -> int:
        """Get current order count (synchronous for testing)"""
        return len(self._orders)

    async def clear_all(self) -> int:
        """Clear all orders (for testing purposes)"""
        async with self._lock:
            count = len(self._orders)
            self._orders.clear()
            self._by_number.clear()
            return count
