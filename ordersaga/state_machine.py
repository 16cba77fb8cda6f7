"""
Order Status State Machine - Decides which status transitions are legal.

Consulted by the saga, by administrative status updates and by the abandoned
order reconciler. It only enforces legality and keeps status and history in
lockstep; side effects of a transition (inventory release, refunds) belong to
the orchestrator.

State Diagram:

    ┌─────────┐  payment ok   ┌───────────┐            ┌────────────┐
    │ PENDING │ ────────────▶ │ CONFIRMED │ ─────────▶ │ PROCESSING │
    └────┬────┘               └─────┬─────┘            └──────┬─────┘
         │ timeout                  │                         │
         ▼                          │                         ▼
    ┌───────────┐                   │                    ┌─────────┐
    │ ABANDONED │                   │                    │ SHIPPED │
    └───────────┘                   ▼                    └────┬────┘
                              ┌───────────┐                   ▼
       PENDING ─────────────▶ │ CANCELLED │             ┌───────────┐
       PROCESSING ──────────▶ └─────┬─────┘             │ DELIVERED │
                                    │                   └─────┬─────┘
                                    ▼                         │
                               ┌──────────┐                   │
                               │ REFUNDED │ ◀─────────────────┘
                               └──────────┘
"""

from collections.abc import Callable
from typing import Any

from ordersaga.core.exceptions import InvalidTransition
from ordersaga.core.types import Order, OrderStatus, StatusHistoryEntry, utcnow

TransitionHook = Callable[[Order, OrderStatus, OrderStatus], Any]


class OrderStateMachine:
    """
    State machine for the order lifecycle.

    Usage:
        >>> sm = OrderStateMachine()
        >>> sm.can_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)
        True
        >>> order = sm.apply_transition(order, OrderStatus.CONFIRMED, "Payment successful", "system")
    """

    # Valid transitions: from_status -> {to_status, ...}
    VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
        OrderStatus.PENDING: frozenset(
            {OrderStatus.CONFIRMED, OrderStatus.CANCELLED, OrderStatus.ABANDONED}
        ),
        OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
        OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
        OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
        OrderStatus.DELIVERED: frozenset({OrderStatus.REFUNDED}),
        OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
        OrderStatus.ABANDONED: frozenset(),  # Terminal
        OrderStatus.REFUNDED: frozenset(),  # Terminal
    }

    def __init__(self, on_transition: TransitionHook | None = None):
        """
        Args:
            on_transition: Optional callback invoked after each applied transition
        """
        self._on_transition = on_transition

    def allowed_transitions(self, from_status: OrderStatus) -> frozenset[OrderStatus]:
        return self.VALID_TRANSITIONS.get(from_status, frozenset())

    def can_transition(self, from_status: OrderStatus, to_status: OrderStatus) -> bool:
        return to_status in self.allowed_transitions(from_status)

    def is_terminal(self, status: OrderStatus) -> bool:
        return not self.allowed_transitions(status)

    def validate_transition(self, order: Order, to_status: OrderStatus) -> None:
        """
        Raises:
            InvalidTransition: If ``to_status`` is not reachable from the order's status
        """
        if not self.can_transition(order.status, to_status):
            raise InvalidTransition(order.id, order.status, to_status)

    def apply_transition(
        self,
        order: Order,
        to_status: OrderStatus,
        reason: str = "",
        actor: str = "system",
    ) -> Order:
        """
        Move an order to ``to_status``.

        Appends exactly one history entry and sets the matching side timestamp
        (delivered_at, cancelled_at/cancel_reason, abandoned_at). Nothing is
        written when the transition is illegal.

        Args:
            order: The order to mutate
            to_status: Target status
            reason: Why the status changes
            actor: Who changes it (user id, admin id or "system")

        Returns:
            The same order, mutated

        Raises:
            InvalidTransition: If the transition is not in the table
        """
        old_status = order.status
        self.validate_transition(order, to_status)

        now = utcnow()
        order.status_history.append(
            StatusHistoryEntry(status=to_status, timestamp=now, reason=reason or "", actor=actor or "system")
        )
        order.status = to_status
        order.updated_at = now

        if to_status == OrderStatus.DELIVERED and order.delivered_at is None:
            order.delivered_at = now
        elif to_status == OrderStatus.CANCELLED and order.cancelled_at is None:
            order.cancelled_at = now
            order.cancel_reason = reason
        elif to_status == OrderStatus.ABANDONED and order.abandoned_at is None:
            order.abandoned_at = now

        if self._on_transition:
            self._on_transition(order, old_status, to_status)

        return order
