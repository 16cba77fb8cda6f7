"""
Order repository interface.

The saga only needs this contract; storage technology is an implementation
detail. Implementations must make each mutation atomic per order document
and must run status changes through the state machine.
"""

from abc import ABC, abstractmethod
from datetime import timedelta

from ordersaga.core.types import Order, OrderPage, OrderStats, OrderStatus, PaymentStatus


class OrderRepository(ABC):
    """
    Abstract base class for order persistence.

    All implementations should support:
    - Atomic single-document create / status update / payment update
    - Conditional status updates (``expected_version``) so concurrent
      writers cannot both win the same order
    - Lookups used by the reconciler and the read operations
    """

    # ==========================================================================
    # Core CRUD Operations
    # ==========================================================================

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """
        Persist a new order.

        Raises:
            DuplicateOrderNumber: If the order number is already taken
        """
        ...

    @abstractmethod
    async def find_by_id(self, order_id: str) -> Order | None: ...

    @abstractmethod
    async def find_by_order_number(self, order_number: str) -> Order | None: ...

    @abstractmethod
    async def update_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        reason: str,
        actor: str,
        expected_version: int | None = None,
    ) -> Order:
        """
        Transition an order through the state machine and store it.

        Args:
            order_id: Order to update
            new_status: Target status
            reason: Reason recorded in history
            actor: Who requested the change
            expected_version: When given, the update only applies if the stored
                order still has this version

        Raises:
            OrderNotFound: If no such order exists
            InvalidTransition: If the state machine rejects the transition
            ConcurrentModification: If ``expected_version`` does not match
        """
        ...

    @abstractmethod
    async def update_payment_status(
        self,
        order_id: str,
        new_payment_status: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Order:
        """
        Raises:
            OrderNotFound: If no such order exists
        """
        ...

    # ==========================================================================
    # Query Operations
    # ==========================================================================

    @abstractmethod
    async def find_pending_older_than(self, duration: timedelta) -> list[Order]:
        """
        PENDING orders created more than ``duration`` ago, oldest first.

        Paid orders are included; the reconciler decides what to do with each.
        """
        ...

    @abstractmethod
    async def find_by_user_id(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: OrderStatus | None = None,
    ) -> OrderPage:
        """A user's orders, newest first."""
        ...

    @abstractmethod
    async def get_order_stats(self, user_id: str) -> OrderStats: ...
