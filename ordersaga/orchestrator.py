"""
Order Saga Orchestrator - creates orders across non-atomic collaborators.

One fixed saga shape. Forward steps run strictly in this order, and every
failure after reservation runs the matching compensation before the original
failure is raised:

    validate request / user / items   (no compensation, nothing held yet)
    check availability                (no compensation)
    compute pricing                   (pure)
    reserve inventory      -> release everything reserved so far
    persist PENDING order  -> release reservations
    capture payment        -> release reservations, cancel order, payment FAILED
    confirm + finalize     -> order CONFIRMED, inventory deducted
    publish order.created  (detached, best effort)

Compensation errors are logged and counted, never surfaced to the caller.
Once reservation begins the saga is shielded from caller cancellation so it
always reaches a success or a fully compensated failure.

Quick Start:
    >>> orchestrator = OrderSagaOrchestrator(
    ...     repository=InMemoryOrderRepository(),
    ...     inventory=inventory,
    ...     payments=payments,
    ...     users=users,
    ...     catalog=catalog,
    ...     publisher=InMemoryNotificationPublisher(),
    ... )
    >>> order = await orchestrator.create_order(request, user_id="user-1")
    >>> order.status
    <OrderStatus.CONFIRMED: 'confirmed'>
"""

import asyncio
import functools
import time
import uuid
from collections.abc import Awaitable, Sequence
from typing import Any

from ordersaga.core.calls import bounded
from ordersaga.core.config import OrderSagaConfig
from ordersaga.core.exceptions import (
    CancellationNotAllowed,
    ConcurrentModification,
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
from ordersaga.core.logger import get_logger
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
    UserRecord,
)
from ordersaga.gateways.base import InventoryGateway, PaymentGateway, ProductCatalog, UserDirectory
from ordersaga.monitoring.logging import clear_order_context, set_order_context
from ordersaga.monitoring.metrics import OrderMetrics
from ordersaga.notifications import (
    ORDER_CANCELLED,
    ORDER_CREATED,
    NotificationDispatcher,
    NotificationPublisher,
    status_event,
)
from ordersaga.pricing import PricingEngine
from ordersaga.ratelimit import RateLimiter, UnlimitedRateLimiter
from ordersaga.reconciler import AbandonedOrderReconciler, ReconcileReport
from ordersaga.state_machine import OrderStateMachine
from ordersaga.storage.base import OrderRepository

logger = get_logger(__name__)

PAYMENT_FAILED_REASON = "Payment failed"
CONFIRMATION_FAILED_REASON = "Order confirmation failed"

# Statuses another writer can move a PENDING order to while its charge is in flight
CLOSED_BEFORE_CONFIRMATION = frozenset(
    {OrderStatus.CANCELLED, OrderStatus.ABANDONED, OrderStatus.REFUNDED}
)


class OrderSagaOrchestrator:
    """
    Drives order creation and owns the side effects of status changes.

    All collaborators are injected; the orchestrator holds no global state.
    Sagas for different orders can run concurrently on the same instance.
    """

    def __init__(
        self,
        repository: OrderRepository,
        inventory: InventoryGateway,
        payments: PaymentGateway,
        users: UserDirectory,
        catalog: ProductCatalog,
        publisher: NotificationPublisher,
        config: OrderSagaConfig | None = None,
        pricing_engine: PricingEngine | None = None,
        state_machine: OrderStateMachine | None = None,
        rate_limiter: RateLimiter | None = None,
        metrics: Any = None,
    ):
        self.repository = repository
        self.inventory = inventory
        self.payments = payments
        self.users = users
        self.catalog = catalog
        self.config = config or OrderSagaConfig()
        self.pricing_engine = pricing_engine or PricingEngine(self.config.pricing)
        self.state_machine = state_machine or OrderStateMachine()
        self.rate_limiter = rate_limiter or UnlimitedRateLimiter()
        self.metrics = metrics if metrics is not None else OrderMetrics()
        self.dispatcher = NotificationDispatcher(publisher, self.metrics)
        self.reconciler = AbandonedOrderReconciler(
            repository, inventory, self.dispatcher, self.config, self.metrics
        )
        self._detached_sagas: set[asyncio.Task] = set()

    # ==========================================================================
    # Order creation saga
    # ==========================================================================

    async def create_order(self, request: OrderRequest, user_id: str) -> Order:
        """
        Place an order.

        Returns:
            The CONFIRMED order

        Raises:
            RateLimitExceeded, ItemInvalid, UserInvalid, InsufficientStock:
                validation failures, nothing to compensate
            ReservationFailed, PersistenceFailed, PaymentFailed:
                raised after compensation has run
            ConcurrentModification: the order changed while being confirmed
        """
        started = time.perf_counter()
        outcome = "success"
        detached = False
        self.metrics.saga_started()
        set_order_context(saga_step="validate", correlation_id=uuid.uuid4().hex)
        try:
            order = await self._prepare_order(request, user_id)

            # From reservation on the saga runs to a terminal outcome even if
            # the caller goes away.
            saga = asyncio.create_task(
                self._execute_from_reservation(order, request.payment_details)
            )
            try:
                return await asyncio.shield(saga)
            except asyncio.CancelledError:
                detached = True
                self._detached_sagas.add(saga)
                saga.add_done_callback(
                    functools.partial(self._finish_detached_saga, user_id, started)
                )
                raise
        except OrderSagaError as e:
            outcome = e.code
            logger.warning(f"Order saga failed for user {user_id}: {e}")
            raise
        except asyncio.CancelledError:
            outcome = "CALLER_CANCELLED"
            raise
        except Exception:
            outcome = "UNEXPECTED_ERROR"
            logger.exception(f"Order saga crashed for user {user_id}")
            raise
        finally:
            if not detached:
                self.metrics.saga_finished()
                self.metrics.record_saga(outcome, time.perf_counter() - started)
            clear_order_context()

    def _finish_detached_saga(self, user_id: str, started: float, saga: asyncio.Task) -> None:
        """Log and record the outcome of a saga whose caller was cancelled."""
        self._detached_sagas.discard(saga)
        if saga.cancelled():
            outcome = "CALLER_CANCELLED"
            logger.warning(f"Detached order saga for user {user_id} was cancelled")
        elif isinstance(saga.exception(), OrderSagaError):
            error = saga.exception()
            outcome = error.code
            logger.warning(f"Detached order saga failed for user {user_id}: {error}")
        elif saga.exception() is not None:
            outcome = "UNEXPECTED_ERROR"
            logger.error(
                f"Detached order saga crashed for user {user_id}", exc_info=saga.exception()
            )
        else:
            outcome = "success"
            logger.info(
                f"Detached order saga for user {user_id} confirmed {saga.result().order_number}"
            )
        self.metrics.saga_finished()
        self.metrics.record_saga(outcome, time.perf_counter() - started)

    async def _prepare_order(self, request: OrderRequest, user_id: str) -> Order:
        """Validate, enrich and price. Nothing is held yet, so nothing to compensate."""
        await self._check_rate_limit(user_id)
        payment_method = self._validate_request(request)
        user = await self._validate_user(user_id)
        items = await self._validate_and_enrich_items(request.items)
        await self._check_inventory(items)

        set_order_context(saga_step="pricing")
        pricing = self.pricing_engine.compute_pricing(items, request.shipping_address)

        order = Order(
            user_id=user.id,
            user_email=user.email,
            items=items,
            pricing=pricing,
            shipping_address=request.shipping_address,
            payment=PaymentInfo(method=payment_method),
            notes=request.notes or "",
        )
        set_order_context(order_number=order.order_number)
        return order

    async def _execute_from_reservation(
        self, order: Order, payment_details: dict[str, Any]
    ) -> Order:
        await self._reserve_inventory(order)
        created = await self._persist_order(order)
        result = await self._capture_payment(created, payment_details)

        if not result.success:
            await self._compensate_payment_failure(created)
            raise PaymentFailed(
                f"Payment processing failed for order {created.order_number}: {result.error}",
                details={"order_id": created.id, "order_number": created.order_number},
            )

        confirmed = await self._confirm_order(created, result.transaction_id)
        self.dispatcher.dispatch(ORDER_CREATED, confirmed)
        logger.info(f"Order {confirmed.order_number} confirmed ({confirmed.pricing.total})")
        return confirmed

    # --- validation ------------------------------------------------------------

    async def _check_rate_limit(self, user_id: str) -> None:
        if not await self.rate_limiter.hit(user_id):
            msg = "Too many requests, please try again later"
            raise RateLimitExceeded(msg, details={"user_id": user_id})

    def _validate_request(self, request: OrderRequest) -> PaymentMethod:
        if not request.items:
            msg = "Order must contain at least one item"
            raise ItemInvalid(msg)

        address = request.shipping_address
        if address is None:
            msg = "Shipping address is required"
            raise ItemInvalid(msg)
        missing = address.missing_fields()
        if missing:
            msg = f"Shipping address is missing: {', '.join(missing)}"
            raise ItemInvalid(msg, details={"missing": missing})

        if not request.payment_method:
            msg = "Payment method is required"
            raise ItemInvalid(msg)
        try:
            return PaymentMethod(request.payment_method)
        except ValueError:
            msg = f"Unsupported payment method: {request.payment_method}"
            raise ItemInvalid(msg) from None

    async def _validate_user(self, user_id: str) -> UserRecord:
        user = await bounded(
            "validate_user", self.users.get_user(user_id), self.config.gateway_timeout
        )
        if user is None:
            msg = f"User {user_id} not found"
            raise UserInvalid(msg, details={"user_id": user_id})
        if not user.is_active:
            msg = "User account is not active"
            raise UserInvalid(msg, details={"user_id": user_id})
        return user

    async def _validate_and_enrich_items(self, requested: Sequence[LineItemRequest]) -> list[OrderItem]:
        """Check quantities and snapshot current catalog name and price."""
        max_quantity = self.config.max_items_per_order
        enriched: list[OrderItem] = []

        for line in requested:
            if line.quantity < 1:
                msg = f"Invalid quantity for item {line.product_id}"
                raise ItemInvalid(msg, details={"product_id": line.product_id})
            if line.quantity > max_quantity:
                msg = f"Quantity exceeds maximum of {max_quantity}"
                raise ItemInvalid(msg, details={"product_id": line.product_id})

            product = await bounded(
                "enrich_items",
                self.catalog.get_product(line.product_id),
                self.config.gateway_timeout,
            )
            if product is None:
                msg = f"Product {line.product_id} not found"
                raise ItemInvalid(msg, details={"product_id": line.product_id})
            if not product.is_active:
                msg = f"Product {product.name} is no longer available"
                raise ItemInvalid(msg, details={"product_id": line.product_id})

            enriched.append(OrderItem.priced(product.id, product.name, product.price, line.quantity))

        return enriched

    async def _check_inventory(self, items: Sequence[OrderItem]) -> None:
        set_order_context(saga_step="check_inventory")
        available = await bounded(
            "check_inventory",
            self.inventory.check_availability(items),
            self.config.gateway_timeout,
        )
        if not available:
            products = ", ".join(item.product_id for item in items)
            msg = f"Insufficient stock for order items ({products})"
            raise InsufficientStock(msg)

    # --- reservation and persistence ------------------------------------------

    async def _reserve_inventory(self, order: Order) -> None:
        """
        Reserve item by item. On the first rejection release everything
        reserved so far, including the item whose call failed (its outcome at
        the gateway is unknown and release is idempotent).
        """
        set_order_context(saga_step="reserve_inventory")
        reserved: list[OrderItem] = []

        for item in order.items:
            try:
                accepted = await bounded(
                    "reserve_inventory",
                    self.inventory.reserve([item], order.id),
                    self.config.gateway_timeout,
                )
            except Exception as e:
                logger.warning(f"Reservation of {item.product_id} failed: {e}")
                await self._release_inventory(order, [*reserved, item])
                msg = f"Could not reserve {item.quantity} x {item.product_id}: {e}"
                raise ReservationFailed(msg, details={"product_id": item.product_id}) from e

            if not accepted:
                await self._release_inventory(order, reserved)
                msg = f"Could not reserve {item.quantity} x {item.product_id}"
                raise ReservationFailed(msg, details={"product_id": item.product_id})

            reserved.append(item)

    async def _persist_order(self, order: Order) -> Order:
        set_order_context(saga_step="persist_order")
        try:
            return await bounded(
                "persist_order", self.repository.create(order), self.config.gateway_timeout
            )
        except Exception as e:
            await self._release_inventory(order, order.items)
            msg = f"Failed to persist order {order.order_number}: {e}"
            raise PersistenceFailed(msg, details={"order_number": order.order_number}) from e

    # --- payment ----------------------------------------------------------------

    async def _capture_payment(self, order: Order, payment_details: dict[str, Any]) -> PaymentResult:
        """Gateway errors and timeouts count as a failed capture."""
        set_order_context(saga_step="capture_payment")
        try:
            return await bounded(
                "capture_payment",
                self.payments.capture(order.pricing.total, payment_details),
                self.config.gateway_timeout,
            )
        except Exception as e:
            logger.warning(f"Payment gateway error for order {order.order_number}: {e}")
            return PaymentResult(success=False, error=str(e))

    async def _compensate_payment_failure(self, order: Order) -> None:
        set_order_context(saga_step="compensate_payment")
        await self._release_inventory(order, order.items)
        await self._compensate(
            "cancel_order",
            self.repository.update_status(
                order.id, OrderStatus.CANCELLED, PAYMENT_FAILED_REASON, "system"
            ),
        )
        await self._compensate(
            "mark_payment_failed",
            self.repository.update_payment_status(order.id, PaymentStatus.FAILED),
        )

    async def _confirm_order(self, order: Order, transaction_id: str | None) -> Order:
        """
        Record the payment, transition to CONFIRMED, finalize inventory.

        If the payment cannot be recorded the capture is refunded and the order
        cancelled. If the order was closed concurrently a capture that is still
        COMPLETED is refunded. Any other failure leaves a PENDING order with a
        COMPLETED payment, which the reconciler confirms on its next run.
        """
        set_order_context(saga_step="confirm_order")
        try:
            paid = await bounded(
                "record_payment",
                self.repository.update_payment_status(
                    order.id, PaymentStatus.COMPLETED, transaction_id
                ),
                self.config.gateway_timeout,
            )
        except Exception as e:
            order.payment.transaction_id = transaction_id
            await self._refund_capture(order)
            await self._release_inventory(order, order.items)
            await self._compensate(
                "cancel_order",
                self.repository.update_status(
                    order.id, OrderStatus.CANCELLED, CONFIRMATION_FAILED_REASON, "system"
                ),
            )
            msg = f"Failed to record payment for order {order.order_number}: {e}"
            raise PersistenceFailed(msg, details={"order_id": order.id}) from e

        try:
            confirmed = await bounded(
                "confirm_order",
                self.repository.update_status(
                    order.id,
                    OrderStatus.CONFIRMED,
                    "Payment successful",
                    "system",
                    expected_version=paid.version,
                ),
                self.config.gateway_timeout,
            )
        except (ConcurrentModification, InvalidTransition) as e:
            raise await self._handle_confirm_conflict(paid) from e
        except Exception as e:
            logger.error(
                f"Order {order.order_number} paid but not confirmed, left for reconciliation",
                exc_info=True,
            )
            msg = f"Failed to confirm order {order.order_number}: {e}"
            raise PersistenceFailed(msg, details={"order_id": order.id}) from e

        await self._compensate(
            "finalize_inventory", self.inventory.finalize(confirmed.items, confirmed.id)
        )
        return confirmed

    async def _handle_confirm_conflict(self, paid: Order) -> ConcurrentModification:
        """
        Compensate an order that another writer closed while the charge was in
        flight. Whoever closed it may already have refunded the payment, so
        only a payment that is still COMPLETED is refunded here.
        """
        current = await self._compensate("reload_order", self.repository.find_by_id(paid.id))
        if current is None:
            logger.error(
                f"Order {paid.order_number} changed during confirmation and could not be reloaded"
            )
            return ConcurrentModification(paid.id, paid.version, -1)

        if current.status in CLOSED_BEFORE_CONFIRMATION:
            logger.warning(
                f"Order {paid.order_number} moved to {current.status.value} during payment"
            )
            await self._release_inventory(current, current.items)
            if current.payment.status == PaymentStatus.COMPLETED:
                await self._refund(current)
        return ConcurrentModification(paid.id, paid.version, current.version)

    # ==========================================================================
    # Status changes with side effects
    # ==========================================================================

    async def cancel_order(
        self,
        order_id: str,
        reason: str,
        actor: str = "system",
        user_id: str | None = None,
    ) -> Order:
        """
        Cancel an order, release its inventory and refund a completed payment.

        Args:
            order_id: Order to cancel
            reason: Cancellation reason, stored in history and cancel_reason
            actor: Who cancels (user id, admin id or "system")
            user_id: When given, the order must belong to this user

        Raises:
            OrderNotFound, Unauthorized, CancellationNotAllowed, ConcurrentModification
        """
        order = await self._load(order_id)
        if user_id is not None and order.user_id != user_id:
            msg = "Unauthorized: Cannot cancel this order"
            raise Unauthorized(msg, details={"order_id": order_id})

        if not self.state_machine.can_transition(order.status, OrderStatus.CANCELLED):
            raise CancellationNotAllowed(
                order.id,
                order.status,
                OrderStatus.CANCELLED,
                f"Cancellation not allowed for {order.status.value.upper()} orders",
            )

        cancelled = await bounded(
            "cancel_order",
            self.repository.update_status(
                order.id, OrderStatus.CANCELLED, reason, actor, expected_version=order.version
            ),
            self.config.gateway_timeout,
        )
        logger.info(f"Order {order.order_number} cancelled by {actor}: {reason}")

        if order.status == OrderStatus.PENDING:
            await self._release_inventory(cancelled, cancelled.items)
        else:
            # Confirmed orders have already been deducted from stock
            await self._compensate(
                "restock_inventory", self.inventory.restock(cancelled.items, cancelled.id)
            )
        if cancelled.payment.status == PaymentStatus.COMPLETED:
            cancelled = await self._refund(cancelled)

        self.dispatcher.dispatch(ORDER_CANCELLED, cancelled)
        return cancelled

    async def update_order_status(
        self,
        order_id: str,
        new_status: OrderStatus | str,
        reason: str = "",
        actor: str = "system",
    ) -> Order:
        """
        Administrative status change through the state machine.

        CANCELLED goes through cancel_order() so inventory and refunds are
        handled. CONFIRMED needs a completed payment and finalizes the hold.
        ABANDONED releases the hold. REFUNDED and ABANDONED refund a payment
        that is still COMPLETED.

        Raises:
            OrderNotFound, InvalidTransition, ConcurrentModification
        """
        order = await self._load(order_id)
        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise InvalidTransition(order.id, order.status, new_status) from None

        if target == OrderStatus.CANCELLED:
            return await self.cancel_order(order.id, reason, actor)

        self.state_machine.validate_transition(order, target)
        if target == OrderStatus.CONFIRMED and order.payment.status != PaymentStatus.COMPLETED:
            raise InvalidTransition(
                order.id,
                order.status,
                target,
                f"Cannot confirm order {order.order_number} without a completed payment",
            )

        updated = await bounded(
            "update_status",
            self.repository.update_status(
                order.id, target, reason, actor, expected_version=order.version
            ),
            self.config.gateway_timeout,
        )

        if target == OrderStatus.CONFIRMED:
            await self._compensate(
                "finalize_inventory", self.inventory.finalize(updated.items, updated.id)
            )
            self.dispatcher.dispatch(ORDER_CREATED, updated)
            return updated

        if target == OrderStatus.ABANDONED:
            await self._release_inventory(updated, updated.items)
            if updated.payment.status == PaymentStatus.COMPLETED:
                updated = await self._refund(updated)
        elif target == OrderStatus.REFUNDED and updated.payment.status == PaymentStatus.COMPLETED:
            updated = await self._refund(updated)

        self.dispatcher.dispatch(status_event(target.value), updated)
        return updated

    # ==========================================================================
    # Reads
    # ==========================================================================

    async def get_order(self, order_id: str, user_id: str) -> Order:
        """
        Raises:
            OrderNotFound: If the order does not exist
            Unauthorized: If the order belongs to another user
        """
        order = await self._load(order_id)
        if order.user_id != user_id:
            msg = "Unauthorized access to order"
            raise Unauthorized(msg, details={"order_id": order_id})
        return order

    async def get_user_orders(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        status: OrderStatus | None = None,
    ) -> OrderPage:
        return await self.repository.find_by_user_id(user_id, page=page, limit=limit, status=status)

    async def get_order_stats(self, user_id: str) -> OrderStats:
        return await self.repository.get_order_stats(user_id)

    async def handle_abandoned_orders(self) -> ReconcileReport:
        """Run one reconciler sweep (the schedule is the caller's concern)."""
        return await self.reconciler.run_once()

    # ==========================================================================
    # Helpers
    # ==========================================================================

    async def _load(self, order_id: str) -> Order:
        order = await bounded(
            "load_order", self.repository.find_by_id(order_id), self.config.gateway_timeout
        )
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def _release_inventory(self, order: Order, items: Sequence[OrderItem]) -> None:
        if items:
            await self._compensate("release_inventory", self.inventory.release(items, order.id))

    async def _refund(self, order: Order) -> Order:
        """Refund a COMPLETED payment and mark it REFUNDED. Failures are logged."""
        if not await self._refund_capture(order):
            return order
        updated = await self._compensate(
            "mark_payment_refunded",
            self.repository.update_payment_status(order.id, PaymentStatus.REFUNDED),
        )
        return updated or order

    async def _refund_capture(self, order: Order) -> bool:
        result = await self._compensate("refund_payment", self.payments.refund(order))
        if result is None:
            return False
        if not result.success:
            logger.error(f"Refund declined for order {order.order_number}: {result.error}")
            self.metrics.record_compensation_failure("refund_payment")
            return False
        logger.info(f"Refunded order {order.order_number} ({result.refund_id})")
        return True

    async def _compensate(self, step: str, awaitable: Awaitable[Any]) -> Any:
        """
        Run a compensating action. Errors are logged and counted, never raised,
        so the original failure is the one the caller sees.
        """
        try:
            return await bounded(step, awaitable, self.config.gateway_timeout)
        except Exception:
            logger.error(f"Compensation '{step}' failed", exc_info=True)
            self.metrics.record_compensation_failure(step)
            return None
