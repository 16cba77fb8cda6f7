"""
Tests for the order creation saga: forward path, validation and compensations.
"""

import asyncio
import dataclasses
from decimal import Decimal

import pytest

from ordersaga.core.exceptions import (
    ConcurrentModification,
    DuplicateOrderNumber,
    GatewayError,
    InsufficientStock,
    ItemInvalid,
    OrderSagaError,
    PaymentFailed,
    PersistenceFailed,
    RateLimitExceeded,
    ReservationFailed,
    UserInvalid,
)
from ordersaga.core.types import (
    LineItemRequest,
    OrderStatus,
    PaymentStatus,
    ProductRecord,
    ShippingAddress,
    UserRecord,
)
from ordersaga.gateways.memory import (
    InMemoryInventoryGateway,
    InMemoryProductCatalog,
    InMemoryUserDirectory,
)
from ordersaga.ratelimit import SlidingWindowRateLimiter
from ordersaga.storage.memory import InMemoryOrderRepository


async def _only_order(repository):
    page = await repository.find_by_user_id("user-1")
    assert page.total == 1
    return page.data[0]


def _assert_reservations_released(inventory, reference=None):
    reserved = sorted(inventory.calls_for("reserve", reference))
    released = sorted(inventory.calls_for("release", reference))
    assert reserved == released
    assert inventory.held() == 0


# ============================================
# FAULTY COLLABORATORS
# ============================================


class FailingCreateRepository(InMemoryOrderRepository):
    def __init__(self, error):
        super().__init__()
        self.error = error

    async def create(self, order):
        raise self.error


class FailingPaymentRecordRepository(InMemoryOrderRepository):
    async def update_payment_status(self, order_id, new_payment_status, transaction_id=None):
        if new_payment_status == PaymentStatus.COMPLETED:
            msg = "write conflict"
            raise RuntimeError(msg)
        return await super().update_payment_status(order_id, new_payment_status, transaction_id)


class CancelDuringPaymentRepository(InMemoryOrderRepository):
    """Simulates the user cancelling while the charge is in flight."""

    async def update_payment_status(self, order_id, new_payment_status, transaction_id=None):
        paid = await super().update_payment_status(order_id, new_payment_status, transaction_id)
        if new_payment_status == PaymentStatus.COMPLETED:
            await super().update_status(order_id, OrderStatus.CANCELLED, "User cancel", "user-1")
        return paid


class UnreadableAfterCancelRepository(CancelDuringPaymentRepository):
    async def find_by_id(self, order_id):
        msg = "replica unavailable"
        raise RuntimeError(msg)


class CancelBeforeConfirmRepository(InMemoryOrderRepository):
    """The user cancels through the orchestrator between payment and confirmation."""

    orchestrator = None

    async def update_status(self, order_id, new_status, reason, actor, expected_version=None):
        if new_status == OrderStatus.CONFIRMED:
            await self.orchestrator.cancel_order(order_id, "Changed my mind", "user-1", user_id="user-1")
        return await super().update_status(order_id, new_status, reason, actor, expected_version)


class RecoverBeforeConfirmRepository(InMemoryOrderRepository):
    """The reconciler confirms the paid order before the saga does."""

    async def update_status(self, order_id, new_status, reason, actor, expected_version=None):
        if new_status == OrderStatus.CONFIRMED and expected_version is not None:
            await super().update_status(order_id, OrderStatus.CONFIRMED, "Payment recovered", "system")
        return await super().update_status(order_id, new_status, reason, actor, expected_version)


class SlowConfirmRepository(InMemoryOrderRepository):
    async def update_status(self, order_id, new_status, reason, actor, expected_version=None):
        if new_status == OrderStatus.CONFIRMED:
            await asyncio.sleep(5)
        return await super().update_status(order_id, new_status, reason, actor, expected_version)


class LostResponseInventory(InMemoryInventoryGateway):
    """Reserves SKU-2 but the response never makes it back."""

    async def reserve(self, items, reference):
        accepted = await super().reserve(items, reference)
        if any(item.product_id == "SKU-2" for item in items):
            msg = "connection reset"
            raise GatewayError(msg)
        return accepted


# ============================================
# TESTS
# ============================================


class TestSuccessfulSaga:
    """Happy path"""

    @pytest.mark.asyncio
    async def test_order_confirmed(self, orchestrator, order_request):
        order = await orchestrator.create_order(order_request, "user-1")

        assert order.status == OrderStatus.CONFIRMED
        assert order.payment.status == PaymentStatus.COMPLETED
        assert order.payment.transaction_id == "TXN-000001"
        assert [e.status for e in order.status_history] == [
            OrderStatus.PENDING,
            OrderStatus.CONFIRMED,
        ]
        assert order.status_history[-1].reason == "Payment successful"

    @pytest.mark.asyncio
    async def test_items_enriched_and_priced(self, orchestrator, order_request):
        order = await orchestrator.create_order(order_request, "user-1")

        assert [(i.product_name, i.price, i.subtotal) for i in order.items] == [
            ("Field Guide", Decimal("25.00"), Decimal("50.00")),
            ("Desk Lamp", Decimal("50.00"), Decimal("50.00")),
        ]
        assert order.pricing.subtotal == Decimal("100.00")
        assert order.pricing.tax == Decimal("8.75")
        assert order.pricing.shipping == Decimal("0.00")
        assert order.pricing.total == Decimal("108.75")
        assert order.user_email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_payment_captures_order_total(self, orchestrator, order_request, payments):
        order = await orchestrator.create_order(order_request, "user-1")
        assert payments.captures == [(order.pricing.total, "TXN-000001")]

    @pytest.mark.asyncio
    async def test_inventory_finalized(self, orchestrator, order_request, inventory):
        order = await orchestrator.create_order(order_request, "user-1")

        assert inventory.available("SKU-1") == 8
        assert inventory.available("SKU-2") == 9
        assert inventory.sold("SKU-1") == 2
        assert inventory.held() == 0
        assert sorted(inventory.calls_for("finalize", order.id)) == [("SKU-1", 2), ("SKU-2", 1)]

    @pytest.mark.asyncio
    async def test_order_persisted(self, orchestrator, order_request, repository):
        order = await orchestrator.create_order(order_request, "user-1")
        assert await repository.find_by_id(order.id) == order

    @pytest.mark.asyncio
    async def test_order_created_published(self, orchestrator, order_request, publisher):
        order = await orchestrator.create_order(order_request, "user-1")
        await orchestrator.dispatcher.drain()

        events = publisher.events_of("order.created")
        assert len(events) == 1
        assert events[0]["order_number"] == order.order_number
        assert events[0]["status"] == "confirmed"

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, orchestrator, order_request, metrics):
        await orchestrator.create_order(order_request, "user-1")

        summary = metrics.get_metrics()
        assert summary["total_successful"] == 1
        assert summary["active"] == 0


class TestValidation:
    """Validation failures happen before any side effect"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "changes",
        [
            {"items": []},
            {"items": [LineItemRequest("SKU-1", 0)]},
            {"items": [LineItemRequest("SKU-1", 51)]},
            {"items": [LineItemRequest("SKU-404", 1)]},
            {"shipping_address": None},
            {
                "shipping_address": ShippingAddress(
                    full_name="Ada", street="1 Main St", city="", zip_code="90001"
                )
            },
            {"payment_method": None},
            {"payment_method": "bitcoin"},
        ],
        ids=[
            "no-items",
            "zero-quantity",
            "over-max-quantity",
            "unknown-product",
            "no-address",
            "incomplete-address",
            "no-payment-method",
            "unsupported-payment-method",
        ],
    )
    async def test_invalid_request(self, orchestrator, order_request, inventory, repository, changes):
        request = dataclasses.replace(order_request, **changes)

        with pytest.raises(ItemInvalid):
            await orchestrator.create_order(request, "user-1")

        assert inventory.calls == []
        assert repository.get_order_count() == 0

    @pytest.mark.asyncio
    async def test_payment_method_string_accepted(self, orchestrator, order_request):
        request = dataclasses.replace(order_request, payment_method="paypal")
        order = await orchestrator.create_order(request, "user-1")
        assert order.payment.method.value == "paypal"

    @pytest.mark.asyncio
    async def test_inactive_product(self, make_orchestrator, order_request, products):
        catalog = InMemoryProductCatalog(products)
        catalog.add(ProductRecord(id="SKU-2", name="Desk Lamp", price=Decimal("50.00"), is_active=False))
        orchestrator = make_orchestrator(catalog=catalog)

        with pytest.raises(ItemInvalid, match="no longer available"):
            await orchestrator.create_order(order_request, "user-1")

    @pytest.mark.asyncio
    async def test_unknown_user(self, orchestrator, order_request):
        with pytest.raises(UserInvalid):
            await orchestrator.create_order(order_request, "ghost")

    @pytest.mark.asyncio
    async def test_inactive_user(self, make_orchestrator, order_request):
        users = InMemoryUserDirectory([UserRecord(id="user-1", email="a@b.c", is_active=False)])
        orchestrator = make_orchestrator(users=users)

        with pytest.raises(UserInvalid, match="not active"):
            await orchestrator.create_order(order_request, "user-1")

    @pytest.mark.asyncio
    async def test_insufficient_stock(self, orchestrator, order_request, inventory, repository):
        request = dataclasses.replace(order_request, items=[LineItemRequest("SKU-1", 11)])

        with pytest.raises(InsufficientStock):
            await orchestrator.create_order(request, "user-1")

        assert inventory.calls == []
        assert repository.get_order_count() == 0

    @pytest.mark.asyncio
    async def test_repeated_lines_counted_against_stock(self, orchestrator, order_request, inventory):
        request = dataclasses.replace(
            order_request, items=[LineItemRequest("SKU-1", 6), LineItemRequest("SKU-1", 6)]
        )

        with pytest.raises(InsufficientStock):
            await orchestrator.create_order(request, "user-1")

        assert inventory.calls == []

    @pytest.mark.asyncio
    async def test_rate_limit(self, make_orchestrator, order_request):
        orchestrator = make_orchestrator(
            rate_limiter=SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
        )
        await orchestrator.create_order(order_request, "user-1")

        with pytest.raises(RateLimitExceeded):
            await orchestrator.create_order(order_request, "user-1")

    @pytest.mark.asyncio
    async def test_timeout_before_reservation_is_not_compensated(self, orchestrator, order_request, inventory):
        inventory.delay = 1.0

        with pytest.raises(GatewayError):
            await orchestrator.create_order(order_request, "user-1")

        assert inventory.calls == []

    @pytest.mark.asyncio
    async def test_failure_recorded_by_code(self, orchestrator, order_request, metrics):
        with pytest.raises(UserInvalid):
            await orchestrator.create_order(order_request, "ghost")

        assert metrics.get_metrics()["failures_by_code"] == {"USER_INVALID": 1}


class TestReservationFailure:
    """Partial reservations are released"""

    @pytest.mark.asyncio
    async def test_rejected_item_releases_earlier_items(self, orchestrator, order_request, inventory, repository):
        inventory.reject_products = {"SKU-2"}

        with pytest.raises(ReservationFailed):
            await orchestrator.create_order(order_request, "user-1")

        assert inventory.calls_for("reserve") == [("SKU-1", 2)]
        assert inventory.calls_for("release") == [("SKU-1", 2)]
        assert inventory.available("SKU-1") == 10
        assert inventory.held() == 0
        assert repository.get_order_count() == 0

    @pytest.mark.asyncio
    async def test_reserve_error_releases_current_item(self, make_orchestrator, order_request, products):
        inventory = LostResponseInventory({p.id: p.stock for p in products})
        orchestrator = make_orchestrator(inventory=inventory)

        with pytest.raises(ReservationFailed):
            await orchestrator.create_order(order_request, "user-1")

        _assert_reservations_released(inventory)
        assert inventory.available("SKU-2") == 10

    @pytest.mark.asyncio
    async def test_no_payment_attempted(self, orchestrator, order_request, inventory, payments):
        inventory.reject_products = {"SKU-1"}

        with pytest.raises(ReservationFailed):
            await orchestrator.create_order(order_request, "user-1")

        assert payments.captures == []


class TestPersistenceFailure:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [RuntimeError("database unavailable"), DuplicateOrderNumber("ORD-1-1")],
        ids=["storage-error", "duplicate-number"],
    )
    async def test_reservations_released(self, make_orchestrator, order_request, inventory, payments, error):
        orchestrator = make_orchestrator(repository=FailingCreateRepository(error))

        with pytest.raises(PersistenceFailed):
            await orchestrator.create_order(order_request, "user-1")

        _assert_reservations_released(inventory)
        assert inventory.available("SKU-1") == 10
        assert payments.captures == []


class TestPaymentFailure:
    """Decline, gateway error and timeout all compensate the same way"""

    @pytest.mark.asyncio
    async def test_decline_cancels_order(self, orchestrator, order_request, payments, repository, inventory):
        payments.decline_reason = "Card declined"

        with pytest.raises(PaymentFailed, match="Card declined"):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "Payment failed"
        assert order.payment.status == PaymentStatus.FAILED
        _assert_reservations_released(inventory, order.id)
        assert inventory.available("SKU-1") == 10
        assert inventory.available("SKU-2") == 10

    @pytest.mark.asyncio
    async def test_gateway_error(self, orchestrator, order_request, payments, repository, inventory):
        payments.error = ConnectionError("provider unreachable")

        with pytest.raises(PaymentFailed):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        _assert_reservations_released(inventory, order.id)

    @pytest.mark.asyncio
    async def test_timeout(self, orchestrator, order_request, payments, repository, inventory):
        payments.delay = 1.0

        with pytest.raises(PaymentFailed):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.FAILED
        _assert_reservations_released(inventory, order.id)

    @pytest.mark.asyncio
    async def test_no_created_event(self, orchestrator, order_request, payments, publisher):
        payments.decline_reason = "Card declined"

        with pytest.raises(PaymentFailed):
            await orchestrator.create_order(order_request, "user-1")
        await orchestrator.dispatcher.drain()

        assert publisher.events_of("order.created") == []

    @pytest.mark.asyncio
    async def test_compensation_failure_does_not_mask_error(
        self, orchestrator, order_request, payments, inventory, repository, metrics
    ):
        payments.decline_reason = "Card declined"
        inventory.fail_release = True

        with pytest.raises(PaymentFailed):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.FAILED
        assert metrics.get_metrics()["compensation_failures"] == {"release_inventory": 1}


class TestConfirmationFailure:
    """Failures after a successful charge"""

    @pytest.mark.asyncio
    async def test_payment_record_failure_refunds(self, make_orchestrator, order_request, payments, inventory):
        repository = FailingPaymentRecordRepository()
        orchestrator = make_orchestrator(repository=repository)

        with pytest.raises(PersistenceFailed):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "Order confirmation failed"
        assert payments.refunds == [order.id]
        _assert_reservations_released(inventory, order.id)

    @pytest.mark.asyncio
    async def test_cancelled_during_payment_refunds(self, make_orchestrator, order_request, payments, inventory):
        repository = CancelDuringPaymentRepository()
        orchestrator = make_orchestrator(repository=repository)

        with pytest.raises(ConcurrentModification):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        assert order.payment.status == PaymentStatus.REFUNDED
        assert payments.refunds == [order.id]
        _assert_reservations_released(inventory, order.id)

    @pytest.mark.asyncio
    async def test_cancel_order_during_payment_refunds_once(
        self, make_orchestrator, order_request, payments, inventory
    ):
        repository = CancelBeforeConfirmRepository()
        orchestrator = make_orchestrator(repository=repository)
        repository.orchestrator = orchestrator

        with pytest.raises(ConcurrentModification):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "Changed my mind"
        assert order.payment.status == PaymentStatus.REFUNDED
        assert payments.refunds == [order.id]
        _assert_reservations_released(inventory, order.id)

    @pytest.mark.asyncio
    async def test_recovered_order_is_not_refunded(self, make_orchestrator, order_request, payments):
        repository = RecoverBeforeConfirmRepository()
        orchestrator = make_orchestrator(repository=repository)

        with pytest.raises(ConcurrentModification):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.CONFIRMED
        assert order.payment.status == PaymentStatus.COMPLETED
        assert payments.refunds == []

    @pytest.mark.asyncio
    async def test_reload_failure_after_conflict(self, make_orchestrator, order_request, payments, metrics):
        repository = UnreadableAfterCancelRepository()
        orchestrator = make_orchestrator(repository=repository)

        with pytest.raises(ConcurrentModification) as exc_info:
            await orchestrator.create_order(order_request, "user-1")

        assert exc_info.value.actual_version == -1
        assert payments.refunds == []
        assert metrics.get_metrics()["compensation_failures"] == {"reload_order": 1}

    @pytest.mark.asyncio
    async def test_confirm_timeout_left_for_reconciler(self, make_orchestrator, order_request, inventory):
        repository = SlowConfirmRepository()
        orchestrator = make_orchestrator(repository=repository)

        with pytest.raises(PersistenceFailed):
            await orchestrator.create_order(order_request, "user-1")

        order = await _only_order(repository)
        assert order.status == OrderStatus.PENDING
        assert order.payment.status == PaymentStatus.COMPLETED
        assert inventory.held(order.id) == 3


class TestNotifications:
    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_saga(self, orchestrator, order_request, publisher, metrics):
        publisher.fail_with = RuntimeError("broker down")

        order = await orchestrator.create_order(order_request, "user-1")
        await orchestrator.dispatcher.drain()

        assert order.status == OrderStatus.CONFIRMED
        assert orchestrator.dispatcher.failures == 1
        assert metrics.get_metrics()["notification_failures"] == {"order.created": 1}


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_caller_cancellation_does_not_stop_saga(self, orchestrator, order_request, payments, repository):
        payments.delay = 0.1
        task = asyncio.create_task(orchestrator.create_order(order_request, "user-1"))

        for _ in range(100):
            if repository.get_order_count():
                break
            await asyncio.sleep(0.005)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        for _ in range(100):
            order = await _only_order(repository)
            if order.status != OrderStatus.PENDING:
                break
            await asyncio.sleep(0.01)

        assert order.status == OrderStatus.CONFIRMED
        assert order.payment.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_detached_saga_records_its_outcome(
        self, orchestrator, order_request, payments, repository, metrics
    ):
        payments.delay = 0.1
        task = asyncio.create_task(orchestrator.create_order(order_request, "user-1"))
        for _ in range(100):
            if repository.get_order_count():
                break
            await asyncio.sleep(0.005)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        for _ in range(100):
            if metrics.get_metrics()["total_executed"]:
                break
            await asyncio.sleep(0.01)

        snapshot = metrics.get_metrics()
        assert snapshot["total_successful"] == 1
        assert snapshot["failures_by_code"] == {}
        assert snapshot["active"] == 0
        assert not orchestrator._detached_sagas

    @pytest.mark.asyncio
    async def test_detached_saga_failure_is_retrieved(
        self, orchestrator, order_request, payments, repository, inventory, metrics
    ):
        payments.delay = 0.1
        payments.decline_reason = "Card declined"
        task = asyncio.create_task(orchestrator.create_order(order_request, "user-1"))
        for _ in range(100):
            if repository.get_order_count():
                break
            await asyncio.sleep(0.005)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        for _ in range(100):
            if metrics.get_metrics()["total_executed"]:
                break
            await asyncio.sleep(0.01)

        snapshot = metrics.get_metrics()
        assert snapshot["failures_by_code"] == {"PAYMENT_FAILED": 1}
        assert snapshot["active"] == 0
        order = await _only_order(repository)
        assert order.status == OrderStatus.CANCELLED
        _assert_reservations_released(inventory, order.id)

    @pytest.mark.asyncio
    async def test_last_units_sold_once(self, make_orchestrator, order_request):
        inventory = InMemoryInventoryGateway({"SKU-1": 6})
        orchestrator = make_orchestrator(inventory=inventory)
        request = dataclasses.replace(order_request, items=[LineItemRequest("SKU-1", 4)])

        results = await asyncio.gather(
            orchestrator.create_order(request, "user-1"),
            orchestrator.create_order(request, "user-1"),
            return_exceptions=True,
        )

        confirmed = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, OrderSagaError)]
        assert len(confirmed) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], (InsufficientStock, ReservationFailed))
        assert inventory.available("SKU-1") == 2
        assert inventory.held() == 0
