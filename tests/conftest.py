"""
Pytest configuration and shared fixtures for order saga tests

Every fixture wires in-memory collaborators, so tests never touch the network.
Collaborators are function scoped: each test gets fresh stock, payments and
storage.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from ordersaga.core.config import OrderSagaConfig
from ordersaga.core.types import (
    LineItemRequest,
    Order,
    OrderItem,
    OrderRequest,
    PaymentInfo,
    PaymentMethod,
    Pricing,
    ProductRecord,
    ShippingAddress,
    UserRecord,
)
from ordersaga.gateways.memory import (
    InMemoryInventoryGateway,
    InMemoryPaymentGateway,
    InMemoryProductCatalog,
    InMemoryUserDirectory,
)
from ordersaga.monitoring.logging import clear_order_context
from ordersaga.monitoring.metrics import OrderMetrics
from ordersaga.notifications import InMemoryNotificationPublisher
from ordersaga.orchestrator import OrderSagaOrchestrator
from ordersaga.storage.memory import InMemoryOrderRepository

# ============================================
# AUTO-USE FIXTURES
# ============================================


@pytest.fixture(autouse=True)
def clean_order_context():
    """Reset the logging context so saga fields never leak between tests."""
    clear_order_context()
    yield
    clear_order_context()


# ============================================
# DATA FIXTURES
# ============================================


@pytest.fixture
def user():
    return UserRecord(id="user-1", email="ada@example.com")


@pytest.fixture
def products():
    return [
        ProductRecord(id="SKU-1", name="Field Guide", price=Decimal("25.00"), stock=10),
        ProductRecord(id="SKU-2", name="Desk Lamp", price=Decimal("50.00"), stock=10),
        ProductRecord(id="SKU-3", name="Enamel Mug", price=Decimal("12.00"), stock=10),
    ]


@pytest.fixture
def address():
    return ShippingAddress(
        full_name="Ada Lovelace",
        street="12 Analytical Way",
        city="Los Angeles",
        zip_code="90001",
        state="CA",
    )


@pytest.fixture
def order_request(address):
    """Two line items, 2 x 25.00 + 1 x 50.00 = 100.00 shipped to CA."""
    return OrderRequest(
        items=[LineItemRequest("SKU-1", 2), LineItemRequest("SKU-2", 1)],
        shipping_address=address,
        payment_method=PaymentMethod.CREDIT_CARD,
        payment_details={"card_token": "tok_visa"},
    )


@pytest.fixture
def make_order(address):
    """Factory for stand-alone orders (repository and state machine tests)."""

    def _make(user_id="user-1", total="100.00", **kwargs):
        item = OrderItem.priced("SKU-1", "Field Guide", Decimal(total), 1)
        pricing = Pricing(
            subtotal=Decimal(total),
            tax=Decimal("0.00"),
            shipping=Decimal("0.00"),
            discount=Decimal("0.00"),
            total=Decimal(total),
        )
        return Order(
            user_id=user_id,
            user_email=f"{user_id}@example.com",
            items=[item],
            pricing=pricing,
            shipping_address=address,
            payment=PaymentInfo(method=PaymentMethod.CREDIT_CARD),
            **kwargs,
        )

    return _make


# ============================================
# COLLABORATOR FIXTURES
# ============================================


@pytest.fixture
def config():
    return OrderSagaConfig(
        gateway_timeout=0.5,
        abandon_after=timedelta(minutes=30),
        reminder_window=timedelta(hours=1),
    )


@pytest.fixture
def repository():
    return InMemoryOrderRepository()


@pytest.fixture
def inventory(products):
    return InMemoryInventoryGateway({p.id: p.stock for p in products})


@pytest.fixture
def payments():
    return InMemoryPaymentGateway()


@pytest.fixture
def publisher():
    return InMemoryNotificationPublisher()


@pytest.fixture
def metrics():
    return OrderMetrics()


@pytest.fixture
def make_orchestrator(repository, inventory, payments, user, products, publisher, config, metrics):
    """Factory for an orchestrator over the shared fakes; keyword overrides replace any of them."""

    def _make(**overrides):
        kwargs = {
            "repository": repository,
            "inventory": inventory,
            "payments": payments,
            "users": InMemoryUserDirectory([user]),
            "catalog": InMemoryProductCatalog(products),
            "publisher": publisher,
            "config": config,
            "metrics": metrics,
        }
        kwargs.update(overrides)
        return OrderSagaOrchestrator(**kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()
