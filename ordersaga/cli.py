"""
OrderSaga CLI - Built with Click.

Operator commands for inspecting pricing and the status state machine, and
for exercising the saga and the reconciler against in-memory collaborators.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal, InvalidOperation

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ordersaga.core.config import OrderSagaConfig
from ordersaga.core.exceptions import OrderSagaError
from ordersaga.core.logger import configure_default_logging
from ordersaga.core.types import (
    LineItemRequest,
    Order,
    OrderItem,
    OrderRequest,
    OrderStatus,
    PaymentInfo,
    PaymentMethod,
    PaymentStatus,
    ProductRecord,
    ShippingAddress,
    UserRecord,
    utcnow,
)
from ordersaga.gateways.memory import (
    InMemoryInventoryGateway,
    InMemoryPaymentGateway,
    InMemoryProductCatalog,
    InMemoryUserDirectory,
)
from ordersaga.notifications import InMemoryNotificationPublisher
from ordersaga.orchestrator import OrderSagaOrchestrator
from ordersaga.pricing import PricingEngine
from ordersaga.ratelimit import SlidingWindowRateLimiter
from ordersaga.state_machine import OrderStateMachine
from ordersaga.storage.memory import InMemoryOrderRepository

console = Console()

DEMO_USER = UserRecord(id="user-1", email="ada@example.com")
DEMO_PRODUCTS = (
    ProductRecord(id="SKU-BOOK", name="Field Guide", price=Decimal("24.50"), stock=20),
    ProductRecord(id="SKU-LAMP", name="Desk Lamp", price=Decimal("89.00"), stock=5),
    ProductRecord(id="SKU-MUG", name="Enamel Mug", price=Decimal("12.00"), stock=40),
)


# ============================================================================
# CLI Group
# ============================================================================


class OrderedGroup(click.Group):
    """Click Group that lists commands in the order they were added."""

    def list_commands(self, ctx):
        return list(self.commands.keys())


@click.group(cls=OrderedGroup)
@click.version_option(version="0.1.0", prog_name="ordersaga")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file (default: environment variables)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log saga steps to stderr")
@click.pass_context
def cli(ctx, config_path, verbose):
    """
    OrderSaga - order creation saga with compensations.

    \b
    Commands:
      price            Price a basket for a shipping state
      transitions      Show the order status state machine
      demo             Run one order saga against in-memory services
      reconcile        Sweep a fixture of stale pending orders
    """
    ctx.ensure_object(dict)
    try:
        config = (
            OrderSagaConfig.from_file(config_path)
            if config_path
            else OrderSagaConfig.from_env(load_dotenv=True)
        )
    except (ValueError, OSError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e

    ctx.obj["config"] = config
    if verbose:
        configure_default_logging(config.log_level)


# ============================================================================
# ordersaga price
# ============================================================================


def _parse_item(value: str) -> tuple[Decimal, int]:
    """Parse ``PRICE`` or ``PRICExQTY``."""
    price_part, _, quantity_part = value.lower().partition("x")
    try:
        price = Decimal(price_part)
        quantity = int(quantity_part) if quantity_part else 1
    except (InvalidOperation, ValueError) as e:
        raise click.BadParameter(f"expected PRICE or PRICExQTY, got '{value}'") from e
    if quantity < 1 or price < 0:
        raise click.BadParameter(f"price and quantity must be positive in '{value}'")
    return price, quantity


@click.command()
@click.option("--state", "-s", default=None, help="Shipping state code (e.g. CA)")
@click.option(
    "--item",
    "-i",
    "items",
    multiple=True,
    help="Line item as PRICE or PRICExQTY, repeatable (e.g. -i 24.50x2)",
)
@click.option("--subtotal", type=str, default=None, help="Price a single subtotal instead of items")
@click.pass_context
def price_cmd(ctx, state, items, subtotal):
    """
    Price a basket.

    \b
    Examples:
        ordersaga price --state CA --subtotal 150
        ordersaga price -s FL -i 24.50x2 -i 1.00
    """
    engine = PricingEngine(ctx.obj["config"].pricing)

    line_items: list[OrderItem] = []
    if subtotal is not None:
        amount, _ = _parse_item(subtotal)
        line_items.append(OrderItem.priced("subtotal", "Subtotal", amount, 1))
    for n, value in enumerate(items, start=1):
        amount, quantity = _parse_item(value)
        line_items.append(OrderItem.priced(f"item-{n}", f"Item {n}", amount, quantity))

    address = ShippingAddress(full_name="-", street="-", city="-", zip_code="-", state=state)
    pricing = engine.compute_pricing(line_items, address)

    table = Table(title=f"Pricing ({state.upper() if state else 'default rate'})")
    table.add_column("Component", style="cyan")
    table.add_column("Amount", justify="right")
    table.add_row("Subtotal", str(pricing.subtotal))
    table.add_row(f"Tax ({engine.tax_rate(state)})", str(pricing.tax))
    table.add_row("Shipping", str(pricing.shipping))
    table.add_row("Discount", str(pricing.discount))
    table.add_row("[bold]Total[/bold]", f"[bold]{pricing.total}[/bold]")
    console.print(table)


# ============================================================================
# ordersaga transitions
# ============================================================================


@click.command()
@click.option(
    "--from",
    "from_status",
    type=click.Choice([s.value for s in OrderStatus]),
    default=None,
    help="Only show transitions out of this status",
)
def transitions_cmd(from_status):
    """Show the order status state machine."""
    state_machine = OrderStateMachine()
    statuses = [OrderStatus(from_status)] if from_status else list(OrderStatus)

    table = Table(title="Order Status Transitions")
    table.add_column("From", style="cyan")
    table.add_column("Allowed targets", style="green")
    for status in statuses:
        targets = sorted(s.value for s in state_machine.allowed_transitions(status))
        table.add_row(status.value, ", ".join(targets) if targets else "[dim](terminal)[/dim]")
    console.print(table)


# ============================================================================
# ordersaga demo
# ============================================================================


def _demo_orchestrator(config: OrderSagaConfig) -> OrderSagaOrchestrator:
    return OrderSagaOrchestrator(
        repository=InMemoryOrderRepository(),
        inventory=InMemoryInventoryGateway({p.id: p.stock for p in DEMO_PRODUCTS}),
        payments=InMemoryPaymentGateway(),
        users=InMemoryUserDirectory([DEMO_USER]),
        catalog=InMemoryProductCatalog(DEMO_PRODUCTS),
        publisher=InMemoryNotificationPublisher(),
        config=config,
        rate_limiter=SlidingWindowRateLimiter.from_config(config),
    )


def _demo_address(state: str) -> ShippingAddress:
    return ShippingAddress(
        full_name="Ada Lovelace",
        street="12 Analytical Way",
        city="Springfield",
        zip_code="90210",
        state=state,
    )


async def _run_demo(orchestrator: OrderSagaOrchestrator, request: OrderRequest) -> Order | OrderSagaError:
    try:
        return await orchestrator.create_order(request, DEMO_USER.id)
    except OrderSagaError as e:
        return e
    finally:
        await orchestrator.dispatcher.drain()


@click.command()
@click.option("--state", "-s", default="CA", show_default=True, help="Shipping state code")
@click.option("--decline", is_flag=True, help="Force the payment provider to decline")
@click.pass_context
def demo_cmd(ctx, state, decline):
    """
    Run one order saga end to end against in-memory services.

    \b
    Examples:
        ordersaga demo
        ordersaga demo --decline   # watch the compensations run
    """
    config = ctx.obj["config"]
    orchestrator = _demo_orchestrator(config)
    if decline:
        orchestrator.payments.decline_reason = "Card declined"

    request = OrderRequest(
        items=[LineItemRequest("SKU-BOOK", 2), LineItemRequest("SKU-MUG", 1)],
        shipping_address=_demo_address(state),
        payment_method=PaymentMethod.CREDIT_CARD,
    )
    outcome = asyncio.run(_run_demo(orchestrator, request))

    if isinstance(outcome, OrderSagaError):
        console.print(
            Panel.fit(
                f"[bold red]{outcome.code}[/bold red]\n{outcome.message}",
                title="Saga failed",
                border_style="red",
            )
        )
    else:
        _print_order(outcome)

    inventory = orchestrator.inventory
    table = Table(title="Inventory calls")
    table.add_column("Operation", style="cyan")
    table.add_column("Product")
    table.add_column("Qty", justify="right")
    for operation, _, product_id, quantity in inventory.calls:
        table.add_row(operation, product_id, str(quantity))
    console.print(table)

    events = orchestrator.dispatcher.publisher.events
    console.print(f"Events published: {', '.join(e for e, _ in events) or '[dim]none[/dim]'}")

    if config.metrics_enabled:
        summary = orchestrator.metrics.get_metrics()
        console.print(
            f"Sagas: {summary['total_executed']} run, success rate {summary['success_rate']}"
        )

    if isinstance(outcome, OrderSagaError):
        ctx.exit(1)


def _print_order(order: Order) -> None:
    table = Table(title=f"Order {order.order_number}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"[green]{order.status.value}[/green]")
    table.add_row("Payment", f"{order.payment.status.value} ({order.payment.transaction_id})")
    for item in order.items:
        table.add_row(item.product_name, f"{item.quantity} x {item.price} = {item.subtotal}")
    for name, amount in order.pricing.to_dict().items():
        table.add_row(name.capitalize(), amount)
    table.add_row(
        "History", " -> ".join(entry.status.value for entry in order.status_history)
    )
    console.print(table)


# ============================================================================
# ordersaga reconcile
# ============================================================================


async def _seed_stale_orders(orchestrator: OrderSagaOrchestrator, config: OrderSagaConfig) -> None:
    """PENDING orders at various ages, holding inventory like a crashed saga would."""
    now = utcnow()
    product = DEMO_PRODUCTS[0]
    ages = (
        ("fresh", timedelta(minutes=5), PaymentStatus.PENDING),
        ("stale", config.abandon_after + timedelta(minutes=10), PaymentStatus.PENDING),
        ("old", config.reminder_window + timedelta(hours=1), PaymentStatus.FAILED),
        ("paid", config.abandon_after + timedelta(minutes=10), PaymentStatus.COMPLETED),
    )
    for label, age, payment_status in ages:
        item = OrderItem.priced(product.id, product.name, product.price, 1)
        order = Order(
            user_id=DEMO_USER.id,
            user_email=DEMO_USER.email,
            items=[item],
            pricing=orchestrator.pricing_engine.compute_pricing([item], _demo_address("CA")),
            shipping_address=_demo_address("CA"),
            payment=PaymentInfo(method=PaymentMethod.CREDIT_CARD, status=payment_status),
            notes=label,
            created_at=now - age,
        )
        await orchestrator.inventory.reserve([item], order.id)
        await orchestrator.repository.create(order)


async def _run_reconcile(orchestrator: OrderSagaOrchestrator, config: OrderSagaConfig):
    await _seed_stale_orders(orchestrator, config)
    report = await orchestrator.handle_abandoned_orders()
    await orchestrator.dispatcher.drain()
    page = await orchestrator.repository.find_by_user_id(DEMO_USER.id, limit=100)
    return report, page.data


@click.command()
@click.pass_context
def reconcile_cmd(ctx):
    """
    Run one reconciler sweep over a fixture of stale pending orders.

    Seeds a fresh order, a stale unpaid order, an old unpaid order and a
    stale paid order, then shows what the sweep did with each.
    """
    config = ctx.obj["config"]
    orchestrator = _demo_orchestrator(config)
    report, orders = asyncio.run(_run_reconcile(orchestrator, config))

    outcomes = {
        **dict.fromkeys(report.abandoned, "abandoned"),
        **dict.fromkeys(report.recovered, "recovered"),
        **dict.fromkeys(report.skipped, "skipped"),
        **dict.fromkeys(report.failed, "[red]failed[/red]"),
    }
    table = Table(title=f"Reconciliation ({report.scanned} stale)")
    table.add_column("Order", style="cyan")
    table.add_column("Fixture")
    table.add_column("Status")
    table.add_column("Sweep")
    table.add_column("Reminder")
    for order in orders:
        table.add_row(
            order.order_number,
            order.notes,
            order.status.value,
            outcomes.get(order.id, "[dim]untouched[/dim]"),
            "yes" if order.id in report.reminded else "",
        )
    console.print(table)

    events = orchestrator.dispatcher.publisher.events
    console.print(f"Events published: {', '.join(e for e, _ in events) or '[dim]none[/dim]'}")


# ============================================================================
# Register commands
# ============================================================================

cli.add_command(price_cmd, name="price")
cli.add_command(transitions_cmd, name="transitions")
cli.add_command(demo_cmd, name="demo")
cli.add_command(reconcile_cmd, name="reconcile")


if __name__ == "__main__":
    cli()
