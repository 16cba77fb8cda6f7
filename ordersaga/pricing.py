"""
Pricing Engine - subtotal, tax, shipping and total for a basket.

Pure computation, no I/O. All money is Decimal, rounded once to cents with
half-away-from-zero at order creation time. Existing orders are never
re-priced.

Example:
    >>> engine = PricingEngine()
    >>> pricing = engine.compute_pricing(items, ShippingAddress(..., state="CA"))
    >>> pricing.total
    Decimal('163.13')
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from ordersaga.core.types import OrderItem, Pricing, ShippingAddress

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half away from zero."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _default_tax_rates() -> dict[str, Decimal]:
    return {
        "CA": Decimal("0.0875"),
        "NY": Decimal("0.08"),
        "TX": Decimal("0.0625"),
        "FL": Decimal("0.06"),
    }


@dataclass
class PricingConfig:
    """
    Rate tables and thresholds used by the pricing engine.

    Attributes:
        default_tax_rate: Rate used for unknown or missing states
        tax_rates: Two-letter state code -> tax rate
        free_shipping_threshold: Subtotal at or above which shipping is free
        express_zones: States shipped at the reduced express rate
        express_rate: Flat shipping rate for express zones
        standard_rate: Flat shipping rate everywhere else
    """

    default_tax_rate: Decimal = Decimal("0.08")
    tax_rates: dict[str, Decimal] = field(default_factory=_default_tax_rates)
    free_shipping_threshold: Decimal = Decimal("100.00")
    express_zones: frozenset[str] = frozenset({"CA", "NY", "TX"})
    express_rate: Decimal = Decimal("5.99")
    standard_rate: Decimal = Decimal("10.00")

    def __post_init__(self) -> None:
        self.default_tax_rate = Decimal(str(self.default_tax_rate))
        self.tax_rates = {
            state.upper(): Decimal(str(rate)) for state, rate in self.tax_rates.items()
        }
        self.free_shipping_threshold = Decimal(str(self.free_shipping_threshold))
        self.express_zones = frozenset(state.upper() for state in self.express_zones)
        self.express_rate = Decimal(str(self.express_rate))
        self.standard_rate = Decimal(str(self.standard_rate))


class PricingEngine:
    """Computes order pricing from enriched items and a shipping address."""

    def __init__(self, config: PricingConfig | None = None):
        self.config = config or PricingConfig()

    def tax_rate(self, state: str | None) -> Decimal:
        if not state:
            return self.config.default_tax_rate
        return self.config.tax_rates.get(state.upper(), self.config.default_tax_rate)

    def shipping_cost(self, subtotal: Decimal, shipping_address: ShippingAddress | None) -> Decimal:
        if subtotal >= self.config.free_shipping_threshold:
            return ZERO
        state = shipping_address.state if shipping_address else None
        if state and state.upper() in self.config.express_zones:
            return self.config.express_rate
        return self.config.standard_rate

    def compute_pricing(
        self, items: Iterable[OrderItem], shipping_address: ShippingAddress | None
    ) -> Pricing:
        """
        Price a basket.

        Each component is rounded first and the total is derived from the
        rounded components, so ``total == subtotal + tax + shipping - discount``
        holds exactly.
        """
        items = list(items)
        if not items:
            return Pricing(subtotal=ZERO, tax=ZERO, shipping=ZERO, discount=ZERO, total=ZERO)

        raw_subtotal = sum((Decimal(item.subtotal) for item in items), ZERO)
        state = shipping_address.state if shipping_address else None

        subtotal = round_money(raw_subtotal)
        tax = round_money(raw_subtotal * self.tax_rate(state))
        shipping = round_money(self.shipping_cost(raw_subtotal, shipping_address))
        discount = ZERO
        total = subtotal + tax + shipping - discount

        return Pricing(subtotal=subtotal, tax=tax, shipping=shipping, discount=discount, total=total)
