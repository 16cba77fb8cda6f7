"""
OrderSagaConfig - Configuration for the order saga and its reconciler.

Values come from dataclass defaults, environment variables (with optional
``.env`` loading) or a YAML file with ``${VAR:-default}`` substitution. The
config object is passed explicitly to the components that need it; there is
no process-wide configured instance.

Example (environment):
    >>> os.environ["ORDERSAGA_MAX_ITEMS_PER_ORDER"] = "20"
    >>> config = OrderSagaConfig.from_env()

Example (YAML file):
    >>> config = OrderSagaConfig.from_file("ordersaga.yaml")

    # In ordersaga.yaml:
    # order:
    #   max_items_per_order: ${MAX_ITEMS_PER_ORDER:-50}
    #   gateway_timeout: 10
    # reconciler:
    #   abandon_after_seconds: 1800
    #   reminder_window_seconds: 3600
    # pricing:
    #   tax_rates: {CA: 0.0875, NY: 0.08}
    #   express_zones: [CA, NY, TX]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from ordersaga.core.env import EnvManager
from ordersaga.core.logger import get_logger
from ordersaga.pricing import PricingConfig

logger = get_logger(__name__)

ENV_PREFIX = "ORDERSAGA_"


@dataclass
class OrderSagaConfig:
    """
    Configuration for ordersaga components.

    Attributes:
        max_items_per_order: Upper bound on one line item's quantity
        gateway_timeout: Seconds allowed for each repository/gateway call
        abandon_after: Age after which a PENDING unpaid order is abandoned
        reminder_window: Orders younger than this get an abandonment reminder
        rate_limit_requests: Order attempts allowed per key per window
        rate_limit_window: Rate limiter window in seconds
        metrics_enabled: Collect saga metrics
        log_level: Level for configure_default_logging()
        pricing: Tax and shipping tables
    """

    max_items_per_order: int = 50
    gateway_timeout: float = 30.0
    abandon_after: timedelta = timedelta(minutes=30)
    reminder_window: timedelta = timedelta(hours=1)
    rate_limit_requests: int = 100
    rate_limit_window: float = 60.0
    metrics_enabled: bool = True
    log_level: str = "INFO"
    pricing: PricingConfig = field(default_factory=PricingConfig)

    def __post_init__(self) -> None:
        if self.max_items_per_order < 1:
            msg = "max_items_per_order must be at least 1"
            raise ValueError(msg)
        if self.gateway_timeout <= 0:
            msg = "gateway_timeout must be positive"
            raise ValueError(msg)
        if self.abandon_after <= timedelta(0):
            msg = "abandon_after must be positive"
            raise ValueError(msg)

    @classmethod
    def from_env(cls, load_dotenv: bool = True, env: EnvManager | None = None) -> OrderSagaConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            ORDERSAGA_MAX_ITEMS_PER_ORDER: Per-item quantity ceiling
            ORDERSAGA_GATEWAY_TIMEOUT: Seconds per collaborator call
            ORDERSAGA_ABANDON_AFTER_SECONDS: PENDING timeout
            ORDERSAGA_REMINDER_WINDOW_SECONDS: Reminder window
            ORDERSAGA_RATE_LIMIT_REQUESTS / ORDERSAGA_RATE_LIMIT_WINDOW
            ORDERSAGA_METRICS: Enable metrics (true/false)
            ORDERSAGA_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR
            ORDERSAGA_DEFAULT_TAX_RATE, ORDERSAGA_FREE_SHIPPING_THRESHOLD,
            ORDERSAGA_EXPRESS_ZONES (comma separated), ORDERSAGA_EXPRESS_RATE,
            ORDERSAGA_STANDARD_RATE

        Args:
            load_dotenv: If True, loads .env before reading variables
            env: Environment manager to read from
        """
        env = env or EnvManager()
        if load_dotenv:
            env.load()

        defaults = cls()
        pricing_defaults = defaults.pricing

        pricing = PricingConfig(
            default_tax_rate=Decimal(
                env.get(f"{ENV_PREFIX}DEFAULT_TAX_RATE", str(pricing_defaults.default_tax_rate))
            ),
            tax_rates=dict(pricing_defaults.tax_rates),
            free_shipping_threshold=Decimal(
                env.get(
                    f"{ENV_PREFIX}FREE_SHIPPING_THRESHOLD",
                    str(pricing_defaults.free_shipping_threshold),
                )
            ),
            express_zones=frozenset(
                env.get_list(f"{ENV_PREFIX}EXPRESS_ZONES", sorted(pricing_defaults.express_zones))
            ),
            express_rate=Decimal(
                env.get(f"{ENV_PREFIX}EXPRESS_RATE", str(pricing_defaults.express_rate))
            ),
            standard_rate=Decimal(
                env.get(f"{ENV_PREFIX}STANDARD_RATE", str(pricing_defaults.standard_rate))
            ),
        )

        return cls(
            max_items_per_order=env.get_int(
                f"{ENV_PREFIX}MAX_ITEMS_PER_ORDER", defaults.max_items_per_order
            ),
            gateway_timeout=env.get_float(f"{ENV_PREFIX}GATEWAY_TIMEOUT", defaults.gateway_timeout),
            abandon_after=timedelta(
                seconds=env.get_float(
                    f"{ENV_PREFIX}ABANDON_AFTER_SECONDS", defaults.abandon_after.total_seconds()
                )
            ),
            reminder_window=timedelta(
                seconds=env.get_float(
                    f"{ENV_PREFIX}REMINDER_WINDOW_SECONDS",
                    defaults.reminder_window.total_seconds(),
                )
            ),
            rate_limit_requests=env.get_int(
                f"{ENV_PREFIX}RATE_LIMIT_REQUESTS", defaults.rate_limit_requests
            ),
            rate_limit_window=env.get_float(
                f"{ENV_PREFIX}RATE_LIMIT_WINDOW", defaults.rate_limit_window
            ),
            metrics_enabled=env.get_bool(f"{ENV_PREFIX}METRICS", defaults.metrics_enabled),
            log_level=(env.get(f"{ENV_PREFIX}LOG_LEVEL", defaults.log_level) or "INFO").upper(),
            pricing=pricing,
        )

    @classmethod
    def from_file(
        cls,
        file_path: str | Path,
        substitute_env: bool = True,
        env: EnvManager | None = None,
    ) -> OrderSagaConfig:
        """
        Load configuration from a YAML file.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        path = Path(file_path)
        if not path.exists():
            msg = f"Configuration file not found: {file_path}"
            raise FileNotFoundError(msg)

        with path.open() as f:
            data = yaml.safe_load(f)

        if not data:
            return cls()

        if substitute_env:
            env = env or EnvManager(project_root=path.parent)
            env.load()
            data = env.substitute_dict(data)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OrderSagaConfig:
        """Build a config from the sectioned layout used by YAML files."""
        defaults = cls()
        order_data = data.get("order", {}) or {}
        reconciler_data = data.get("reconciler", {}) or {}
        rate_data = data.get("rate_limit", {}) or {}
        obs_data = data.get("observability", {}) or {}

        return cls(
            max_items_per_order=int(
                order_data.get("max_items_per_order", defaults.max_items_per_order)
            ),
            gateway_timeout=float(order_data.get("gateway_timeout", defaults.gateway_timeout)),
            abandon_after=timedelta(
                seconds=float(
                    reconciler_data.get(
                        "abandon_after_seconds", defaults.abandon_after.total_seconds()
                    )
                )
            ),
            reminder_window=timedelta(
                seconds=float(
                    reconciler_data.get(
                        "reminder_window_seconds", defaults.reminder_window.total_seconds()
                    )
                )
            ),
            rate_limit_requests=int(rate_data.get("requests", defaults.rate_limit_requests)),
            rate_limit_window=float(rate_data.get("window_seconds", defaults.rate_limit_window)),
            metrics_enabled=_as_bool(obs_data.get("metrics", defaults.metrics_enabled)),
            log_level=str(obs_data.get("log_level", defaults.log_level)).upper(),
            pricing=cls._build_pricing(data.get("pricing", {}) or {}),
        )

    @staticmethod
    def _build_pricing(pricing_data: dict[str, Any]) -> PricingConfig:
        if not pricing_data:
            return PricingConfig()

        defaults = PricingConfig()
        tax_rates = pricing_data.get("tax_rates")
        return PricingConfig(
            default_tax_rate=Decimal(
                str(pricing_data.get("default_tax_rate", defaults.default_tax_rate))
            ),
            tax_rates=(
                {state: Decimal(str(rate)) for state, rate in tax_rates.items()}
                if tax_rates
                else defaults.tax_rates
            ),
            free_shipping_threshold=Decimal(
                str(pricing_data.get("free_shipping_threshold", defaults.free_shipping_threshold))
            ),
            express_zones=frozenset(pricing_data.get("express_zones", defaults.express_zones)),
            express_rate=Decimal(str(pricing_data.get("express_rate", defaults.express_rate))),
            standard_rate=Decimal(str(pricing_data.get("standard_rate", defaults.standard_rate))),
        )


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")
