"""
Abandoned Order Reconciler - periodic sweep over stuck PENDING orders.

The trigger (cron, timer, CLI) lives outside this module; ``run_once()`` is
one sweep. For each PENDING order older than ``abandon_after``:

* payment not COMPLETED: transition to ABANDONED ("Payment timeout"),
  release its inventory hold, publish ``order.abandoned`` and, when the order
  is still inside ``reminder_window``, an abandonment reminder;
* payment COMPLETED (the saga crashed between capture and confirmation):
  finish the confirmation, transition to CONFIRMED and finalize inventory.

Status updates are conditional on the version read by the sweep, so two
sweeps running at once cannot both win the same order. Orders that another
writer already moved are skipped, not treated as errors.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ordersaga.core.calls import bounded
from ordersaga.core.config import OrderSagaConfig
from ordersaga.core.exceptions import ConcurrentModification, InvalidTransition
from ordersaga.core.logger import get_logger
from ordersaga.core.types import Order, OrderStatus, PaymentStatus, utcnow
from ordersaga.gateways.base import InventoryGateway
from ordersaga.notifications import (
    ORDER_ABANDONED,
    ORDER_ABANDONMENT_REMINDER,
    ORDER_CREATED,
    NotificationDispatcher,
)
from ordersaga.storage.base import OrderRepository

logger = get_logger(__name__)

ABANDON_REASON = "Payment timeout"
RECOVERY_REASON = "Payment recovered by reconciler"


@dataclass
class ReconcileReport:
    """Outcome of one sweep. Lists hold order ids."""

    scanned: int = 0
    abandoned: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    reminded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped_run: bool = False
    """True when the sweep did not run because another one was in progress."""


class AbandonedOrderReconciler:
    def __init__(
        self,
        repository: OrderRepository,
        inventory: InventoryGateway,
        dispatcher: NotificationDispatcher,
        config: OrderSagaConfig | None = None,
        metrics: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.inventory = inventory
        self.dispatcher = dispatcher
        self.config = config or OrderSagaConfig()
        self.metrics = metrics
        self._clock = clock
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> ReconcileReport:
        """
        Run one sweep.

        Overlapping calls on the same instance return immediately with
        ``skipped_run=True``. Per-order failures are logged and reported;
        they never abort the sweep. Nothing is retried inline, the next
        scheduled run picks up whatever is still PENDING.
        """
        if self._running:
            logger.info("Reconciliation already running, skipping")
            return ReconcileReport(skipped_run=True)

        self._running = True
        try:
            stale = await bounded(
                "find_pending",
                self.repository.find_pending_older_than(self.config.abandon_after),
                self.config.gateway_timeout,
            )
            report = ReconcileReport(scanned=len(stale))
            logger.info(f"Found {len(stale)} stale pending orders")

            for order in stale:
                if order.payment.status == PaymentStatus.COMPLETED:
                    await self._recover_paid_order(order, report)
                else:
                    await self._abandon_order(order, report)

            self._record(report)
            logger.info(
                f"Reconciliation completed: {len(report.abandoned)} abandoned, "
                f"{len(report.recovered)} recovered, {len(report.skipped)} skipped, "
                f"{len(report.failed)} failed"
            )
            return report
        finally:
            self._running = False

    async def _abandon_order(self, order: Order, report: ReconcileReport) -> None:
        abandoned = await self._transition(order, OrderStatus.ABANDONED, ABANDON_REASON, report)
        if abandoned is None:
            return

        try:
            await bounded(
                "release_inventory",
                self.inventory.release(order.items, order.id),
                self.config.gateway_timeout,
            )
        except Exception:
            logger.error(
                f"Failed to release inventory for abandoned order {order.order_number}",
                exc_info=True,
            )
            if self.metrics is not None:
                self.metrics.record_compensation_failure("release_inventory")

        report.abandoned.append(order.id)
        self.dispatcher.dispatch(ORDER_ABANDONED, abandoned)

        if self._clock() - abandoned.created_at <= self.config.reminder_window:
            report.reminded.append(order.id)
            self.dispatcher.dispatch(ORDER_ABANDONMENT_REMINDER, abandoned)

    async def _recover_paid_order(self, order: Order, report: ReconcileReport) -> None:
        confirmed = await self._transition(order, OrderStatus.CONFIRMED, RECOVERY_REASON, report)
        if confirmed is None:
            return

        try:
            await bounded(
                "finalize_inventory",
                self.inventory.finalize(order.items, order.id),
                self.config.gateway_timeout,
            )
        except Exception:
            logger.error(
                f"Failed to finalize inventory for recovered order {order.order_number}",
                exc_info=True,
            )
            if self.metrics is not None:
                self.metrics.record_compensation_failure("finalize_inventory")

        report.recovered.append(order.id)
        self.dispatcher.dispatch(ORDER_CREATED, confirmed)

    async def _transition(
        self, order: Order, to_status: OrderStatus, reason: str, report: ReconcileReport
    ) -> Order | None:
        try:
            return await bounded(
                "update_status",
                self.repository.update_status(
                    order.id, to_status, reason, "system", expected_version=order.version
                ),
                self.config.gateway_timeout,
            )
        except (InvalidTransition, ConcurrentModification) as e:
            logger.info(f"Skipping order {order.order_number}: {e}")
            report.skipped.append(order.id)
        except Exception:
            logger.error(f"Failed to reconcile order {order.order_number}", exc_info=True)
            report.failed.append(order.id)
        return None

    def _record(self, report: ReconcileReport) -> None:
        if self.metrics is None:
            return
        self.metrics.record_reconcile("abandoned", len(report.abandoned))
        self.metrics.record_reconcile("recovered", len(report.recovered))
        self.metrics.record_reconcile("skipped", len(report.skipped))
        self.metrics.record_reconcile("failed", len(report.failed))
