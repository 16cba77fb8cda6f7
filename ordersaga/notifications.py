"""
Order lifecycle notifications.

Publication is fire-and-forget: the dispatcher runs each publish as a
detached asyncio task that the saga never awaits. Delivery is at-most-once
and best effort; a failed publish is logged and counted, never retried and
never propagated to the saga.

Event types:
    order.created, order.cancelled, order.abandoned,
    order.abandonment_reminder, order.processing, order.shipped,
    order.delivered, order.refunded
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from ordersaga.core.logger import get_logger
from ordersaga.core.types import Order

logger = get_logger(__name__)

ORDER_CREATED = "order.created"
ORDER_CANCELLED = "order.cancelled"
ORDER_ABANDONED = "order.abandoned"
ORDER_ABANDONMENT_REMINDER = "order.abandonment_reminder"


def status_event(status_value: str) -> str:
    """Event type for a status change, e.g. ``order.shipped``."""
    return f"order.{status_value}"


class NotificationPublisher(ABC):
    """Publisher contract for order events."""

    @abstractmethod
    async def publish(self, event_type: str, order_snapshot: dict[str, Any]) -> None: ...


class InMemoryNotificationPublisher(NotificationPublisher):
    """
    Publisher that keeps events in memory for inspection.

    Usage:
        >>> publisher = InMemoryNotificationPublisher()
        >>> await publisher.publish("order.created", order.to_dict())
        >>> publisher.events_of("order.created")
    """

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    async def publish(self, event_type: str, order_snapshot: dict[str, Any]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append((event_type, order_snapshot))

    def events_of(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for kind, payload in self.events if kind == event_type]

    def clear(self) -> None:
        self.events.clear()


class LoggingNotificationPublisher(NotificationPublisher):
    """Publisher that only logs events. Useful for demos and local runs."""

    async def publish(self, event_type: str, order_snapshot: dict[str, Any]) -> None:
        logger.info(
            f"Event {event_type} for order {order_snapshot.get('order_number')} "
            f"(status={order_snapshot.get('status')})"
        )


class NotificationDispatcher:
    """
    Runs publishes as detached tasks.

    Task references are held until completion so they are not garbage
    collected mid-flight. ``drain()`` waits for outstanding publishes, for
    graceful shutdown and tests.
    """

    def __init__(self, publisher: NotificationPublisher, metrics: Any = None):
        self.publisher = publisher
        self._metrics = metrics
        self._tasks: set[asyncio.Task] = set()
        self.failures = 0

    def dispatch(self, event_type: str, order: Order) -> asyncio.Task:
        """Schedule a publish of ``order``'s snapshot and return immediately."""
        snapshot = order.to_dict()
        task = asyncio.create_task(self._publish(event_type, snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _publish(self, event_type: str, snapshot: dict[str, Any]) -> None:
        try:
            await self.publisher.publish(event_type, snapshot)
        except Exception as e:
            self.failures += 1
            if self._metrics is not None:
                self._metrics.record_notification_failure(event_type)
            logger.warning(
                f"Failed to publish {event_type} for order {snapshot.get('order_number')}: {e}"
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every outstanding publish to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
