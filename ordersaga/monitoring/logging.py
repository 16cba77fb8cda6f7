"""
Structured logging for order saga execution

JSON formatting and context propagation so every log line emitted while a
saga runs carries the order number, the current saga step and a correlation
id, including lines from compensation paths.
"""

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context propagated across awaits within one saga task
order_context: ContextVar[dict[str, Any]] = ContextVar("order_context", default={})


def set_order_context(
    order_number: str | None = None,
    saga_step: str | None = None,
    correlation_id: str | None = None,
) -> None:
    """Update the current saga context, keeping fields that are not passed."""
    context = dict(order_context.get({}))
    if order_number is not None:
        context["order_number"] = order_number
    if saga_step is not None:
        context["saga_step"] = saga_step
    if correlation_id is not None:
        context["correlation_id"] = correlation_id
    order_context.set(context)


def clear_order_context() -> None:
    order_context.set({})


class OrderJsonFormatter(logging.Formatter):
    """
    JSON formatter for order saga logs with structured fields
    """

    _EXTRA_FIELDS = (
        "order_id",
        "order_number",
        "saga_step",
        "correlation_id",
        "error_code",
        "duration_ms",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._build_base_entry(record)
        self._add_order_context(log_entry)
        self._add_record_extras(log_entry, record)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)

    def _build_base_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

    def _add_order_context(self, log_entry: dict[str, Any]) -> None:
        context = order_context.get({})
        for key in ("order_number", "saga_step", "correlation_id"):
            if context.get(key):
                log_entry[key] = context[key]

    def _add_record_extras(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for name in self._EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value not in (None, ""):
                log_entry[name] = value


class OrderContextFilter(logging.Filter):
    """Copy the current saga context onto every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = order_context.get({})
        record.order_number = context.get("order_number", "")
        record.saga_step = context.get("saga_step", "")
        record.correlation_id = context.get("correlation_id", "")
        return True


def setup_json_logging(level: int | str = logging.INFO, logger_name: str = "ordersaga") -> logging.Handler:
    """
    Attach a JSON stream handler to the ordersaga logger.

    Returns:
        The installed handler, so callers can remove it again.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(OrderJsonFormatter())
    handler.addFilter(OrderContextFilter())

    logger = logging.getLogger(logger_name)
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler
