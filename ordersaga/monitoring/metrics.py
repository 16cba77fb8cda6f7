"""
Metrics collection for order sagas
"""

from typing import Any


class OrderMetrics:
    """Collect and expose order saga metrics in process"""

    def __init__(self):
        self.metrics = {
            "total_executed": 0,
            "total_successful": 0,
            "total_failed": 0,
            "average_execution_time": 0.0,
            "failures_by_code": {},
            "compensation_failures": {},
            "notification_failures": {},
            "reconciler": {},
            "active": 0,
        }

    def saga_started(self) -> None:
        self.metrics["active"] += 1

    def saga_finished(self) -> None:
        self.metrics["active"] -= 1

    def record_saga(self, outcome: str, duration: float) -> None:
        """
        Record a finished saga.

        Args:
            outcome: "success" or the failure code (e.g. "PAYMENT_FAILED")
            duration: Execution time in seconds
        """
        self.metrics["total_executed"] += 1
        if outcome == "success":
            self.metrics["total_successful"] += 1
        else:
            self.metrics["total_failed"] += 1
            by_code = self.metrics["failures_by_code"]
            by_code[outcome] = by_code.get(outcome, 0) + 1
        self._update_average_time(duration)

    def record_compensation_failure(self, step: str) -> None:
        failures = self.metrics["compensation_failures"]
        failures[step] = failures.get(step, 0) + 1

    def record_notification_failure(self, event_type: str) -> None:
        failures = self.metrics["notification_failures"]
        failures[event_type] = failures.get(event_type, 0) + 1

    def record_reconcile(self, outcome: str, count: int = 1) -> None:
        reconciler = self.metrics["reconciler"]
        reconciler[outcome] = reconciler.get(outcome, 0) + count

    def _update_average_time(self, duration: float) -> None:
        total_time = self.metrics["average_execution_time"] * (
            self.metrics["total_executed"] - 1
        )
        self.metrics["average_execution_time"] = (
            total_time + duration
        ) / self.metrics["total_executed"]

    def get_metrics(self) -> dict[str, Any]:
        success_rate = (
            self.metrics["total_successful"] / self.metrics["total_executed"] * 100
            if self.metrics["total_executed"] > 0
            else 0
        )

        return {
            **self.metrics,
            "success_rate": f"{success_rate:.2f}%",
        }
