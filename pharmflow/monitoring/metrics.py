"""
Metrics collection for the dispensing workflow
"""

from typing import Any


class WorkflowMetrics:
    """Collect and expose workflow metrics"""

    def __init__(self):
        self.metrics: dict[str, Any] = {
            "total_transitions": 0,
            "total_blocked": 0,
            "total_conflicts": 0,
            "total_audit_failures": 0,
            "total_ledger_entries": 0,
            "average_transition_time": 0.0,
            "by_transition": {},
            "blocked_by_reason": {},
            "ledger_by_type": {},
        }

    def record_transition(self, from_state: str, to_state: str, duration: float = 0.0) -> None:
        """Record a committed transition"""
        self.metrics["total_transitions"] += 1
        self._update_average_time(duration)
        key = f"{from_state}->{to_state}"
        self.metrics["by_transition"][key] = self.metrics["by_transition"].get(key, 0) + 1

    def record_blocked(self, reason: str, to_state: str) -> None:
        """Record a transition refused by a gate (compliance, claim, permission, ...)"""
        self.metrics["total_blocked"] += 1
        by_reason = self.metrics["blocked_by_reason"]
        if reason not in by_reason:
            by_reason[reason] = {"count": 0, "targets": {}}
        by_reason[reason]["count"] += 1
        targets = by_reason[reason]["targets"]
        targets[to_state] = targets.get(to_state, 0) + 1

    def record_conflict(self, key: str) -> None:
        self.metrics["total_conflicts"] += 1

    def record_audit_failure(self, action: str) -> None:
        self.metrics["total_audit_failures"] += 1

    def record_ledger_entry(self, transaction_type: str) -> None:
        self.metrics["total_ledger_entries"] += 1
        by_type = self.metrics["ledger_by_type"]
        by_type[transaction_type] = by_type.get(transaction_type, 0) + 1

    def _update_average_time(self, duration: float) -> None:
        """Update average transition time."""
        total_time = self.metrics["average_transition_time"] * (
            self.metrics["total_transitions"] - 1
        )
        self.metrics["average_transition_time"] = (total_time + duration) / self.metrics[
            "total_transitions"
        ]

    def get_metrics(self) -> dict[str, Any]:
        """Get all metrics"""
        attempts = self.metrics["total_transitions"] + self.metrics["total_blocked"]
        block_rate = self.metrics["total_blocked"] / attempts * 100 if attempts > 0 else 0

        return {
            **self.metrics,
            "block_rate": f"{block_rate:.2f}%",
        }
