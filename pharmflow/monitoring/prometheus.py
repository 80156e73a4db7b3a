"""
Prometheus metrics integration for pharmflow.

Exposes the same recording interface as ``WorkflowMetrics`` so either can be
handed to the workflow service.

Quick Start:
    >>> from pharmflow.monitoring.prometheus import PrometheusMetrics, start_metrics_server
    >>>
    >>> start_metrics_server(port=8000)
    >>> service = WorkflowService(metrics=PrometheusMetrics())
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    start_http_server,
)

logger = logging.getLogger(__name__)


class PrometheusMetrics:
    """
    Prometheus-compatible metrics collector.

    Exposes the following metrics:
        - pharmflow_transitions_total: Counter of committed transitions by from/to state
        - pharmflow_blocked_total: Counter of refused transitions by reason and target
        - pharmflow_conflicts_total: Counter of lock timeouts and stale-version commits
        - pharmflow_audit_failures_total: Counter of audit sink failures by action
        - pharmflow_ledger_entries_total: Counter of ledger entries by transaction type
        - pharmflow_transition_duration_seconds: Histogram of transition latency
    """

    def __init__(self, prefix: str = "pharmflow", registry: CollectorRegistry | None = None):
        """
        Args:
            prefix: Metric name prefix (default: "pharmflow")
            registry: Collector registry (default: the global registry)
        """
        self._prefix = prefix
        registry = registry or REGISTRY

        self._transitions_total = Counter(
            f"{prefix}_transitions_total",
            "Total committed workflow transitions",
            ["from_state", "to_state"],
            registry=registry,
        )

        self._blocked_total = Counter(
            f"{prefix}_blocked_total",
            "Total workflow transitions refused by a gate",
            ["reason", "to_state"],
            registry=registry,
        )

        self._conflicts_total = Counter(
            f"{prefix}_conflicts_total",
            "Total lock timeouts and stale-version commits",
            registry=registry,
        )

        self._audit_failures_total = Counter(
            f"{prefix}_audit_failures_total",
            "Total audit sink failures (degraded mode)",
            ["action"],
            registry=registry,
        )

        self._ledger_entries_total = Counter(
            f"{prefix}_ledger_entries_total",
            "Total controlled-substance ledger entries recorded",
            ["transaction_type"],
            registry=registry,
        )

        self._transition_duration = Histogram(
            f"{prefix}_transition_duration_seconds",
            "Workflow transition duration in seconds",
            ["to_state"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
            registry=registry,
        )

    def record_transition(self, from_state: str, to_state: str, duration: float = 0.0) -> None:
        self._transitions_total.labels(from_state=from_state, to_state=to_state).inc()
        self._transition_duration.labels(to_state=to_state).observe(duration)

    def record_blocked(self, reason: str, to_state: str) -> None:
        self._blocked_total.labels(reason=reason, to_state=to_state).inc()

    def record_conflict(self, key: str) -> None:
        self._conflicts_total.inc()

    def record_audit_failure(self, action: str) -> None:
        self._audit_failures_total.labels(action=action).inc()

    def record_ledger_entry(self, transaction_type: str) -> None:
        self._ledger_entries_total.labels(transaction_type=transaction_type).inc()


def start_metrics_server(port: int = 8000, addr: str = "0.0.0.0") -> None:
    """
    Start a Prometheus HTTP metrics server.

    Args:
        port: Port to listen on (default: 8000)
        addr: Address to bind to (default: 0.0.0.0 for all interfaces)
    """
    start_http_server(port, addr=addr)
    logger.info(f"Prometheus metrics server started on {addr}:{port}")
