"""Logging and metrics for the dispensing workflow."""

from pharmflow.monitoring.logging import (
    WorkflowContextFilter,
    WorkflowJsonFormatter,
    WorkflowLogger,
    setup_workflow_logging,
    workflow_context,
    workflow_logger,
)
from pharmflow.monitoring.metrics import WorkflowMetrics

__all__ = [
    "WorkflowContextFilter",
    "WorkflowJsonFormatter",
    "WorkflowLogger",
    "WorkflowMetrics",
    "setup_workflow_logging",
    "workflow_context",
    "workflow_logger",
]
