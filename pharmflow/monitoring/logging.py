"""
Structured logging for the dispensing workflow

Adds prescription and actor context to every record emitted while a
workflow operation runs, and a JSON formatter that carries those fields.
"""

import json
import logging
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Context variables for propagating prescription context
workflow_context: ContextVar[dict[str, Any]] = ContextVar("workflow_context", default={})


class WorkflowJsonFormatter(logging.Formatter):
    """
    JSON formatter for workflow logs with structured fields
    """

    # Fields to extract from log record if present
    _EXTRA_FIELDS = (
        "prescription_id",
        "rx_number",
        "pharmacy_id",
        "actor_id",
        "from_state",
        "to_state",
        "reason",
        "errors",
        "duration_ms",
        "transaction_type",
        "quantity",
        "running_balance",
        "action",
        "error_type",
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON"""
        log_entry = self._build_base_entry(record)
        self._add_workflow_context(log_entry)
        self._add_record_extras(log_entry, record)
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

    def _add_workflow_context(self, log_entry: dict[str, Any]) -> None:
        context = workflow_context.get({})
        if context:
            log_entry.update(
                {
                    "prescription_id": context.get("prescription_id"),
                    "rx_number": context.get("rx_number"),
                    "actor_id": context.get("actor_id"),
                }
            )

    def _add_record_extras(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self._EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)


class WorkflowContextFilter(logging.Filter):
    """
    Logging filter that adds prescription context to log records
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = workflow_context.get({})

        # explicit extra= values win over the ambient context
        defaults = {
            "prescription_id": context.get("prescription_id", "unknown"),
            "rx_number": context.get("rx_number", ""),
            "actor_id": context.get("actor_id", ""),
        }
        for name, value in defaults.items():
            if not hasattr(record, name):
                setattr(record, name, value)

        return True


class WorkflowLogger:
    """
    Workflow-aware logger with automatic context propagation
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.logger.addFilter(WorkflowContextFilter())

    def set_context(
        self, prescription_id: str, rx_number: str | None = None, actor_id: str | None = None
    ) -> None:
        """Set prescription context for the current task"""
        workflow_context.set(
            {
                "prescription_id": prescription_id,
                "rx_number": rx_number or "",
                "actor_id": actor_id or "",
            }
        )

    def clear_context(self) -> None:
        workflow_context.set({})

    def transition_committed(
        self,
        prescription_id: str,
        from_state: str,
        to_state: str,
        actor_id: str,
        duration_ms: float,
    ) -> None:
        """Log a committed transition"""

        self.logger.info(
            f"Transition committed: {from_state} -> {to_state}",
            extra={
                "prescription_id": prescription_id,
                "from_state": from_state,
                "to_state": to_state,
                "actor_id": actor_id,
                "duration_ms": duration_ms,
            },
        )

    def transition_blocked(
        self, prescription_id: str, to_state: str, reason: str, errors: list[str]
    ) -> None:
        """Log a transition refused by a gate"""

        self.logger.warning(
            f"Transition to {to_state} blocked ({reason}): {'; '.join(errors)}",
            extra={
                "prescription_id": prescription_id,
                "to_state": to_state,
                "reason": reason,
                "errors": errors,
            },
        )

    def ledger_recorded(
        self,
        pharmacy_id: str,
        ndc: str,
        transaction_type: str,
        quantity: float,
        running_balance: float,
    ) -> None:
        self.logger.info(
            f"Ledger {transaction_type}: {quantity} of {ndc}, balance {running_balance}",
            extra={
                "pharmacy_id": pharmacy_id,
                "transaction_type": transaction_type,
                "quantity": quantity,
                "running_balance": running_balance,
            },
        )

    def override_applied(
        self, prescription_id: str, target: str, override_code: str, actor_id: str
    ) -> None:
        self.logger.warning(
            f"Override {override_code} applied to {target}",
            extra={
                "prescription_id": prescription_id,
                "reason": target,
                "actor_id": actor_id,
            },
        )

    def audit_failed(self, action: str, resource_id: str, error: Exception) -> None:
        """Log an audit sink failure - degraded mode"""

        self.logger.error(
            f"Audit write FAILED for {action} on {resource_id}: {error!s}",
            extra={
                "prescription_id": resource_id,
                "action": action,
                "error_type": type(error).__name__,
            },
            exc_info=(type(error), error, error.__traceback__),
        )


def setup_workflow_logging(
    log_level: str = "INFO", json_format: bool = True, include_console: bool = True
) -> WorkflowLogger:
    """
    Set up structured logging for the workflow

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting for structured logs
        include_console: Include console handler

    Returns:
        Configured WorkflowLogger instance
    """
    root_logger = logging.getLogger("pharmflow")
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if include_console:
        console_handler = logging.StreamHandler()

        if json_format:
            console_handler.setFormatter(WorkflowJsonFormatter())
        else:
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - [%(prescription_id)s] - %(message)s"
            )
            console_handler.setFormatter(formatter)
            console_handler.addFilter(WorkflowContextFilter())

        root_logger.addHandler(console_handler)

    return workflow_logger


# Default workflow logger instance
workflow_logger = WorkflowLogger("pharmflow.workflow")
