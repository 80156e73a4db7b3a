"""
WorkflowConfig - Unified configuration for the dispensing workflow.

Wires together the collaborators the workflow service needs:
- Storage backend (prescriptions, history, controlled-substance ledger)
- Audit sink and retention policy
- Observability (metrics, logging)
- Policy knobs (lock timeout, will-call days, refill threshold, cash markup)

Example:
    >>> from pharmflow.core.config import WorkflowConfig, configure
    >>>
    >>> # Minimal config (in-memory, for development)
    >>> configure(WorkflowConfig())
    >>>
    >>> # From PHARMFLOW_* environment variables
    >>> configure(WorkflowConfig.from_env())
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pharmflow.audit.base import AuditLogger, RetentionService
    from pharmflow.monitoring.metrics import WorkflowMetrics
    from pharmflow.storage.base import PharmacyStorage

logger = logging.getLogger(__name__)


@dataclass
class WorkflowConfig:
    """
    Configuration for the workflow service.

    Values can be actual instances or boolean flags for defaults.

    Attributes:
        storage: Prescription/ledger storage backend (defaults to in-memory)
        audit_logger: Audit sink (defaults to in-memory)
        retention_service: Legal hold and archive policy (defaults to in-memory)
        metrics: Enable metrics collection (True/False or WorkflowMetrics instance)
        logging: Enable transition logging
        lock_timeout: Seconds to wait for a per-key lock before ConcurrencyConflict
        return_to_stock_days: Days in a will-call bin before return to stock
        expiring_soon_days: Days in a will-call bin before the bin is flagged
        refill_percentage: Percentage of days supply that must elapse before a refill
        default_markup_percent: Markup applied to acquisition cost for cash prices
        min_terminal_days: Days a prescription stays terminal before it may be archived
    """

    storage: PharmacyStorage | None = None
    audit_logger: AuditLogger | None = None
    retention_service: RetentionService | None = None

    metrics: bool | WorkflowMetrics = True
    logging: bool = True

    lock_timeout: float = 10.0
    return_to_stock_days: int = 10
    expiring_soon_days: int = 7
    refill_percentage: float = 80
    default_markup_percent: float = 20
    min_terminal_days: int = 0

    _metrics: WorkflowMetrics | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.lock_timeout <= 0:
            msg = f"lock_timeout must be positive, got {self.lock_timeout}"
            raise ValueError(msg)
        if not 0 < self.expiring_soon_days < self.return_to_stock_days:
            msg = (
                "expiring_soon_days must be positive and below return_to_stock_days "
                f"(got {self.expiring_soon_days} and {self.return_to_stock_days})"
            )
            raise ValueError(msg)
        if not 0 < self.refill_percentage <= 100:
            msg = f"refill_percentage must be in (0, 100], got {self.refill_percentage}"
            raise ValueError(msg)

        # Default to in-memory collaborators if not specified
        if self.storage is None:
            from pharmflow.storage.memory import InMemoryPharmacyStorage

            self.storage = InMemoryPharmacyStorage()
            logger.debug("Using default InMemoryPharmacyStorage")

        if self.audit_logger is None:
            from pharmflow.audit.memory import InMemoryAuditLogger

            self.audit_logger = InMemoryAuditLogger()

        if self.retention_service is None:
            from pharmflow.audit.memory import InMemoryRetentionService

            self.retention_service = InMemoryRetentionService(self.min_terminal_days)

        self._metrics = self._build_metrics()

    def _build_metrics(self) -> WorkflowMetrics | None:
        from pharmflow.monitoring.metrics import WorkflowMetrics

        if isinstance(self.metrics, WorkflowMetrics):
            return self.metrics
        if self.metrics:
            return WorkflowMetrics()
        return None

    @property
    def metrics_collector(self) -> WorkflowMetrics | None:
        """Configured metrics collector, None when metrics are disabled."""
        return self._metrics

    def with_storage(self, storage: PharmacyStorage) -> WorkflowConfig:
        """Create a new config with different storage (immutable update)."""
        return replace(self, storage=storage, _metrics=None)

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> WorkflowConfig:
        """
        Create configuration from environment variables.

        Environment variables:
            PHARMFLOW_LOCK_TIMEOUT: Lock acquisition timeout in seconds
            PHARMFLOW_RETURN_TO_STOCK_DAYS: Will-call return threshold
            PHARMFLOW_EXPIRING_SOON_DAYS: Will-call expiring threshold
            PHARMFLOW_REFILL_PERCENTAGE: Percent of days supply before refill
            PHARMFLOW_DEFAULT_MARKUP_PERCENT: Cash price markup
            PHARMFLOW_MIN_TERMINAL_DAYS: Terminal dwell time before archiving
            PHARMFLOW_METRICS: Enable metrics (true/false)
            PHARMFLOW_LOGGING: Enable logging (true/false)

        Args:
            load_dotenv: If True, loads .env file before reading variables
        """
        from pharmflow.core.env import get_env

        env = get_env()
        if load_dotenv:
            env.load()

        return cls(
            metrics=env.get_bool("PHARMFLOW_METRICS", True),
            logging=env.get_bool("PHARMFLOW_LOGGING", True),
            lock_timeout=env.get_float("PHARMFLOW_LOCK_TIMEOUT", 10.0),
            return_to_stock_days=env.get_int("PHARMFLOW_RETURN_TO_STOCK_DAYS", 10),
            expiring_soon_days=env.get_int("PHARMFLOW_EXPIRING_SOON_DAYS", 7),
            refill_percentage=env.get_float("PHARMFLOW_REFILL_PERCENTAGE", 80),
            default_markup_percent=env.get_float("PHARMFLOW_DEFAULT_MARKUP_PERCENT", 20),
            min_terminal_days=env.get_int("PHARMFLOW_MIN_TERMINAL_DAYS", 0),
        )

    @classmethod
    def from_file(cls, file_path: str | Path, substitute_env: bool = True) -> WorkflowConfig:
        """
        Load configuration from a YAML or JSON file.

        Supports environment variable substitution using ${VAR} syntax.

        Example:
            >>> config = WorkflowConfig.from_file("pharmflow.yaml")

            # In pharmflow.yaml:
            # locks:
            #   timeout: ${PHARMFLOW_LOCK_TIMEOUT:-10}
            # will_call:
            #   return_to_stock_days: 10
            #   expiring_soon_days: 7
            # claims:
            #   refill_percentage: 80
            #   default_markup_percent: 20
            # observability:
            #   metrics: true
        """
        import yaml

        from pharmflow.core.env import get_env

        path = Path(file_path)
        if not path.exists():
            msg = f"Configuration file not found: {file_path}"
            raise FileNotFoundError(msg)

        with path.open() as f:
            data = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)

        if not data:
            return cls()

        if substitute_env:
            env = get_env()
            env.load()
            data = env.substitute_dict(data)

        locks = data.get("locks", {})
        will_call = data.get("will_call", {})
        claims = data.get("claims", {})
        retention = data.get("retention", {})
        obs = data.get("observability", {})

        return cls(
            metrics=_as_bool(obs.get("metrics", True)),
            logging=_as_bool(obs.get("logging", True)),
            lock_timeout=float(locks.get("timeout", 10.0)),
            return_to_stock_days=int(will_call.get("return_to_stock_days", 10)),
            expiring_soon_days=int(will_call.get("expiring_soon_days", 7)),
            refill_percentage=float(claims.get("refill_percentage", 80)),
            default_markup_percent=float(claims.get("default_markup_percent", 20)),
            min_terminal_days=int(retention.get("min_terminal_days", 0)),
        )


def _as_bool(value: Any) -> bool:
    # substituted values arrive as strings
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


# Global configuration singleton
_global_config: WorkflowConfig | None = None


def get_config() -> WorkflowConfig:
    """Get the global workflow configuration."""
    global _global_config
    if _global_config is None:
        _global_config = WorkflowConfig()
    return _global_config


def configure(config: WorkflowConfig) -> None:
    """Set the global workflow configuration."""
    global _global_config
    _global_config = config
    logger.info(f"Workflow configured: storage={type(config.storage).__name__}")
