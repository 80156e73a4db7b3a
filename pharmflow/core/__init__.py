"""
Core building blocks shared by the rule engines and the workflow service:
exceptions, configuration, logging, time helpers and per-key locks.
"""

from pharmflow.core.clock import as_utc, resolve_now, utcnow
from pharmflow.core.config import WorkflowConfig, configure, get_config
from pharmflow.core.env import EnvManager, get_env
from pharmflow.core.exceptions import (
    ClaimRejected,
    ComplianceBlocked,
    ConcurrencyConflict,
    InvalidTransition,
    PermissionDenied,
    PharmFlowError,
    UnknownRejectCode,
    ValidationError,
)
from pharmflow.core.locks import KeyedLock
from pharmflow.core.logger import get_logger, set_logger

__all__ = [
    # Config
    "WorkflowConfig",
    "configure",
    "get_config",
    "EnvManager",
    "get_env",
    # Exceptions
    "ClaimRejected",
    "ComplianceBlocked",
    "ConcurrencyConflict",
    "InvalidTransition",
    "PermissionDenied",
    "PharmFlowError",
    "UnknownRejectCode",
    "ValidationError",
    # Runtime helpers
    "KeyedLock",
    "as_utc",
    "get_logger",
    "resolve_now",
    "set_logger",
    "utcnow",
]
