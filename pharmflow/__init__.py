"""
pharmflow - Pharmacy dispensing core

Three cooperating parts:
- Controlled-substance compliance engine (DEA schedule rules, DEA number
  checks, perpetual inventory ledger, biennial inventory, theft/loss reports)
- Claims adjudication engine (reject-code knowledge base, refill timing,
  cash pricing, prior authorization)
- Prescription workflow state machine with will-call handling

Usage:
    >>> from pharmflow import WorkflowService, WorkflowConfig, Actor, StaffRole
    >>>
    >>> service = WorkflowService(WorkflowConfig())
    >>> tech = Actor("u-1", "Terry", StaffRole.TECHNICIAN)
    >>> rx = await service.intake({...}, tech)
    >>> await service.advance_workflow(rx.id, "DATA_ENTRY", tech)
"""

from pharmflow.core.config import WorkflowConfig, configure, get_config
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
from pharmflow.service import WorkflowService
from pharmflow.types import Actor, CSTransactionType, DeaSchedule, StaffRole
from pharmflow.workflow import (
    IntakeRequest,
    Prescription,
    PrescriptionStateMachine,
    TransitionResult,
    WorkflowPriority,
    WorkflowState,
)

__version__ = "0.1.0"

__all__ = [
    # Service and configuration
    "WorkflowService",
    "WorkflowConfig",
    "configure",
    "get_config",
    # Shared types
    "Actor",
    "CSTransactionType",
    "DeaSchedule",
    "StaffRole",
    # Workflow
    "IntakeRequest",
    "Prescription",
    "PrescriptionStateMachine",
    "TransitionResult",
    "WorkflowPriority",
    "WorkflowState",
    # Exceptions
    "ClaimRejected",
    "ComplianceBlocked",
    "ConcurrencyConflict",
    "InvalidTransition",
    "PermissionDenied",
    "PharmFlowError",
    "UnknownRejectCode",
    "ValidationError",
]
