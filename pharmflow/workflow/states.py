"""
Prescription workflow states and the transition table.

Happy path:

    INTAKE → DATA_ENTRY → DATA_ENTRY_COMPLETE → INSURANCE_PENDING → FILLING
           → VERIFICATION → READY → SOLD | DELIVERED | RETURNED_TO_STOCK

Branches: INSURANCE_REJECTED, DUR_REVIEW and the PRIOR_AUTH_PENDING →
PRIOR_AUTH_APPROVED detour. FILLING may fall back to DATA_ENTRY and
VERIFICATION back to FILLING. Every non-terminal state may move to CANCELLED.
"""

from enum import Enum
from types import MappingProxyType


class WorkflowState(Enum):
    INTAKE = "INTAKE"
    DATA_ENTRY = "DATA_ENTRY"
    DATA_ENTRY_COMPLETE = "DATA_ENTRY_COMPLETE"
    INSURANCE_PENDING = "INSURANCE_PENDING"
    INSURANCE_REJECTED = "INSURANCE_REJECTED"
    DUR_REVIEW = "DUR_REVIEW"
    PRIOR_AUTH_PENDING = "PRIOR_AUTH_PENDING"
    PRIOR_AUTH_APPROVED = "PRIOR_AUTH_APPROVED"
    FILLING = "FILLING"
    VERIFICATION = "VERIFICATION"
    READY = "READY"
    SOLD = "SOLD"
    DELIVERED = "DELIVERED"
    RETURNED_TO_STOCK = "RETURNED_TO_STOCK"
    CANCELLED = "CANCELLED"

    @property
    def display_name(self) -> str:
        return WORKFLOW_STATE_DISPLAY[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def requires_pharmacist(self) -> bool:
        return self in PHARMACIST_REQUIRED_STATES


class WorkflowPriority(Enum):
    STAT = "STAT"
    URGENT = "URGENT"
    NORMAL = "NORMAL"
    LOW = "LOW"

    @property
    def display_name(self) -> str:
        return PRIORITY_DISPLAY[self]

    @property
    def order(self) -> int:
        return PRIORITY_ORDER[self]


_S = WorkflowState

# from_state -> allowed to_states
VALID_TRANSITIONS: MappingProxyType[WorkflowState, frozenset[WorkflowState]] = MappingProxyType(
    {
        _S.INTAKE: frozenset({_S.DATA_ENTRY, _S.CANCELLED}),
        _S.DATA_ENTRY: frozenset({_S.DATA_ENTRY_COMPLETE, _S.INTAKE, _S.CANCELLED}),
        _S.DATA_ENTRY_COMPLETE: frozenset(
            {_S.INSURANCE_PENDING, _S.DUR_REVIEW, _S.FILLING, _S.CANCELLED}
        ),
        _S.INSURANCE_PENDING: frozenset(
            {
                _S.INSURANCE_REJECTED,
                _S.DUR_REVIEW,
                _S.PRIOR_AUTH_PENDING,
                _S.FILLING,
                _S.CANCELLED,
            }
        ),
        _S.INSURANCE_REJECTED: frozenset(
            {_S.DATA_ENTRY, _S.INSURANCE_PENDING, _S.PRIOR_AUTH_PENDING, _S.CANCELLED}
        ),
        _S.DUR_REVIEW: frozenset({_S.FILLING, _S.CANCELLED}),
        _S.PRIOR_AUTH_PENDING: frozenset(
            {_S.PRIOR_AUTH_APPROVED, _S.INSURANCE_REJECTED, _S.CANCELLED}
        ),
        _S.PRIOR_AUTH_APPROVED: frozenset({_S.FILLING, _S.CANCELLED}),
        _S.FILLING: frozenset({_S.VERIFICATION, _S.DATA_ENTRY, _S.CANCELLED}),
        _S.VERIFICATION: frozenset({_S.READY, _S.FILLING, _S.CANCELLED}),
        _S.READY: frozenset({_S.SOLD, _S.DELIVERED, _S.RETURNED_TO_STOCK, _S.CANCELLED}),
        _S.SOLD: frozenset(),
        _S.DELIVERED: frozenset(),
        _S.RETURNED_TO_STOCK: frozenset(),
        _S.CANCELLED: frozenset(),
    }
)

TERMINAL_STATES = frozenset({_S.SOLD, _S.DELIVERED, _S.RETURNED_TO_STOCK, _S.CANCELLED})

PHARMACIST_REQUIRED_STATES = frozenset({_S.DUR_REVIEW, _S.VERIFICATION})

# States where the insurance claim is still being worked
CLAIM_STAGE_STATES = frozenset(
    {_S.DATA_ENTRY_COMPLETE, _S.INSURANCE_PENDING, _S.INSURANCE_REJECTED, _S.PRIOR_AUTH_PENDING}
)

# Leaving the claim stage toward one of these requires a clean claim
CLAIM_GATED_TARGETS = frozenset({_S.FILLING, _S.DUR_REVIEW, _S.PRIOR_AUTH_APPROVED})

WORKFLOW_STATE_DISPLAY: MappingProxyType[WorkflowState, str] = MappingProxyType(
    {
        _S.INTAKE: "Intake",
        _S.DATA_ENTRY: "Data Entry",
        _S.DATA_ENTRY_COMPLETE: "Data Entry Complete",
        _S.INSURANCE_PENDING: "Insurance Pending",
        _S.INSURANCE_REJECTED: "Insurance Rejected",
        _S.DUR_REVIEW: "DUR Review",
        _S.PRIOR_AUTH_PENDING: "Prior Auth Pending",
        _S.PRIOR_AUTH_APPROVED: "Prior Auth Approved",
        _S.FILLING: "Filling",
        _S.VERIFICATION: "Verification",
        _S.READY: "Ready for Pickup",
        _S.SOLD: "Sold",
        _S.DELIVERED: "Delivered",
        _S.RETURNED_TO_STOCK: "Returned to Stock",
        _S.CANCELLED: "Cancelled",
    }
)

PRIORITY_DISPLAY: MappingProxyType[WorkflowPriority, str] = MappingProxyType(
    {
        WorkflowPriority.STAT: "STAT",
        WorkflowPriority.URGENT: "Urgent",
        WorkflowPriority.NORMAL: "Normal",
        WorkflowPriority.LOW: "Low Priority",
    }
)

PRIORITY_ORDER: MappingProxyType[WorkflowPriority, int] = MappingProxyType(
    {
        WorkflowPriority.STAT: 0,
        WorkflowPriority.URGENT: 1,
        WorkflowPriority.NORMAL: 2,
        WorkflowPriority.LOW: 3,
    }
)


def is_valid_state_transition(from_state: WorkflowState, to_state: WorkflowState) -> bool:
    return to_state in VALID_TRANSITIONS[from_state]


def get_valid_next_states(state: WorkflowState) -> frozenset[WorkflowState]:
    return VALID_TRANSITIONS[state]
