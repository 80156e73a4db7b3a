"""
Prescription workflow: states, the transition authority, will-call bins and
work-queue helpers. Pure; persistence and locking live in the service.
"""

from pharmflow.workflow.queue import (
    QueueSummary,
    calculate_promise_time,
    calculate_queue_summary,
    filter_by_assignee,
    filter_by_state,
    get_expected_next_state,
    sort_workflow_items,
)
from pharmflow.workflow.state_machine import PrescriptionStateMachine, TransitionCheck
from pharmflow.workflow.states import (
    PHARMACIST_REQUIRED_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    WorkflowPriority,
    WorkflowState,
    get_valid_next_states,
    is_valid_state_transition,
)
from pharmflow.workflow.types import (
    IntakeRequest,
    Prescription,
    StateChange,
    TransitionResult,
    create_state_change,
)
from pharmflow.workflow.will_call import (
    ID_REQUIRED_SCHEDULES,
    IdType,
    IdVerification,
    WillCallBin,
    WillCallEvaluation,
    WillCallScan,
    WillCallStatus,
    check_pickup_id,
    create_bin,
    evaluate_bin,
    extend_hold,
    mark_notified,
    mark_picked_up,
    return_to_stock,
    scan_bins,
)

__all__ = [
    "ID_REQUIRED_SCHEDULES",
    "PHARMACIST_REQUIRED_STATES",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    "IdType",
    "IdVerification",
    "IntakeRequest",
    "Prescription",
    "PrescriptionStateMachine",
    "QueueSummary",
    "StateChange",
    "TransitionCheck",
    "TransitionResult",
    "WillCallBin",
    "WillCallEvaluation",
    "WillCallScan",
    "WillCallStatus",
    "WorkflowPriority",
    "WorkflowState",
    "calculate_promise_time",
    "calculate_queue_summary",
    "check_pickup_id",
    "create_bin",
    "create_state_change",
    "evaluate_bin",
    "extend_hold",
    "filter_by_assignee",
    "filter_by_state",
    "get_expected_next_state",
    "get_valid_next_states",
    "is_valid_state_transition",
    "mark_notified",
    "mark_picked_up",
    "return_to_stock",
    "scan_bins",
    "sort_workflow_items",
]
