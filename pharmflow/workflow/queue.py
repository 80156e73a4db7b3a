"""Work-queue helpers: summaries, ordering, promise times and routing hints."""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType

from pharmflow.core.clock import resolve_now
from pharmflow.workflow.states import PRIORITY_ORDER, WorkflowPriority, WorkflowState
from pharmflow.workflow.types import Prescription

# Base turnaround in minutes by priority
PROMISE_BASE_MINUTES: MappingProxyType[WorkflowPriority, int] = MappingProxyType(
    {
        WorkflowPriority.STAT: 15,
        WorkflowPriority.URGENT: 30,
        WorkflowPriority.NORMAL: 60,
        WorkflowPriority.LOW: 120,
    }
)

# Scales the base by how much work remains from each state
PROMISE_STATE_MULTIPLIERS: MappingProxyType[WorkflowState, float] = MappingProxyType(
    {
        WorkflowState.INTAKE: 1.5,
        WorkflowState.DATA_ENTRY: 1.3,
        WorkflowState.DATA_ENTRY_COMPLETE: 1.2,
        WorkflowState.INSURANCE_PENDING: 1.1,
        WorkflowState.FILLING: 1.0,
        WorkflowState.VERIFICATION: 0.5,
    }
)

_NEXT_ON_PATH: MappingProxyType[WorkflowState, WorkflowState] = MappingProxyType(
    {
        WorkflowState.INTAKE: WorkflowState.DATA_ENTRY,
        WorkflowState.DATA_ENTRY: WorkflowState.DATA_ENTRY_COMPLETE,
        WorkflowState.INSURANCE_REJECTED: WorkflowState.DATA_ENTRY,
        WorkflowState.DUR_REVIEW: WorkflowState.FILLING,
        WorkflowState.PRIOR_AUTH_PENDING: WorkflowState.PRIOR_AUTH_APPROVED,
        WorkflowState.PRIOR_AUTH_APPROVED: WorkflowState.FILLING,
        WorkflowState.FILLING: WorkflowState.VERIFICATION,
        WorkflowState.VERIFICATION: WorkflowState.READY,
        WorkflowState.READY: WorkflowState.SOLD,
    }
)


@dataclass
class QueueSummary:
    by_state: dict[WorkflowState, int]
    total: int = 0
    stat_count: int = 0
    urgent_count: int = 0
    overdue_count: int = 0
    on_hold_count: int = 0

    def count(self, state: WorkflowState) -> int:
        return self.by_state.get(state, 0)

    def to_dict(self) -> dict:
        return {
            "by_state": {state.value: n for state, n in self.by_state.items()},
            "total": self.total,
            "stat_count": self.stat_count,
            "urgent_count": self.urgent_count,
            "overdue_count": self.overdue_count,
            "on_hold_count": self.on_hold_count,
        }


def calculate_queue_summary(
    items: Iterable[Prescription], now: datetime | None = None
) -> QueueSummary:
    """Count active work by state and flag STAT, urgent, overdue and held items."""
    current = resolve_now(now)
    summary = QueueSummary(by_state={s: 0 for s in WorkflowState if not s.is_terminal})

    for rx in items:
        if not rx.state.is_terminal:
            summary.by_state[rx.state] += 1
            summary.total += 1
            if rx.promise_time is not None and rx.promise_time < current:
                summary.overdue_count += 1
        if rx.priority is WorkflowPriority.STAT:
            summary.stat_count += 1
        elif rx.priority is WorkflowPriority.URGENT:
            summary.urgent_count += 1
        if rx.on_hold:
            summary.on_hold_count += 1

    return summary


def _sort_key(rx: Prescription) -> tuple:
    # priority, then promise time (missing last), then oldest first
    promise = rx.promise_time.timestamp() if rx.promise_time else math.inf
    return (PRIORITY_ORDER[rx.priority], promise, rx.created_at.timestamp())


def sort_workflow_items(items: Iterable[Prescription]) -> list[Prescription]:
    return sorted(items, key=_sort_key)


def filter_by_state(items: Iterable[Prescription], states: Iterable[WorkflowState]) -> list[Prescription]:
    wanted = frozenset(states)
    return [rx for rx in items if rx.state in wanted]


def filter_by_assignee(items: Iterable[Prescription], user_id: str) -> list[Prescription]:
    return [rx for rx in items if rx.assigned_to == user_id]


def calculate_promise_time(
    priority: WorkflowPriority, state: WorkflowState, from_time: datetime | None = None
) -> datetime:
    """Promise time = base minutes for priority × remaining-work factor for state."""
    minutes = PROMISE_BASE_MINUTES[priority] * PROMISE_STATE_MULTIPLIERS.get(state, 1.0)
    return resolve_now(from_time) + timedelta(minutes=math.floor(minutes + 0.5))


def get_expected_next_state(
    state: WorkflowState,
    *,
    has_dur_alerts: bool = False,
    has_insurance: bool = False,
    insurance_approved: bool | None = None,
    needs_prior_auth: bool = False,
) -> WorkflowState | None:
    """Most likely next state along the common path; None for terminal states."""
    if state is WorkflowState.DATA_ENTRY_COMPLETE:
        if has_insurance:
            return WorkflowState.INSURANCE_PENDING
        return WorkflowState.DUR_REVIEW if has_dur_alerts else WorkflowState.FILLING

    if state is WorkflowState.INSURANCE_PENDING:
        if needs_prior_auth:
            return WorkflowState.PRIOR_AUTH_PENDING
        if insurance_approved is False:
            return WorkflowState.INSURANCE_REJECTED
        return WorkflowState.DUR_REVIEW if has_dur_alerts else WorkflowState.FILLING

    return _NEXT_ON_PATH.get(state)
