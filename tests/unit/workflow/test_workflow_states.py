"""
Tests for the workflow state table.
"""

import pytest

from pharmflow.workflow.states import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    WorkflowPriority,
    WorkflowState,
    get_valid_next_states,
    is_valid_state_transition,
)

S = WorkflowState

HAPPY_PATH = [
    S.INTAKE,
    S.DATA_ENTRY,
    S.DATA_ENTRY_COMPLETE,
    S.INSURANCE_PENDING,
    S.FILLING,
    S.VERIFICATION,
    S.READY,
    S.SOLD,
]


class TestTransitionTable:
    """Tests for VALID_TRANSITIONS."""

    def test_every_state_listed(self):
        assert set(VALID_TRANSITIONS) == set(WorkflowState)

    def test_happy_path(self):
        for current, nxt in zip(HAPPY_PATH, HAPPY_PATH[1:], strict=False):
            assert is_valid_state_transition(current, nxt), f"{current} -> {nxt}"

    def test_terminal_states_have_no_successors(self):
        for state in TERMINAL_STATES:
            assert get_valid_next_states(state) == frozenset()
            assert state.is_terminal

    def test_every_active_state_can_cancel(self):
        for state in WorkflowState:
            if not state.is_terminal:
                assert S.CANCELLED in get_valid_next_states(state)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.FILLING, S.DATA_ENTRY),
            (S.VERIFICATION, S.FILLING),
            (S.INSURANCE_REJECTED, S.INSURANCE_PENDING),
            (S.PRIOR_AUTH_PENDING, S.INSURANCE_REJECTED),
            (S.READY, S.RETURNED_TO_STOCK),
            (S.READY, S.DELIVERED),
        ],
    )
    def test_branches(self, current, target):
        assert is_valid_state_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.INTAKE, S.FILLING),
            (S.DATA_ENTRY_COMPLETE, S.READY),
            (S.FILLING, S.READY),
            (S.SOLD, S.READY),
            (S.CANCELLED, S.INTAKE),
        ],
    )
    def test_shortcuts_rejected(self, current, target):
        assert not is_valid_state_transition(current, target)

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            VALID_TRANSITIONS[S.SOLD] = frozenset({S.READY})  # type: ignore[index]


class TestStateProperties:
    """Tests for state and priority helpers."""

    def test_pharmacist_states(self):
        assert S.VERIFICATION.requires_pharmacist
        assert S.DUR_REVIEW.requires_pharmacist
        assert not S.FILLING.requires_pharmacist

    def test_display_names(self):
        assert S.READY.display_name == "Ready for Pickup"
        assert S.DUR_REVIEW.display_name == "DUR Review"

    def test_priority_order(self):
        ordered = sorted(WorkflowPriority, key=lambda p: p.order)

        assert ordered == [
            WorkflowPriority.STAT,
            WorkflowPriority.URGENT,
            WorkflowPriority.NORMAL,
            WorkflowPriority.LOW,
        ]
        assert WorkflowPriority.LOW.display_name == "Low Priority"
