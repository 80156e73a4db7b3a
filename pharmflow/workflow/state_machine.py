"""
Prescription State Machine - single authority on transition legality.

Pure: no I/O, no locks. ``validate`` raises the first failing gate in a fixed
order so callers always see the most fundamental problem first:

    1. InvalidTransition   target is not a successor of the current state
    2. PermissionDenied    pharmacist-only target, actor is not a pharmacist
    3. ComplianceBlocked   entering FILLING with failing controlled-substance
                           rules or unresolved DUR alerts
    4. ClaimRejected       leaving the claim stage with outstanding reject codes

Usage:
    >>> sm = PrescriptionStateMachine()
    >>> check = sm.validate(rx, WorkflowState.FILLING, actor)
    >>> updated, change = sm.advance(rx, WorkflowState.FILLING, actor)
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pharmflow.claims.adjudication import outstanding_rejects, resolution_guidance
from pharmflow.claims.prior_auth import is_prior_auth_valid
from pharmflow.compliance.dispensing import (
    ComplianceIssue,
    CSValidationResult,
    IssueCode,
    validate_cs_dispensing,
)
from pharmflow.core.clock import resolve_now
from pharmflow.core.exceptions import (
    ClaimRejected,
    ComplianceBlocked,
    InvalidTransition,
    PermissionDenied,
)
from pharmflow.types import Actor, StaffRole
from pharmflow.workflow.states import (
    CLAIM_GATED_TARGETS,
    CLAIM_STAGE_STATES,
    VALID_TRANSITIONS,
    WorkflowState,
)
from pharmflow.workflow.types import Prescription, StateChange, create_state_change

PRIOR_AUTH_REJECT_CODE = "75"

UNRESOLVED_DUR_MESSAGE = "Cannot proceed to filling with unresolved DUR alerts"


@dataclass
class TransitionCheck:
    """Passed gates for one transition; carries non-blocking warnings."""

    compliance: CSValidationResult | None = None
    warnings: list[str] = field(default_factory=list)


class PrescriptionStateMachine:
    """
    State machine for the prescription dispensing workflow.

    Valid Transitions:
        See ``pharmflow.workflow.states.VALID_TRANSITIONS``.
    """

    VALID_TRANSITIONS = VALID_TRANSITIONS

    def __init__(
        self,
        on_transition: Callable[[Prescription, WorkflowState, WorkflowState], Any] | None = None,
    ):
        """
        Args:
            on_transition: Optional callback invoked after ``advance`` builds a transition
        """
        self._on_transition = on_transition

    def can_transition(self, from_state: WorkflowState, to_state: WorkflowState) -> bool:
        return to_state in self.VALID_TRANSITIONS.get(from_state, frozenset())

    def valid_next_states(self, state: WorkflowState) -> frozenset[WorkflowState]:
        return self.VALID_TRANSITIONS.get(state, frozenset())

    def validate(
        self,
        prescription: Prescription,
        target: WorkflowState,
        actor: Actor,
        *,
        now: datetime | None = None,
    ) -> TransitionCheck:
        """
        Run every gate for ``prescription.state → target``.

        Returns:
            TransitionCheck with compliance warnings to surface to the operator

        Raises:
            InvalidTransition: Target is not a permitted successor
            PermissionDenied: Target requires a pharmacist
            ComplianceBlocked: Controlled-substance or DUR gate failed
            ClaimRejected: Claim carries reject codes without an applied override
        """
        current = prescription.state
        if not self.can_transition(current, target):
            raise InvalidTransition(prescription.id, current, target)

        if target.requires_pharmacist and not actor.is_pharmacist:
            raise PermissionDenied(actor.id, StaffRole.PHARMACIST.value, target)

        check = TransitionCheck()
        if target is WorkflowState.FILLING:
            check = self._check_compliance(prescription, now)

        if current in CLAIM_STAGE_STATES and target in CLAIM_GATED_TARGETS:
            self._check_claim(prescription, target, now)

        return check

    def advance(
        self,
        prescription: Prescription,
        target: WorkflowState,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> tuple[Prescription, StateChange]:
        """
        Validate and build the transition.

        Returns:
            The new prescription (version unchanged; storage bumps it) and
            the state change record
        """
        when = resolve_now(now)
        self.validate(prescription, target, actor, now=when)

        timestamps = dict(prescription.state_timestamps)
        timestamps[target] = when
        updated = prescription.evolve(state=target, state_timestamps=timestamps, updated_at=when)
        change = create_state_change(
            prescription.id, prescription.state, target, actor, reason=reason, notes=notes, now=when
        )

        if self._on_transition:
            self._on_transition(updated, prescription.state, target)

        return updated, change

    def compliance_result(
        self, prescription: Prescription, now: datetime | None = None
    ) -> CSValidationResult:
        return validate_cs_dispensing(
            prescription.schedule,
            prescription.written_at,
            prescription.refill_number,
            prescription.is_partial_fill,
            prescription.prescriber_dea,
            now=now,
        )

    def _check_compliance(self, prescription: Prescription, now: datetime | None) -> TransitionCheck:
        blocking: list[ComplianceIssue] = []
        result = None
        warnings: list[str] = []

        if prescription.is_controlled:
            result = self.compliance_result(prescription, now)
            warnings = result.warnings
            blocking = [
                issue
                for issue in result.blocking_issues
                if not (issue.overridable and prescription.has_override(issue.code.value))
            ]

        if prescription.unresolved_dur_alerts:
            blocking.append(ComplianceIssue(IssueCode.UNRESOLVED_DUR, UNRESOLVED_DUR_MESSAGE))

        if blocking:
            raise ComplianceBlocked(prescription.id, blocking, warnings, result)
        return TransitionCheck(result, warnings)

    def _check_claim(
        self, prescription: Prescription, target: WorkflowState, now: datetime | None
    ) -> None:
        pa_valid = prescription.prior_auth is not None and is_prior_auth_valid(
            prescription.prior_auth, now=now
        )

        if target is WorkflowState.PRIOR_AUTH_APPROVED and not pa_valid:
            codes = [PRIOR_AUTH_REJECT_CODE]
            raise ClaimRejected(prescription.id, codes, resolution_guidance(codes))

        codes = outstanding_rejects(prescription.claim, prescription.claim_overrides)
        if pa_valid:
            codes = [code for code in codes if code != PRIOR_AUTH_REJECT_CODE]
        if codes:
            raise ClaimRejected(prescription.id, codes, resolution_guidance(codes))
