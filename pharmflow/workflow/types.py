"""
Workflow data types.

``Prescription`` is immutable: every workflow mutation produces a new
instance via ``Prescription.evolve`` and is committed through storage with a
version check.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pharmflow.claims.adjudication import AppliedOverride, ClaimOutcome
from pharmflow.claims.prior_auth import PriorAuthorizationRequest
from pharmflow.compliance.ledger import LedgerEntry
from pharmflow.compliance.rules import CS_RULES
from pharmflow.core.clock import utcnow
from pharmflow.core.exceptions import ValidationError
from pharmflow.types import Actor, DeaSchedule
from pharmflow.workflow.states import WorkflowPriority, WorkflowState
from pharmflow.workflow.will_call import WillCallBin


@dataclass(frozen=True)
class Prescription:
    """
    A prescription moving through the dispensing workflow.

    Attributes:
        refills_used: Refills consumed so far; the current fill's refill number
        claim: Latest adjudication response, None for cash or not yet billed
        claim_overrides: Overrides applied to reject codes on ``claim``
        compliance_overrides: Overrides applied to compliance issue codes
        unresolved_dur_alerts: Clinical alerts that block filling until resolved
        stock_pulled: Controlled stock was removed from the perpetual inventory
        state_timestamps: When the prescription entered each state
        version: Optimistic-concurrency counter, bumped on every commit
    """

    id: str
    rx_number: str
    pharmacy_id: str
    patient_id: str
    prescriber_id: str
    ndc: str
    schedule: DeaSchedule
    quantity: float
    days_supply: int
    drug_name: str = ""
    prescriber_dea: str | None = None
    refills_allowed: int = 0
    refills_used: int = 0
    priority: WorkflowPriority = WorkflowPriority.NORMAL
    state: WorkflowState = WorkflowState.INTAKE
    written_at: datetime = field(default_factory=utcnow)
    is_partial_fill: bool = False
    has_insurance: bool = True
    claim: ClaimOutcome | None = None
    claim_overrides: tuple[AppliedOverride, ...] = ()
    compliance_overrides: tuple[AppliedOverride, ...] = ()
    prior_auth: PriorAuthorizationRequest | None = None
    unresolved_dur_alerts: tuple[str, ...] = ()
    stock_pulled: bool = False
    promise_time: datetime | None = None
    assigned_to: str | None = None
    on_hold: bool = False
    hold_reason: str | None = None
    will_call: WillCallBin | None = None
    state_timestamps: dict[WorkflowState, datetime] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    archived: bool = False
    version: int = 0

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            msg = f"quantity must be positive, got {self.quantity}"
            raise ValidationError(msg, field="quantity")
        if self.days_supply <= 0:
            msg = f"days_supply must be positive, got {self.days_supply}"
            raise ValidationError(msg, field="days_supply")
        if self.refills_used < 0 or self.refills_allowed < 0:
            msg = "refill counts must not be negative"
            raise ValidationError(msg, field="refills_used")
        if self.refills_used > self.refills_allowed:
            msg = f"refills_used ({self.refills_used}) exceeds refills_allowed ({self.refills_allowed})"
            raise ValidationError(msg, field="refills_used")

        limit = CS_RULES[self.schedule].refills_allowed
        if self.schedule is DeaSchedule.II and self.refills_allowed != 0:
            msg = "Schedule II prescriptions cannot have refills"
            raise ValidationError(msg, field="refills_allowed")
        if self.refills_allowed > limit:
            msg = f"{self.schedule.label} allows at most {limit} refills, got {self.refills_allowed}"
            raise ValidationError(msg, field="refills_allowed")

    @property
    def is_controlled(self) -> bool:
        return self.schedule.is_controlled

    @property
    def refill_number(self) -> int:
        return self.refills_used

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def has_override(self, target: str) -> bool:
        return any(o.target == target for o in (*self.claim_overrides, *self.compliance_overrides))

    def evolve(self, **changes: Any) -> "Prescription":
        """Copy with changes applied; state_timestamps is copied, never shared."""
        changes.setdefault("state_timestamps", dict(self.state_timestamps))
        return replace(self, **changes)


@dataclass(frozen=True)
class StateChange:
    """Audit-grade record of one workflow transition."""

    prescription_id: str
    from_state: WorkflowState | None
    to_state: WorkflowState
    actor_id: str
    actor_name: str = ""
    changed_at: datetime = field(default_factory=utcnow)
    reason: str | None = None
    notes: str | None = None
    id: str = field(default_factory=lambda: f"SC-{uuid.uuid4().hex[:16]}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "prescription_id": self.prescription_id,
            "from_state": self.from_state.value if self.from_state else None,
            "to_state": self.to_state.value,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "changed_at": self.changed_at.isoformat(),
            "reason": self.reason,
            "notes": self.notes,
        }


def create_state_change(
    prescription_id: str,
    from_state: WorkflowState | None,
    to_state: WorkflowState,
    actor: Actor,
    *,
    reason: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> StateChange:
    return StateChange(
        prescription_id=prescription_id,
        from_state=from_state,
        to_state=to_state,
        actor_id=actor.id,
        actor_name=actor.display_name,
        changed_at=now or utcnow(),
        reason=reason,
        notes=notes,
    )


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a committed workflow transition."""

    prescription: Prescription
    state_change: StateChange
    ledger_entries: tuple[LedgerEntry, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def new_state(self) -> WorkflowState:
        return self.prescription.state

    @property
    def previous_state(self) -> WorkflowState | None:
        return self.state_change.from_state


class IntakeRequest(BaseModel):
    """New prescription as captured at the intake window."""

    model_config = ConfigDict(str_strip_whitespace=True)

    rx_number: str = Field(min_length=1)
    pharmacy_id: str = Field(min_length=1)
    patient_id: str = Field(min_length=1)
    prescriber_id: str = Field(min_length=1)
    ndc: str = Field(min_length=1)
    schedule: DeaSchedule
    quantity: float = Field(gt=0)
    days_supply: int = Field(gt=0)
    drug_name: str = ""
    prescriber_dea: str | None = None
    refills_allowed: int = Field(default=0, ge=0)
    refills_used: int = Field(default=0, ge=0)
    priority: WorkflowPriority = WorkflowPriority.NORMAL
    written_at: datetime | None = None
    is_partial_fill: bool = False
    has_insurance: bool = True
    dur_alerts: list[str] = Field(default_factory=list)

    @field_validator("schedule", mode="before")
    @classmethod
    def _parse_schedule(cls, value: Any) -> DeaSchedule:
        try:
            return DeaSchedule.parse(value)
        except ValidationError as exc:
            raise ValueError(str(exc)) from None

    @model_validator(mode="after")
    def _check_refills(self) -> "IntakeRequest":
        if self.refills_used > self.refills_allowed:
            msg = "refills_used cannot exceed refills_allowed"
            raise ValueError(msg)
        if self.schedule is DeaSchedule.II and self.refills_allowed:
            msg = "Schedule II prescriptions cannot have refills"
            raise ValueError(msg)
        return self

    def to_prescription(self, prescription_id: str, now: datetime) -> Prescription:
        return Prescription(
            id=prescription_id,
            rx_number=self.rx_number,
            pharmacy_id=self.pharmacy_id,
            patient_id=self.patient_id,
            prescriber_id=self.prescriber_id,
            ndc=self.ndc,
            schedule=self.schedule,
            quantity=self.quantity,
            days_supply=self.days_supply,
            drug_name=self.drug_name,
            prescriber_dea=self.prescriber_dea,
            refills_allowed=self.refills_allowed,
            refills_used=self.refills_used,
            priority=self.priority,
            written_at=self.written_at or now,
            is_partial_fill=self.is_partial_fill,
            has_insurance=self.has_insurance,
            unresolved_dur_alerts=tuple(self.dur_alerts),
            state=WorkflowState.INTAKE,
            state_timestamps={WorkflowState.INTAKE: now},
            created_at=now,
            updated_at=now,
        )
