"""
Claim outcomes and reject overrides.

A paid claim clears the way to filling. A rejected claim blocks until every
reject code carries an applied override that the knowledge base allows.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pharmflow.claims.reject_codes import RejectCodeResolution, get_reject_code_resolution
from pharmflow.core.clock import utcnow

# Placeholder for a rejection the payer sent without reject codes
UNSPECIFIED_REJECT = "UNSPECIFIED"


class ClaimStatus(Enum):
    PAID = "paid"
    REJECTED = "rejected"
    REVERSED = "reversed"
    CASH = "cash"


@dataclass(frozen=True)
class ClaimOutcome:
    """Latest adjudication response recorded against a prescription."""

    status: ClaimStatus
    reject_codes: tuple[str, ...] = ()
    patient_pay: float | None = None
    plan_paid: float | None = None
    transaction_id: str | None = None
    received_at: datetime = field(default_factory=utcnow)

    @property
    def is_rejected(self) -> bool:
        return self.status is ClaimStatus.REJECTED


@dataclass(frozen=True)
class AppliedOverride:
    """A documented override clearing one reject code or compliance issue."""

    target: str
    override_code: str
    justification: str
    actor_id: str
    applied_at: datetime = field(default_factory=utcnow)


class ClaimResponse(BaseModel):
    """Adjudication response as received from the PBM switch."""

    model_config = ConfigDict(frozen=True)

    status: ClaimStatus
    reject_codes: list[str] = Field(default_factory=list)
    patient_pay: float | None = Field(default=None, ge=0)
    plan_paid: float | None = Field(default=None, ge=0)
    transaction_id: str | None = None

    @field_validator("reject_codes")
    @classmethod
    def _normalize_codes(cls, codes: list[str]) -> list[str]:
        return [code.strip().upper() for code in codes if code.strip()]

    def to_outcome(self, received_at: datetime | None = None) -> ClaimOutcome:
        return ClaimOutcome(
            status=self.status,
            reject_codes=tuple(self.reject_codes),
            patient_pay=self.patient_pay,
            plan_paid=self.plan_paid,
            transaction_id=self.transaction_id,
            received_at=received_at or utcnow(),
        )


class OverrideSubmission(BaseModel):
    prescription_id: str
    reject_code: str
    override_code: str
    override_reason: str = Field(min_length=1)
    documentation_provided: bool = False

    @field_validator("override_reason")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            msg = "override reason must not be blank"
            raise ValueError(msg)
        return value.strip()


def resolution_guidance(codes: Iterable[str]) -> dict[str, RejectCodeResolution | None]:
    """Resolution per code; None marks codes that need human escalation."""
    return {code: get_reject_code_resolution(code) for code in codes}


def outstanding_rejects(claim: ClaimOutcome | None, overrides: Iterable[AppliedOverride]) -> list[str]:
    """
    Reject codes on the claim that have no applied override.

    A rejection without any code is reported as ``UNSPECIFIED_REJECT``, which
    has no resolution and so must be escalated.
    """
    if claim is None or not claim.is_rejected:
        return []
    if not claim.reject_codes:
        return [UNSPECIFIED_REJECT]
    cleared = {o.target for o in overrides}
    return [code for code in claim.reject_codes if code not in cleared]


def reversed_outcome(claim: ClaimOutcome, reversed_at: datetime | None = None) -> ClaimOutcome:
    """The claim as it stands after a reversal was sent to the payer."""
    return replace(claim, status=ClaimStatus.REVERSED, received_at=reversed_at or utcnow())
