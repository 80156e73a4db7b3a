"""Prior authorization requests and validity checks."""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from pharmflow.core.clock import DAY, as_utc, resolve_now, utcnow


class PriorAuthStatus(Enum):
    DRAFT = "draft"
    PENDING_INFO = "pending_info"
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    DENIED = "denied"
    APPEALING = "appealing"
    EXPIRED = "expired"


@dataclass
class PriorAuthorizationRequest:
    prescription_id: str
    patient_id: str
    drug_ndc: str
    status: PriorAuthStatus = PriorAuthStatus.DRAFT
    expiration_date: datetime | None = None
    authorization_number: str | None = None
    authorized_quantity: float | None = None
    authorized_refills: int | None = None
    insurance_plan_id: str = ""
    drug_name: str = ""
    prescriber_id: str = ""
    diagnosis: str | None = None
    icd10_codes: list[str] = field(default_factory=list)
    previous_therapies: list[str] = field(default_factory=list)
    clinical_notes: str | None = None
    denial_reason: str | None = None
    submitted_at: datetime | None = None
    approved_at: datetime | None = None
    denied_at: datetime | None = None
    id: str = field(default_factory=lambda: f"PA-{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=utcnow)


def is_prior_auth_valid(pa: PriorAuthorizationRequest, *, now: datetime | None = None) -> bool:
    """Approved and not yet expired. Invalid from the expiration instant onward."""
    if pa.status is not PriorAuthStatus.APPROVED:
        return False
    if pa.expiration_date is None:
        return True
    return as_utc(pa.expiration_date, "expiration_date") > resolve_now(now)


def get_days_until_pa_expiration(
    pa: PriorAuthorizationRequest, *, now: datetime | None = None
) -> int | None:
    """Whole days until expiration (rounded up, 0 once expired); None without an expiration."""
    if pa.expiration_date is None:
        return None
    remaining = (as_utc(pa.expiration_date, "expiration_date") - resolve_now(now)) / DAY
    return max(0, math.ceil(remaining))


class PriorAuthRequestInput(BaseModel):
    prescription_id: str
    patient_id: str
    insurance_plan_id: str
    drug_ndc: str
    drug_name: str
    prescriber_id: str
    diagnosis: str | None = None
    icd10_codes: list[str] = Field(default_factory=list)
    previous_therapies: list[str] = Field(default_factory=list)
    clinical_notes: str | None = None

    def to_request(self) -> PriorAuthorizationRequest:
        return PriorAuthorizationRequest(**self.model_dump())
