"""
Controlled-substance dispensing validation.

Every rule is evaluated; violations accumulate so the operator sees all of
them at once. Domain violations are reported in the result, only malformed
input raises.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType

from pharmflow.compliance.dea import is_valid_dea_number
from pharmflow.compliance.rules import CS_RULES, CSRules
from pharmflow.core.clock import DAY, as_utc, resolve_now
from pharmflow.core.exceptions import ValidationError
from pharmflow.types import DeaSchedule, OverrideCode


class IssueSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"


class IssueCode(Enum):
    SCHEDULE_I = "schedule_i"
    PRESCRIPTION_EXPIRED = "prescription_expired"
    REFILL_LIMIT_EXCEEDED = "refill_limit_exceeded"
    PARTIAL_FILL_NOT_ALLOWED = "partial_fill_not_allowed"
    PRESCRIBER_DEA_MISSING = "prescriber_dea_missing"
    SCHEDULE_II_REFILL = "schedule_ii_refill"
    PRESCRIBER_DEA_MALFORMED = "prescriber_dea_malformed"
    EPCS_VERIFICATION = "epcs_verification"
    UNRESOLVED_DUR = "unresolved_dur"


# Issue codes a pharmacist may clear with a documented override.
COMPLIANCE_OVERRIDE_CODES: MappingProxyType[IssueCode, tuple[OverrideCode, ...]] = MappingProxyType(
    {
        IssueCode.PRESCRIBER_DEA_MISSING: (
            OverrideCode("DV", "Prescriber DEA number verified directly with prescriber"),
        ),
    }
)


@dataclass(frozen=True)
class ComplianceIssue:
    code: IssueCode
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR

    @property
    def overridable(self) -> bool:
        return self.code in COMPLIANCE_OVERRIDE_CODES

    @property
    def blocking(self) -> bool:
        return self.severity is IssueSeverity.ERROR

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "severity": self.severity.value,
            "overridable": self.overridable,
        }


@dataclass
class CSValidationResult:
    valid: bool
    rules: CSRules
    issues: list[ComplianceIssue] = field(default_factory=list)
    days_since_written: int = 0
    requires_witness: bool = False
    requires_dea_verification: bool = True

    @property
    def errors(self) -> list[str]:
        return [i.message for i in self.issues if i.severity is IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity is IssueSeverity.WARNING]

    @property
    def blocking_issues(self) -> list[ComplianceIssue]:
        return [i for i in self.issues if i.blocking]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "issues": [i.to_dict() for i in self.issues],
            "schedule": self.rules.schedule.value,
            "days_since_written": self.days_since_written,
        }


def validate_cs_dispensing(
    schedule: DeaSchedule | str,
    prescription_date: datetime | date,
    refill_number: int,
    is_partial_fill: bool,
    prescriber_dea: str | None = None,
    *,
    now: datetime | None = None,
) -> CSValidationResult:
    """
    Validate a controlled-substance fill against DEA schedule rules.

    Args:
        schedule: DEA schedule of the drug
        prescription_date: Date the prescription was written
        refill_number: 0 for the original fill, 1 for the first refill, ...
        is_partial_fill: Whether this fill dispenses less than the written quantity
        prescriber_dea: Prescriber DEA registration number
        now: Evaluation instant (defaults to the current time)

    Returns:
        CSValidationResult with every error and warning

    Raises:
        ValidationError: On malformed dates, unknown schedules or a negative refill number
    """
    schedule = DeaSchedule.parse(schedule)
    written = as_utc(prescription_date, "prescription_date")
    current = resolve_now(now)
    if isinstance(refill_number, bool) or not isinstance(refill_number, int) or refill_number < 0:
        msg = f"refill_number must be a non-negative integer, got {refill_number!r}"
        raise ValidationError(msg, field="refill_number")

    rules = CS_RULES[schedule]
    issues: list[ComplianceIssue] = []
    days_since_written = int((current - written) // DAY)

    if schedule is DeaSchedule.I:
        issues.append(
            ComplianceIssue(
                IssueCode.SCHEDULE_I,
                "Schedule I controlled substances cannot be dispensed in a retail setting.",
            )
        )

    if days_since_written > rules.prescription_valid_days:
        issues.append(
            ComplianceIssue(
                IssueCode.PRESCRIPTION_EXPIRED,
                f"Prescription expired. {schedule.label} prescriptions valid for "
                f"{rules.prescription_valid_days} days.",
            )
        )

    if refill_number > rules.refills_allowed:
        issues.append(
            ComplianceIssue(
                IssueCode.REFILL_LIMIT_EXCEEDED,
                f"Refill limit exceeded. {schedule.label} allows {rules.refills_allowed} refills.",
            )
        )

    if is_partial_fill and not rules.partial_fill_allowed:
        issues.append(
            ComplianceIssue(
                IssueCode.PARTIAL_FILL_NOT_ALLOWED,
                f"Partial fills not allowed for {schedule.label}.",
            )
        )

    if not prescriber_dea:
        issues.append(
            ComplianceIssue(
                IssueCode.PRESCRIBER_DEA_MISSING,
                "Prescriber DEA number required for controlled substances.",
            )
        )
    elif not is_valid_dea_number(prescriber_dea):
        issues.append(
            ComplianceIssue(
                IssueCode.PRESCRIBER_DEA_MALFORMED,
                "Prescriber DEA number format may be invalid. Verify before dispensing.",
                IssueSeverity.WARNING,
            )
        )

    if schedule is DeaSchedule.II:
        if refill_number > 0:
            issues.append(
                ComplianceIssue(
                    IssueCode.SCHEDULE_II_REFILL,
                    "Schedule II prescriptions cannot be refilled. New prescription required.",
                )
            )
        issues.append(
            ComplianceIssue(
                IssueCode.EPCS_VERIFICATION,
                "Schedule II: Verify original prescription is electronic (EPCS) or hand-signed paper.",
                IssueSeverity.WARNING,
            )
        )

    return CSValidationResult(
        valid=not any(i.blocking for i in issues),
        rules=rules,
        issues=issues,
        days_since_written=days_since_written,
    )
