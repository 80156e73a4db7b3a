"""
NCPDP reject code knowledge base.

Closed, read-only catalogue. A code outside the catalogue yields ``None``
from ``get_reject_code_resolution``; callers must treat that as "escalate to
a human", never as "no issue".
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from pharmflow.core.exceptions import UnknownRejectCode
from pharmflow.types import OverrideCode


class RejectCategory(Enum):
    COVERAGE = "coverage"
    QUANTITY = "quantity"
    DUR = "dur"
    PRESCRIBER = "prescriber"
    PATIENT = "patient"
    DRUG = "drug"
    OTHER = "other"


@dataclass(frozen=True)
class RejectCode:
    code: str
    description: str
    category: RejectCategory
    action_required: str


@dataclass(frozen=True)
class RejectCodeResolution:
    code: str
    description: str
    category: RejectCategory
    common_causes: tuple[str, ...]
    resolution_steps: tuple[str, ...]
    requires_pharmacist: bool
    can_override: bool
    override_codes: tuple[OverrideCode, ...] = field(default_factory=tuple)
    escalation_required: bool = True

    def allows_override(self, override_code: str) -> bool:
        return self.can_override and any(o.code == override_code for o in self.override_codes)

    def override(self, override_code: str) -> OverrideCode | None:
        for candidate in self.override_codes:
            if candidate.code == override_code:
                return candidate
        return None


def _catalogue(*codes: RejectCode) -> MappingProxyType[str, RejectCode]:
    return MappingProxyType({c.code: c for c in codes})


REJECT_CODES = _catalogue(
    RejectCode("70", "Product/Service Not Covered", RejectCategory.COVERAGE,
               "Check formulary status, may need prior authorization or formulary alternative"),
    RejectCode("75", "Prior Authorization Required", RejectCategory.COVERAGE,
               "Submit prior authorization request to PBM"),
    RejectCode("76", "Plan Limitations Exceeded", RejectCategory.QUANTITY,
               "Check quantity limits, may need override or quantity reduction"),
    RejectCode("79", "Refill Too Soon", RejectCategory.QUANTITY,
               "Wait until refill date or request vacation/emergency override"),
    RejectCode("88", "DUR Reject", RejectCategory.DUR,
               "Review DUR alert and provide clinical override with reason code"),
    RejectCode("MR", "M/I Prescriber ID", RejectCategory.PRESCRIBER,
               "Verify prescriber NPI and DEA number"),
    RejectCode("7", "M/I Cardholder ID", RejectCategory.PATIENT,
               "Verify member ID and person code with patient card"),
    RejectCode("8", "M/I Person Code", RejectCategory.PATIENT,
               "Verify person code (01=cardholder, 02=spouse, etc.)"),
    RejectCode("15", "M/I Date of Birth", RejectCategory.PATIENT,
               "Verify patient date of birth matches insurance records"),
    RejectCode("19", "M/I Days Supply", RejectCategory.QUANTITY,
               "Verify days supply calculation matches quantity"),
    RejectCode("22", "M/I Quantity Dispensed", RejectCategory.QUANTITY,
               "Verify quantity and metric decimal quantity"),
    RejectCode("25", "M/I Prescriber ID", RejectCategory.PRESCRIBER,
               "Verify prescriber NPI is valid and active"),
    RejectCode("41", "Submit Bill to Other Processor or Primary Payer", RejectCategory.OTHER,
               "Bill primary insurance first or check coordination of benefits"),
    RejectCode("65", "Patient Not Covered", RejectCategory.COVERAGE,
               "Verify patient eligibility and effective dates"),
    RejectCode("69", "Filled After Coverage Terminated", RejectCategory.COVERAGE,
               "Verify coverage dates, patient may need to pay cash"),
    RejectCode("ER", "Early Refill - Quantity on Hand Exceeds Threshold", RejectCategory.QUANTITY,
               "Wait for refill date or request override"),
    RejectCode("MG", "Drug Conflict with Preferred Product", RejectCategory.DRUG,
               "Consider therapeutic alternative on formulary"),
)

OVERRIDE_CODES: MappingProxyType[str, tuple[OverrideCode, ...]] = MappingProxyType(
    {
        # Professional service codes for DUR conflicts
        "DUR": (
            OverrideCode("M0", "Prescriber consulted", True),
            OverrideCode("P0", "Patient consulted", False),
            OverrideCode("1A", "Filled as directed - prescriber aware", True),
            OverrideCode("2A", "Prescriber authorization obtained", True),
            OverrideCode("3A", "Drug therapy unchanged", False),
            OverrideCode("5A", "Therapy appropriate per clinical judgment", True),
            OverrideCode("6A", "Therapy appropriate per literature", True),
        ),
        "EARLY_REFILL": (
            OverrideCode("VS", "Vacation supply", False),
            OverrideCode("LTC", "Long term care", False),
            OverrideCode("EM", "Emergency supply", True),
            OverrideCode("LS", "Lost/Stolen medication", True),
            OverrideCode("HM", "Hospitalization/Medical procedure", True),
            OverrideCode("DS", "Dosage change", True),
        ),
        "QUANTITY": (
            OverrideCode("QL", "Quantity limit override", True),
            OverrideCode("DS", "Days supply limit override", True),
            OverrideCode("PA", "Prior authorization on file", True),
        ),
    }
)


@dataclass(frozen=True)
class _Guidance:
    common_causes: tuple[str, ...]
    resolution_steps: tuple[str, ...]
    requires_pharmacist: bool
    can_override: bool
    override_codes: tuple[OverrideCode, ...]
    escalation_required: bool


_GUIDANCE: MappingProxyType[str, _Guidance] = MappingProxyType(
    {
        "70": _Guidance(
            ("Drug not on formulary", "Drug requires step therapy", "Drug is excluded from plan"),
            (
                "Check formulary for therapeutic alternatives",
                "Contact prescriber for alternative medication",
                "Submit prior authorization if step therapy required",
                "Convert to cash if patient declines alternatives",
            ),
            requires_pharmacist=True,
            can_override=False,
            override_codes=(),
            escalation_required=True,
        ),
        "75": _Guidance(
            ("Drug requires prior authorization", "Prior auth expired", "Prior auth number not submitted"),
            (
                "Check if prior auth exists in system",
                "Submit prior auth request to PBM",
                "Use Prior Auth phone number on card",
                "Contact prescriber for clinical documentation",
            ),
            requires_pharmacist=True,
            can_override=True,
            override_codes=OVERRIDE_CODES["QUANTITY"],
            escalation_required=True,
        ),
        "76": _Guidance(
            ("Quantity exceeds plan limit", "Days supply exceeds plan limit", "Annual limit reached"),
            (
                "Check plan quantity limits",
                "Reduce quantity to plan limit",
                "Submit override with documentation",
                "Contact plan for override authorization",
            ),
            requires_pharmacist=False,
            can_override=True,
            override_codes=OVERRIDE_CODES["QUANTITY"],
            escalation_required=False,
        ),
        "79": _Guidance(
            ("Refill requested before 80% used", "Early refill - quantity on hand", "Insurance edit - too soon"),
            (
                "Calculate eligible refill date",
                "Apply vacation supply override if applicable",
                "Document emergency need if applicable",
                "Wait until eligible date",
            ),
            requires_pharmacist=False,
            can_override=True,
            override_codes=OVERRIDE_CODES["EARLY_REFILL"],
            escalation_required=False,
        ),
        "88": _Guidance(
            (
                "Drug-drug interaction detected",
                "Therapeutic duplication",
                "Age/gender conflict",
                "Allergy alert",
            ),
            (
                "Review DUR alert details",
                "Consult with prescriber if needed",
                "Apply professional service override code",
                "Document clinical rationale",
            ),
            requires_pharmacist=True,
            can_override=True,
            override_codes=OVERRIDE_CODES["DUR"],
            escalation_required=False,
        ),
        "MR": _Guidance(
            (
                "Invalid prescriber NPI",
                "Prescriber not enrolled with plan",
                "DEA number required for controlled substance",
            ),
            (
                "Verify prescriber NPI in NPPES",
                "Confirm DEA number for controlled substances",
                "Contact prescriber for correct information",
                "Update prescriber record",
            ),
            requires_pharmacist=False,
            can_override=False,
            override_codes=(),
            escalation_required=True,
        ),
        "7": _Guidance(
            (
                "Member ID does not match plan records",
                "Cardholder ID entered incorrectly",
                "Plan requires different ID format",
            ),
            (
                "Verify member ID on insurance card",
                "Check for leading zeros or spaces",
                "Try alternative ID formats",
                "Contact plan to verify member ID",
            ),
            requires_pharmacist=False,
            can_override=False,
            override_codes=(),
            escalation_required=False,
        ),
        "65": _Guidance(
            ("Patient not enrolled in plan", "Coverage terminated", "Effective date not reached"),
            (
                "Verify patient eligibility dates",
                "Check for secondary insurance",
                "Contact plan to verify coverage",
                "Convert to cash if no coverage",
            ),
            requires_pharmacist=False,
            can_override=False,
            override_codes=(),
            escalation_required=True,
        ),
    }
)

# Catalogued codes without specific guidance go to the PBM help desk.
_DEFAULT_GUIDANCE = _Guidance(
    ("Unknown - contact PBM help desk",),
    ("Review reject code", "Contact PBM help desk"),
    requires_pharmacist=True,
    can_override=False,
    override_codes=(),
    escalation_required=True,
)


def _normalize(code: str) -> str:
    return str(code).strip().upper()


def get_reject_code_info(code: str) -> RejectCode | None:
    return REJECT_CODES.get(_normalize(code))


def get_reject_code_resolution(code: str) -> RejectCodeResolution | None:
    """
    Look up resolution guidance for a reject code.

    Returns:
        The resolution, or None for codes outside the knowledge base
    """
    base = get_reject_code_info(code)
    if base is None:
        return None

    guidance = _GUIDANCE.get(base.code, _DEFAULT_GUIDANCE)
    return RejectCodeResolution(
        code=base.code,
        description=base.description,
        category=base.category,
        common_causes=guidance.common_causes,
        resolution_steps=guidance.resolution_steps,
        requires_pharmacist=guidance.requires_pharmacist,
        can_override=guidance.can_override,
        override_codes=guidance.override_codes,
        escalation_required=guidance.escalation_required,
    )


def require_resolution(code: str) -> RejectCodeResolution:
    """
    Like get_reject_code_resolution, but unknown codes raise.

    Raises:
        UnknownRejectCode: If the code is outside the knowledge base
    """
    resolution = get_reject_code_resolution(code)
    if resolution is None:
        raise UnknownRejectCode(code)
    return resolution


def parse_reject_codes(codes: Iterable[str]) -> list[RejectCode]:
    """Map raw codes to catalogue entries; unknown codes become escalation placeholders."""
    parsed = []
    for code in codes:
        known = get_reject_code_info(code)
        if known is None:
            known = RejectCode(
                code=str(code),
                description=f"Unknown reject code: {code}",
                category=RejectCategory.OTHER,
                action_required="Contact PBM for clarification",
            )
        parsed.append(known)
    return parsed
