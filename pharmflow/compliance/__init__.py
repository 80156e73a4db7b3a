"""
Controlled-substance compliance engine.

Pure rule tables and validation functions; no dependency on the claims
engine or the workflow.
"""

from pharmflow.compliance.dea import generate_test_dea_number, is_valid_dea_number
from pharmflow.compliance.dispensing import (
    COMPLIANCE_OVERRIDE_CODES,
    ComplianceIssue,
    CSValidationResult,
    IssueCode,
    IssueSeverity,
    validate_cs_dispensing,
)
from pharmflow.compliance.inventory import (
    BiennialInventorySnapshot,
    BiennialStatus,
    BiennialTimingResult,
    VarianceResult,
    VarianceSeverity,
    calculate_variance,
    validate_biennial_inventory_timing,
)
from pharmflow.compliance.ledger import (
    LedgerEntry,
    fold_ledger,
    record_cs_transaction,
    signed_delta,
    verify_ledger,
)
from pharmflow.compliance.rules import CS_RULES, CSRules, get_rules
from pharmflow.compliance.theft_loss import (
    Dea106Summary,
    IncidentType,
    TheftLossItem,
    TheftLossReport,
    generate_dea106_summary,
    requires_dea_report,
)

__all__ = [
    "COMPLIANCE_OVERRIDE_CODES",
    "CS_RULES",
    "BiennialInventorySnapshot",
    "BiennialStatus",
    "BiennialTimingResult",
    "CSRules",
    "CSValidationResult",
    "ComplianceIssue",
    "Dea106Summary",
    "IncidentType",
    "IssueCode",
    "IssueSeverity",
    "LedgerEntry",
    "TheftLossItem",
    "TheftLossReport",
    "VarianceResult",
    "VarianceSeverity",
    "calculate_variance",
    "fold_ledger",
    "generate_dea106_summary",
    "generate_test_dea_number",
    "get_rules",
    "is_valid_dea_number",
    "record_cs_transaction",
    "requires_dea_report",
    "signed_delta",
    "validate_biennial_inventory_timing",
    "validate_cs_dispensing",
    "verify_ledger",
]
