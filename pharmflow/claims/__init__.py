"""
Claims adjudication engine.

Stateless: reject-code knowledge base, refill timing, cash pricing and
prior-authorization validity.
"""

from pharmflow.claims.adjudication import (
    UNSPECIFIED_REJECT,
    AppliedOverride,
    ClaimOutcome,
    ClaimResponse,
    ClaimStatus,
    OverrideSubmission,
    outstanding_rejects,
    resolution_guidance,
    reversed_outcome,
)
from pharmflow.claims.prior_auth import (
    PriorAuthorizationRequest,
    PriorAuthRequestInput,
    PriorAuthStatus,
    get_days_until_pa_expiration,
    is_prior_auth_valid,
)
from pharmflow.claims.pricing import (
    CashConversion,
    CashPriceCalculation,
    PricingComparison,
    calculate_cash_price,
    compare_pricing_options,
)
from pharmflow.claims.refill import EligibleRefillInfo, calculate_eligible_refill_date
from pharmflow.claims.reject_codes import (
    OVERRIDE_CODES,
    REJECT_CODES,
    RejectCategory,
    RejectCode,
    RejectCodeResolution,
    get_reject_code_info,
    get_reject_code_resolution,
    parse_reject_codes,
    require_resolution,
)

__all__ = [
    "OVERRIDE_CODES",
    "REJECT_CODES",
    "UNSPECIFIED_REJECT",
    "AppliedOverride",
    "CashConversion",
    "CashPriceCalculation",
    "ClaimOutcome",
    "ClaimResponse",
    "ClaimStatus",
    "EligibleRefillInfo",
    "OverrideSubmission",
    "PriorAuthRequestInput",
    "PriorAuthStatus",
    "PriorAuthorizationRequest",
    "PricingComparison",
    "RejectCategory",
    "RejectCode",
    "RejectCodeResolution",
    "calculate_cash_price",
    "calculate_eligible_refill_date",
    "compare_pricing_options",
    "get_days_until_pa_expiration",
    "get_reject_code_info",
    "get_reject_code_resolution",
    "is_prior_auth_valid",
    "outstanding_rejects",
    "parse_reject_codes",
    "require_resolution",
    "resolution_guidance",
    "reversed_outcome",
]
