"""
All pharmflow exceptions.

Rule engines never raise for expected domain conditions; they return
structured results. The workflow layer converts those results into the
blocking errors below.
"""

from typing import Any


class PharmFlowError(Exception):
    """Base pharmflow error"""

    retryable: bool = False


class ValidationError(PharmFlowError):
    """
    Schema or format violation in caller input.

    Caller-correctable; never retried automatically.
    """

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidTransition(PharmFlowError):
    """Requested state is not a permitted successor of the current state."""

    def __init__(self, prescription_id: str, from_state: Any, to_state: Any):
        self.prescription_id = prescription_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition for prescription {prescription_id}: "
            f"{_value(from_state)} → {_value(to_state)}"
        )


class PermissionDenied(PharmFlowError):
    """Actor lacks the role required for the requested state."""

    def __init__(self, actor_id: str, required_role: str, target: Any):
        self.actor_id = actor_id
        self.required_role = required_role
        self.target = target
        super().__init__(f"State {_value(target)} requires {required_role} access (actor {actor_id})")


class ComplianceBlocked(PharmFlowError):
    """
    Controlled-substance or clinical rule engine rejected the transition.

    Carries every failing reason and every warning so the operator sees the
    full picture. Issues tagged ``overridable`` can be cleared with a
    documented override code and a justification.
    """

    def __init__(
        self,
        prescription_id: str,
        issues: list[Any],
        warnings: list[str] | None = None,
        result: Any = None,
    ):
        self.prescription_id = prescription_id
        self.issues = list(issues)
        self.warnings = list(warnings or [])
        self.result = result
        reasons = "; ".join(issue.message for issue in self.issues)
        super().__init__(f"Prescription {prescription_id} blocked: {reasons}")

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues]

    @property
    def overridable(self) -> bool:
        """True when every blocking issue can be overridden."""
        return bool(self.issues) and all(issue.overridable for issue in self.issues)


class ClaimRejected(PharmFlowError):
    """Insurance claim carries reject codes with no applied override."""

    def __init__(self, prescription_id: str, reject_codes: list[str], resolutions: dict[str, Any]):
        self.prescription_id = prescription_id
        self.reject_codes = list(reject_codes)
        self.resolutions = dict(resolutions)
        super().__init__(
            f"Claim for prescription {prescription_id} rejected: {', '.join(self.reject_codes)}"
        )

    @property
    def escalations(self) -> list[str]:
        """Codes outside the knowledge base; a human must handle these."""
        return [code for code in self.reject_codes if self.resolutions.get(code) is None]


class ConcurrencyConflict(PharmFlowError):
    """Lost the per-key exclusion race or committed against a stale version. Safe to retry."""

    retryable = True

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"Concurrent modification of {key}; retry the operation")


class UnknownRejectCode(PharmFlowError):
    """Claims reject code outside the knowledge base. Must be escalated."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Unknown reject code {code!r}: escalate to a pharmacist or PBM help desk")


def _value(state: Any) -> str:
    return getattr(state, "value", str(state))
