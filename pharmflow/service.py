"""
WorkflowService - async entry point for the dispensing workflow.

Every mutation runs as a read-validate-commit cycle under the prescription's
lock. Transitions that move controlled stock also take the ledger lock for
``(pharmacy_id, ndc)``, always after the prescription lock. The new
prescription state, its history record and any ledger entries are committed
together through ``PharmacyStorage.commit_transition``.

Audit writes happen after the commit and never undo it: a failing audit sink
is logged at ERROR and counted as a degraded-mode signal.

Usage:
    >>> service = WorkflowService(WorkflowConfig())
    >>> rx = await service.intake(IntakeRequest(...), tech)
    >>> result = await service.advance_workflow(rx.id, WorkflowState.DATA_ENTRY, tech)
"""

import time
import uuid
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from pharmflow.audit.base import AuditAction, AuditLogger, RetentionService
from pharmflow.claims.adjudication import (
    AppliedOverride,
    ClaimResponse,
    ClaimStatus,
    reversed_outcome,
)
from pharmflow.claims.pricing import (
    CashPriceCalculation,
    PricingComparison,
    calculate_cash_price,
    compare_pricing_options,
)
from pharmflow.claims.prior_auth import PriorAuthorizationRequest, PriorAuthRequestInput
from pharmflow.claims.refill import EligibleRefillInfo, calculate_eligible_refill_date
from pharmflow.claims.reject_codes import (
    RejectCodeResolution,
    get_reject_code_resolution,
    require_resolution,
)
from pharmflow.compliance.dispensing import (
    COMPLIANCE_OVERRIDE_CODES,
    CSValidationResult,
    IssueCode,
    validate_cs_dispensing,
)
from pharmflow.compliance.ledger import LedgerEntry, record_cs_transaction
from pharmflow.compliance.rules import get_rules
from pharmflow.compliance.theft_loss import (
    Dea106Summary,
    TheftLossReport,
    generate_dea106_summary,
)
from pharmflow.core.clock import utcnow
from pharmflow.core.config import WorkflowConfig, get_config
from pharmflow.core.exceptions import (
    ClaimRejected,
    ComplianceBlocked,
    ConcurrencyConflict,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from pharmflow.core.locks import KeyedLock
from pharmflow.core.logger import get_logger
from pharmflow.monitoring.logging import workflow_logger
from pharmflow.storage.base import PharmacyStorage
from pharmflow.storage.errors import NotFoundError
from pharmflow.types import Actor, CSTransactionType, DeaSchedule, StaffRole
from pharmflow.workflow.queue import (
    QueueSummary,
    calculate_promise_time,
    calculate_queue_summary,
    filter_by_assignee,
    sort_workflow_items,
)
from pharmflow.workflow.state_machine import PrescriptionStateMachine
from pharmflow.workflow.states import TERMINAL_STATES, WorkflowState
from pharmflow.workflow.types import (
    IntakeRequest,
    Prescription,
    StateChange,
    TransitionResult,
    create_state_change,
)
from pharmflow.workflow.will_call import (
    DEFAULT_HOLD_EXTENSION_DAYS,
    IdVerification,
    WillCallBin,
    WillCallScan,
    check_pickup_id,
    create_bin,
    evaluate_bin,
    extend_hold,
    mark_notified,
    mark_picked_up,
    return_to_stock,
    scan_bins,
)

logger = get_logger(__name__)

RESOURCE_TYPE = "prescription"

_AUDIT_ACTIONS = {
    WorkflowState.FILLING: AuditAction.PRESCRIPTION_FILL,
    WorkflowState.READY: AuditAction.PRESCRIPTION_VERIFY,
    WorkflowState.SOLD: AuditAction.PRESCRIPTION_DISPENSE,
    WorkflowState.DELIVERED: AuditAction.PRESCRIPTION_DISPENSE,
    WorkflowState.RETURNED_TO_STOCK: AuditAction.PRESCRIPTION_RETURN,
}

_BLOCK_REASONS: dict[type[Exception], str] = {
    InvalidTransition: "invalid_transition",
    PermissionDenied: "permission",
    ComplianceBlocked: "compliance",
    ClaimRejected: "claim",
}

Mutation = Callable[[Prescription, datetime], Prescription]


def _rx_key(prescription_id: str) -> str:
    return f"rx:{prescription_id}"


def _ledger_key(pharmacy_id: str, ndc: str) -> str:
    return f"ledger:{pharmacy_id}:{ndc}"


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        msg = f"{field} is required"
        raise ValidationError(msg, field=field)
    return value.strip()


def _require_pharmacist(actor: Actor, target: Any) -> None:
    if not actor.is_pharmacist:
        raise PermissionDenied(actor.id, StaffRole.PHARMACIST.value, target)


class WorkflowService:
    """
    Orchestrates the state machine, the rule engines, storage and audit.

    Args:
        config: Workflow configuration (defaults to the global config)
        storage: Overrides ``config.storage``
        audit_logger: Overrides ``config.audit_logger``
        retention: Overrides ``config.retention_service``
        metrics: Any collector with the ``WorkflowMetrics`` recording methods
        locks: Shared per-key lock registry
        state_machine: Transition authority
        clock: Source of the current time
    """

    def __init__(
        self,
        config: WorkflowConfig | None = None,
        *,
        storage: PharmacyStorage | None = None,
        audit_logger: AuditLogger | None = None,
        retention: RetentionService | None = None,
        metrics: Any = None,
        locks: KeyedLock | None = None,
        state_machine: PrescriptionStateMachine | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or get_config()
        self.storage = storage or self.config.storage
        self.audit_logger = audit_logger or self.config.audit_logger
        self.retention = retention or self.config.retention_service
        self.metrics = metrics if metrics is not None else self.config.metrics_collector
        self.locks = locks or KeyedLock(timeout=self.config.lock_timeout)
        self.state_machine = state_machine or PrescriptionStateMachine()
        self._clock = clock or utcnow

    # ------------------------------------------------------------------
    # Intake and transitions
    # ------------------------------------------------------------------

    async def intake(self, request: IntakeRequest | dict[str, Any], actor: Actor) -> Prescription:
        """
        Register a new prescription in INTAKE.

        Raises:
            ValidationError: On malformed intake data
        """
        if not isinstance(request, IntakeRequest):
            try:
                request = IntakeRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e

        now = self._clock()
        prescription_id = f"RX-{uuid.uuid4().hex[:12].upper()}"
        rx = request.to_prescription(prescription_id, now)
        rx = rx.evolve(promise_time=calculate_promise_time(rx.priority, rx.state, now))

        change = create_state_change(rx.id, None, WorkflowState.INTAKE, actor, reason="intake", now=now)
        stored = await self.storage.create_prescription(rx, change)

        logger.info(f"Prescription {stored.id} ({stored.rx_number}) received at intake")
        await self._audit(
            AuditAction.CREATE,
            stored.id,
            actor,
            {"rx_number": stored.rx_number, "schedule": stored.schedule.value},
        )
        return stored

    async def advance_workflow(
        self,
        prescription_id: str,
        target_state: WorkflowState | str,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """
        Move a prescription to ``target_state``.

        Entering FILLING with a perpetual-inventory drug records a dispense
        entry; cancelling, returning to stock or sending a filled
        prescription back to data entry puts the pulled stock back.

        Raises:
            InvalidTransition: Target is not a permitted successor
            PermissionDenied: Target requires a pharmacist
            ComplianceBlocked: Controlled-substance rules or DUR alerts block filling
            ClaimRejected: Outstanding reject codes without an applied override
            ConcurrencyConflict: Lock timeout or stale version; retry
            NotFoundError: Unknown prescription
        """
        return await self._transition(
            prescription_id, self._parse_state(target_state), actor, reason=reason, notes=notes
        )

    async def _transition(
        self,
        prescription_id: str,
        target: WorkflowState,
        actor: Actor,
        *,
        reason: str | None = None,
        notes: str | None = None,
        mutate: Mutation | None = None,
    ) -> TransitionResult:
        started = time.perf_counter()
        warnings: list[str] = []
        entries: tuple[LedgerEntry, ...] = ()

        try:
            async with self.locks.hold(_rx_key(prescription_id)):
                rx = await self._load(prescription_id)
                self._set_log_context(rx, actor)
                now = self._clock()

                try:
                    check = self.state_machine.validate(rx, target, actor, now=now)
                except (InvalidTransition, PermissionDenied, ComplianceBlocked, ClaimRejected) as e:
                    self._record_blocked(rx, target, e)
                    raise

                warnings.extend(check.warnings)
                updated, change = self.state_machine.advance(
                    rx, target, actor, reason=reason, notes=notes, now=now
                )
                if mutate is not None:
                    updated = mutate(updated, now)

                movement = self._stock_movement(rx, target)
                if movement is None:
                    stored = await self._commit(updated, rx.version, state_change=change)
                else:
                    async with self.locks.hold(_ledger_key(rx.pharmacy_id, rx.ndc)):
                        entry, shortfall = await self._ledger_entry_for(rx, movement, actor, now)
                        if shortfall:
                            warnings.append(shortfall)
                        updated = updated.evolve(
                            stock_pulled=movement is CSTransactionType.DISPENSE
                        )
                        stored = await self._commit(
                            updated, rx.version, state_change=change, ledger_entries=(entry,)
                        )
                        entries = (entry,)
        except ConcurrencyConflict as e:
            self._record_conflict(e)
            raise
        finally:
            workflow_logger.clear_context()

        duration = time.perf_counter() - started
        self._record_transition(stored, change, actor, duration)
        for entry in entries:
            self._record_ledger(entry)
        await self._audit(
            _AUDIT_ACTIONS.get(target, AuditAction.UPDATE),
            stored.id,
            actor,
            {"from_state": change.from_state.value, "to_state": target.value, "reason": reason},
        )
        for entry in entries:
            await self._audit_ledger(entry, actor)

        return TransitionResult(stored, change, entries, tuple(warnings))

    def _stock_movement(self, rx: Prescription, target: WorkflowState) -> CSTransactionType | None:
        """Ledger transaction implied by ``rx.state → target``, if any."""
        if not get_rules(rx.schedule).perpetual_inventory:
            return None
        if target is WorkflowState.FILLING and not rx.stock_pulled:
            return CSTransactionType.DISPENSE
        if not rx.stock_pulled:
            return None
        if target in (WorkflowState.CANCELLED, WorkflowState.RETURNED_TO_STOCK):
            return CSTransactionType.RETURN_TO_STOCK
        if rx.state is WorkflowState.FILLING and target is WorkflowState.DATA_ENTRY:
            return CSTransactionType.RETURN_TO_STOCK
        return None

    async def _ledger_entry_for(
        self, rx: Prescription, transaction_type: CSTransactionType, actor: Actor, now: datetime
    ) -> tuple[LedgerEntry, str | None]:
        balance = await self.storage.get_balance(rx.pharmacy_id, rx.ndc)
        entry = record_cs_transaction(
            rx.pharmacy_id,
            rx.ndc,
            rx.schedule,
            transaction_type,
            rx.quantity,
            balance,
            actor.id,
            drug_name=rx.drug_name,
            actor_name=actor.display_name,
            now=now,
            prescription_id=rx.id,
        )

        shortfall = None
        if transaction_type is CSTransactionType.DISPENSE and rx.quantity > balance:
            shortfall = (
                f"Dispensing {rx.quantity} of {rx.ndc} exceeds the perpetual inventory "
                f"balance of {balance}; reconcile with a physical count"
            )
            logger.warning(shortfall)
        return entry, shortfall

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def record_claim_response(
        self, prescription_id: str, response: ClaimResponse | dict[str, Any], actor: Actor
    ) -> Prescription:
        """Store the latest adjudication response; earlier claim overrides are dropped."""
        if not isinstance(response, ClaimResponse):
            try:
                response = ClaimResponse.model_validate(response)
            except PydanticValidationError as e:
                raise ValidationError(str(e)) from e

        def apply(rx: Prescription, now: datetime) -> Prescription:
            return rx.evolve(claim=response.to_outcome(now), claim_overrides=(), updated_at=now)

        rx = await self._update(
            prescription_id,
            actor,
            apply,
            AuditAction.UPDATE,
            {"claim_status": response.status.value, "reject_codes": list(response.reject_codes)},
        )

        unknown = [code for code in response.reject_codes if get_reject_code_resolution(code) is None]
        if response.status is ClaimStatus.REJECTED and not response.reject_codes:
            logger.warning(f"Claim for {prescription_id} rejected without reject codes; escalate")
        elif response.status is ClaimStatus.REJECTED and unknown:
            logger.warning(
                f"Claim for {prescription_id} carries unknown reject codes {unknown}; escalate"
            )
        return rx

    async def apply_claim_override(
        self,
        prescription_id: str,
        reject_code: str,
        override_code: str,
        justification: str,
        actor: Actor,
    ) -> Prescription:
        """
        Clear one reject code on the recorded claim with a documented override.

        Raises:
            UnknownRejectCode: The code is outside the knowledge base
            ValidationError: No such reject on the claim, override code not
                allowed for it, or a blank justification
            PermissionDenied: The reject requires a pharmacist
        """
        justification = _require_text(justification, "justification")
        code = reject_code.strip().upper()
        resolution = require_resolution(code)
        if not resolution.allows_override(override_code):
            msg = f"Override code {override_code!r} is not accepted for reject {code}"
            raise ValidationError(msg, field="override_code")
        if resolution.requires_pharmacist:
            _require_pharmacist(actor, f"override of reject {code}")

        def apply(rx: Prescription, now: datetime) -> Prescription:
            if rx.claim is None or code not in rx.claim.reject_codes:
                msg = f"Reject code {code} is not on the recorded claim for {rx.id}"
                raise ValidationError(msg, field="reject_code")
            override = AppliedOverride(code, override_code, justification, actor.id, now)
            return rx.evolve(claim_overrides=(*rx.claim_overrides, override), updated_at=now)

        rx = await self._update(
            prescription_id,
            actor,
            apply,
            AuditAction.OVERRIDE,
            {"reject_code": code, "override_code": override_code, "justification": justification},
        )
        workflow_logger.override_applied(rx.id, code, override_code, actor.id)
        return rx

    async def record_prior_auth(
        self,
        prescription_id: str,
        prior_auth: PriorAuthorizationRequest | PriorAuthRequestInput,
        actor: Actor,
    ) -> Prescription:
        """Attach a prior authorization; an approved, unexpired one clears reject 75."""
        if isinstance(prior_auth, PriorAuthRequestInput):
            prior_auth = prior_auth.to_request()
        if prior_auth.prescription_id != prescription_id:
            msg = (
                f"Prior authorization {prior_auth.id} belongs to prescription "
                f"{prior_auth.prescription_id}, not {prescription_id}"
            )
            raise ValidationError(msg, field="prescription_id")

        def apply(rx: Prescription, now: datetime) -> Prescription:
            return rx.evolve(prior_auth=prior_auth, updated_at=now)

        return await self._update(
            prescription_id,
            actor,
            apply,
            AuditAction.UPDATE,
            {"prior_auth_id": prior_auth.id, "prior_auth_status": prior_auth.status.value},
        )

    def resolve_reject_code(self, code: str) -> RejectCodeResolution | None:
        return get_reject_code_resolution(code)

    def compare_pricing(
        self, insurance_patient_pay: float | None, cash_price: float
    ) -> PricingComparison:
        return compare_pricing_options(insurance_patient_pay, cash_price)

    def cash_price(
        self,
        acquisition_cost: float,
        dispensing_fee: float,
        markup_percent: float | None = None,
        minimum_price: float | None = None,
    ) -> CashPriceCalculation:
        markup = self.config.default_markup_percent if markup_percent is None else markup_percent
        return calculate_cash_price(acquisition_cost, dispensing_fee, markup, minimum_price)

    def refill_eligibility(
        self, last_fill_date: datetime | date, days_supply: int
    ) -> EligibleRefillInfo:
        return calculate_eligible_refill_date(
            last_fill_date, days_supply, self.config.refill_percentage, now=self._clock()
        )

    # ------------------------------------------------------------------
    # Compliance
    # ------------------------------------------------------------------

    async def validate_dispensing(self, prescription_id: str) -> CSValidationResult:
        """Run the controlled-substance rules against a stored prescription."""
        rx = await self.get_prescription(prescription_id)
        return self.state_machine.compliance_result(rx, self._clock())

    def validate_cs_dispensing(
        self,
        schedule: DeaSchedule | str,
        prescription_date: datetime | date,
        refill_number: int,
        is_partial_fill: bool,
        prescriber_dea: str | None = None,
    ) -> CSValidationResult:
        return validate_cs_dispensing(
            schedule,
            prescription_date,
            refill_number,
            is_partial_fill,
            prescriber_dea,
            now=self._clock(),
        )

    async def apply_compliance_override(
        self,
        prescription_id: str,
        issue_code: IssueCode | str,
        override_code: str,
        justification: str,
        actor: Actor,
    ) -> Prescription:
        """
        Clear an overridable compliance issue.

        Raises:
            PermissionDenied: Actor is not a pharmacist
            ValidationError: Issue not overridable, unknown override code or blank justification
        """
        _require_pharmacist(actor, WorkflowState.FILLING)
        justification = _require_text(justification, "justification")
        try:
            issue = IssueCode(issue_code)
        except ValueError:
            msg = f"Unknown compliance issue code: {issue_code!r}"
            raise ValidationError(msg, field="issue_code") from None

        allowed = COMPLIANCE_OVERRIDE_CODES.get(issue, ())
        if not allowed:
            msg = f"Compliance issue {issue.value} cannot be overridden"
            raise ValidationError(msg, field="issue_code")
        if override_code not in {o.code for o in allowed}:
            msg = f"Override code {override_code!r} is not accepted for {issue.value}"
            raise ValidationError(msg, field="override_code")

        def apply(rx: Prescription, now: datetime) -> Prescription:
            override = AppliedOverride(issue.value, override_code, justification, actor.id, now)
            return rx.evolve(compliance_overrides=(*rx.compliance_overrides, override), updated_at=now)

        rx = await self._update(
            prescription_id,
            actor,
            apply,
            AuditAction.OVERRIDE,
            {"issue_code": issue.value, "override_code": override_code, "justification": justification},
        )
        workflow_logger.override_applied(rx.id, issue.value, override_code, actor.id)
        return rx

    async def resolve_dur_alerts(
        self, prescription_id: str, actor: Actor, justification: str
    ) -> Prescription:
        """Pharmacist sign-off on every open DUR alert."""
        _require_pharmacist(actor, WorkflowState.DUR_REVIEW)
        justification = _require_text(justification, "justification")

        def apply(rx: Prescription, now: datetime) -> Prescription:
            if not rx.unresolved_dur_alerts:
                return rx
            override = AppliedOverride(
                IssueCode.UNRESOLVED_DUR.value, "RESOLVED", justification, actor.id, now
            )
            return rx.evolve(
                unresolved_dur_alerts=(),
                compliance_overrides=(*rx.compliance_overrides, override),
                updated_at=now,
            )

        return await self._update(
            prescription_id,
            actor,
            apply,
            AuditAction.OVERRIDE,
            {"issue_code": IssueCode.UNRESOLVED_DUR.value, "justification": justification},
        )

    async def record_ledger_transaction(
        self,
        pharmacy_id: str,
        ndc: str,
        schedule: DeaSchedule | str,
        transaction_type: CSTransactionType | str,
        quantity: float,
        actor: Actor,
        *,
        drug_name: str = "",
        current_balance: float | None = None,
        **references: Any,
    ) -> LedgerEntry:
        """
        Append one perpetual-inventory entry.

        The balance is read from storage under the ledger lock unless the
        caller supplies ``current_balance``; a supplied balance that no longer
        matches storage is rejected with ConcurrencyConflict.
        """
        schedule = DeaSchedule.parse(schedule)
        if not get_rules(schedule).perpetual_inventory:
            msg = f"{schedule.label} is not tracked in the perpetual inventory"
            raise ValidationError(msg, field="schedule")

        try:
            async with self.locks.hold(_ledger_key(pharmacy_id, ndc)):
                balance = current_balance
                if balance is None:
                    balance = await self.storage.get_balance(pharmacy_id, ndc)
                entry = record_cs_transaction(
                    pharmacy_id,
                    ndc,
                    schedule,
                    transaction_type,
                    quantity,
                    balance,
                    actor.id,
                    drug_name=drug_name,
                    actor_name=actor.display_name,
                    now=self._clock(),
                    **references,
                )
                await self.storage.append_ledger_entries([entry])
        except ConcurrencyConflict as e:
            self._record_conflict(e)
            raise

        self._record_ledger(entry)
        await self._audit_ledger(entry, actor)
        return entry

    async def report_theft_loss(
        self, report: TheftLossReport, actor: Actor
    ) -> tuple[Dea106Summary, list[LedgerEntry]]:
        """Record theft/loss entries for tracked items and summarise for DEA Form 106."""
        entries = []
        for item in report.items:
            if not get_rules(item.schedule).perpetual_inventory:
                continue
            entries.append(
                await self.record_ledger_transaction(
                    report.pharmacy_id,
                    item.ndc,
                    item.schedule,
                    CSTransactionType.THEFT_LOSS,
                    item.quantity_lost,
                    actor,
                    drug_name=item.drug_name,
                    lot_number=item.lot_number,
                    notes=f"{report.incident_type.value}: {report.description}".strip(),
                )
            )
        return generate_dea106_summary(report), entries

    async def get_ledger(self, pharmacy_id: str, ndc: str) -> list[LedgerEntry]:
        return await self.storage.get_ledger(pharmacy_id, ndc)

    async def get_balance(self, pharmacy_id: str, ndc: str) -> float:
        return await self.storage.get_balance(pharmacy_id, ndc)

    # ------------------------------------------------------------------
    # Will-call
    # ------------------------------------------------------------------

    async def place_in_will_call(
        self,
        prescription_id: str,
        bin_location: str,
        actor: Actor,
        *,
        is_refrigerated: bool = False,
    ) -> Prescription:
        """Put a verified prescription in a will-call bin."""

        def apply(rx: Prescription, now: datetime) -> Prescription:
            if rx.state is not WorkflowState.READY:
                msg = f"Only READY prescriptions go to will-call ({rx.id} is {rx.state.value})"
                raise ValidationError(msg, field="state")
            if rx.will_call is not None and rx.will_call.status.is_active:
                msg = f"Prescription {rx.id} is already in bin {rx.will_call.bin_location}"
                raise ValidationError(msg, field="bin_location")
            bin = create_bin(
                rx.id,
                rx.rx_number,
                rx.patient_id,
                bin_location,
                drug_name=rx.drug_name,
                quantity=rx.quantity,
                is_controlled=rx.is_controlled,
                is_refrigerated=is_refrigerated,
                now=now,
            )
            return rx.evolve(will_call=bin, updated_at=now)

        return await self._update(
            prescription_id, actor, apply, AuditAction.UPDATE, {"bin_location": bin_location}
        )

    async def notify_will_call(self, prescription_id: str, actor: Actor) -> Prescription:
        """Record a pickup reminder sent to the patient."""

        def apply(rx: Prescription, now: datetime) -> Prescription:
            return rx.evolve(will_call=mark_notified(self._bin(rx), now), updated_at=now)

        return await self._update(prescription_id, actor, apply, AuditAction.NOTIFICATION_SENT)

    async def extend_will_call_hold(
        self, prescription_id: str, actor: Actor, days: int = DEFAULT_HOLD_EXTENSION_DAYS
    ) -> Prescription:
        def apply(rx: Prescription, now: datetime) -> Prescription:
            return rx.evolve(will_call=extend_hold(self._bin(rx), days), updated_at=now)

        return await self._update(
            prescription_id, actor, apply, AuditAction.UPDATE, {"extension_days": days}
        )

    async def pick_up(
        self,
        prescription_id: str,
        actor: Actor,
        *,
        delivered: bool = False,
        id_verification: IdVerification | None = None,
    ) -> TransitionResult:
        """
        Hand the prescription to the patient (SOLD) or a courier (DELIVERED).

        Raises:
            ValidationError: Schedule II-V release without a passed ID check
        """
        target = WorkflowState.DELIVERED if delivered else WorkflowState.SOLD

        def apply(rx: Prescription, now: datetime) -> Prescription:
            check_pickup_id(rx.id, rx.schedule, id_verification)
            if rx.will_call is None:
                return rx
            return rx.evolve(will_call=mark_picked_up(rx.will_call, now, id_verification))

        return await self._transition(prescription_id, target, actor, mutate=apply)

    async def return_will_call_to_stock(
        self, prescription_id: str, actor: Actor, *, reason: str | None = None
    ) -> TransitionResult:
        """
        Close an unclaimed prescription and put controlled stock back on the ledger.

        A paid claim is replaced by a REVERSED outcome so the plan is not billed
        for a fill the patient never received.
        """

        def apply(rx: Prescription, now: datetime) -> Prescription:
            reverse = rx.claim is not None and rx.claim.status is ClaimStatus.PAID
            if reverse:
                rx = rx.evolve(claim=reversed_outcome(rx.claim, now))
            if rx.will_call is None:
                return rx
            return rx.evolve(
                will_call=return_to_stock(rx.will_call, now, insurance_reversed=reverse)
            )

        return await self._transition(
            prescription_id,
            WorkflowState.RETURNED_TO_STOCK,
            actor,
            reason=reason or "Not picked up",
            mutate=apply,
        )

    async def scan_will_call(self, pharmacy_id: str | None = None) -> WillCallScan:
        """
        Age every active bin and persist bins that became due for return.

        Returns the reminders to send, the expiring bins and the bins to return.
        """
        now = self._clock()
        ready = await self.storage.list_prescriptions(pharmacy_id, [WorkflowState.READY])
        bins = [rx.will_call for rx in ready if rx.will_call is not None]
        scan = scan_bins(
            bins,
            now,
            return_days=self.config.return_to_stock_days,
            expiring_days=self.config.expiring_soon_days,
        )

        previous = {bin.prescription_id: bin.status for bin in bins}
        for bin in scan.to_return:
            if previous.get(bin.prescription_id) is not bin.status:
                await self._persist_bin_aging(bin.prescription_id)

        logger.info(
            f"Will-call scan: {scan.evaluated} bins, {len(scan.to_notify)} to notify, "
            f"{len(scan.expiring)} expiring, {len(scan.to_return)} to return"
        )
        return scan

    async def _persist_bin_aging(self, prescription_id: str) -> None:
        # re-evaluate under the lock; the bin may have moved since the scan read it
        async with self.locks.hold(_rx_key(prescription_id)):
            rx = await self._load(prescription_id)
            if rx.will_call is None:
                return
            result = evaluate_bin(
                rx.will_call,
                self._clock(),
                return_days=self.config.return_to_stock_days,
                expiring_days=self.config.expiring_soon_days,
            )
            if result.bin.status is not rx.will_call.status:
                await self._commit(rx.evolve(will_call=result.bin), rx.version)

    @staticmethod
    def _bin(rx: Prescription) -> WillCallBin:
        if rx.will_call is None:
            msg = f"Prescription {rx.id} is not in will-call"
            raise ValidationError(msg, field="will_call")
        return rx.will_call

    # ------------------------------------------------------------------
    # Queue, holds and assignment
    # ------------------------------------------------------------------

    async def place_on_hold(self, prescription_id: str, actor: Actor, reason: str) -> Prescription:
        reason = _require_text(reason, "reason")

        def apply(rx: Prescription, now: datetime) -> Prescription:
            if rx.is_terminal:
                msg = f"Prescription {rx.id} is {rx.state.value} and cannot be held"
                raise ValidationError(msg, field="state")
            return rx.evolve(on_hold=True, hold_reason=reason, updated_at=now)

        return await self._update(
            prescription_id, actor, apply, AuditAction.UPDATE, {"on_hold": True, "reason": reason}
        )

    async def release_hold(self, prescription_id: str, actor: Actor) -> Prescription:
        def apply(rx: Prescription, now: datetime) -> Prescription:
            return rx.evolve(on_hold=False, hold_reason=None, updated_at=now)

        return await self._update(
            prescription_id, actor, apply, AuditAction.UPDATE, {"on_hold": False}
        )

    async def assign(self, prescription_id: str, user_id: str | None, actor: Actor) -> Prescription:
        def apply(rx: Prescription, now: datetime) -> Prescription:
            return rx.evolve(assigned_to=user_id, updated_at=now)

        return await self._update(
            prescription_id, actor, apply, AuditAction.UPDATE, {"assigned_to": user_id}
        )

    async def get_queue(
        self,
        pharmacy_id: str | None = None,
        *,
        states: Iterable[WorkflowState] | None = None,
        assignee: str | None = None,
    ) -> list[Prescription]:
        """Active prescriptions in work order (priority, promise time, age)."""
        if states is None:
            states = [s for s in WorkflowState if s not in TERMINAL_STATES]
        items = await self.storage.list_prescriptions(pharmacy_id, states)
        if assignee is not None:
            items = filter_by_assignee(items, assignee)
        return sort_workflow_items(items)

    async def queue_summary(self, pharmacy_id: str | None = None) -> QueueSummary:
        items = await self.storage.list_prescriptions(pharmacy_id)
        return calculate_queue_summary(items, self._clock())

    async def get_prescription(self, prescription_id: str) -> Prescription:
        """
        Raises:
            NotFoundError: Unknown prescription
        """
        return await self._load(prescription_id)

    async def get_history(self, prescription_id: str) -> list[StateChange]:
        return await self.storage.get_history(prescription_id)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def archive_terminal(self, prescription_id: str, actor: Actor) -> bool:
        """
        Archive a terminal prescription unless retention policy forbids it.

        Returns:
            True if the prescription is archived, False if a legal hold or
            the retention policy kept it active

        Raises:
            ValidationError: The prescription is not in a terminal state
        """
        rx = await self._load(prescription_id)
        if not rx.is_terminal:
            msg = f"Prescription {rx.id} is {rx.state.value}; only terminal prescriptions are archived"
            raise ValidationError(msg, field="state")
        if rx.archived:
            return True

        if await self.retention.is_on_legal_hold(RESOURCE_TYPE, rx.id):
            logger.info(f"Prescription {rx.id} is on legal hold; not archived")
            return False
        terminal_at = rx.state_timestamps.get(rx.state)
        if not await self.retention.can_archive(
            RESOURCE_TYPE, rx.id, terminal_at=terminal_at, now=self._clock()
        ):
            logger.info(f"Retention policy keeps prescription {rx.id} active")
            return False

        def apply(current: Prescription, now: datetime) -> Prescription:
            return current.evolve(archived=True, updated_at=now)

        await self._update(prescription_id, actor, apply, AuditAction.ARCHIVE)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_state(value: WorkflowState | str) -> WorkflowState:
        if isinstance(value, WorkflowState):
            return value
        try:
            return WorkflowState(str(value).strip().upper())
        except ValueError:
            msg = f"Unknown workflow state: {value!r}"
            raise ValidationError(msg, field="target_state") from None

    async def _load(self, prescription_id: str) -> Prescription:
        rx = await self.storage.get_prescription(prescription_id)
        if rx is None:
            msg = f"Prescription {prescription_id} not found"
            raise NotFoundError(msg, item_type=RESOURCE_TYPE, item_id=prescription_id)
        return rx

    async def _update(
        self,
        prescription_id: str,
        actor: Actor,
        mutate: Mutation,
        action: AuditAction,
        details: dict[str, Any] | None = None,
    ) -> Prescription:
        """Read-modify-commit without a state change."""
        try:
            async with self.locks.hold(_rx_key(prescription_id)):
                rx = await self._load(prescription_id)
                self._set_log_context(rx, actor)
                updated = mutate(rx, self._clock())
                if updated is rx:
                    return rx
                stored = await self._commit(updated, rx.version)
        except ConcurrencyConflict as e:
            self._record_conflict(e)
            raise
        finally:
            workflow_logger.clear_context()

        await self._audit(action, stored.id, actor, details)
        return stored

    async def _commit(
        self,
        rx: Prescription,
        expected_version: int,
        *,
        state_change: StateChange | None = None,
        ledger_entries: tuple[LedgerEntry, ...] = (),
    ) -> Prescription:
        return await self.storage.commit_transition(
            rx,
            expected_version=expected_version,
            state_change=state_change,
            ledger_entries=ledger_entries,
        )

    async def _audit(
        self,
        action: AuditAction,
        resource_id: str,
        actor: Actor,
        details: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self.audit_logger.log(action, RESOURCE_TYPE, resource_id, actor, details)
        except Exception as e:
            workflow_logger.audit_failed(action.value, resource_id, e)
            if self.metrics is not None:
                self.metrics.record_audit_failure(action.value)

    async def _audit_ledger(self, entry: LedgerEntry, actor: Actor) -> None:
        try:
            await self.audit_logger.log(
                AuditAction.CS_TRANSACTION, "cs_ledger", entry.id, actor, entry.to_dict()
            )
        except Exception as e:
            workflow_logger.audit_failed(AuditAction.CS_TRANSACTION.value, entry.id, e)
            if self.metrics is not None:
                self.metrics.record_audit_failure(AuditAction.CS_TRANSACTION.value)

    def _set_log_context(self, rx: Prescription, actor: Actor) -> None:
        if self.config.logging:
            workflow_logger.set_context(rx.id, rx.rx_number, actor.id)

    def _record_transition(
        self, rx: Prescription, change: StateChange, actor: Actor, duration: float
    ) -> None:
        from_state = change.from_state.value if change.from_state else ""
        if self.config.logging:
            workflow_logger.transition_committed(
                rx.id, from_state, change.to_state.value, actor.id, duration * 1000
            )
        if self.metrics is not None:
            self.metrics.record_transition(from_state, change.to_state.value, duration)

    def _record_ledger(self, entry: LedgerEntry) -> None:
        if self.config.logging:
            workflow_logger.ledger_recorded(
                entry.pharmacy_id,
                entry.ndc,
                entry.transaction_type.value,
                entry.quantity,
                entry.running_balance,
            )
        if self.metrics is not None:
            self.metrics.record_ledger_entry(entry.transaction_type.value)

    def _record_blocked(self, rx: Prescription, target: WorkflowState, error: Exception) -> None:
        reason = _BLOCK_REASONS.get(type(error), type(error).__name__)
        errors = getattr(error, "errors", None) or [str(error)]
        if self.config.logging:
            workflow_logger.transition_blocked(rx.id, target.value, reason, list(errors))
        if self.metrics is not None:
            self.metrics.record_blocked(reason, target.value)

    def _record_conflict(self, error: ConcurrencyConflict) -> None:
        logger.warning(f"Concurrency conflict on {error.key}: {error}")
        if self.metrics is not None:
            self.metrics.record_conflict(error.key)
