"""
Controlled-substance compliance through WorkflowService.
"""

from datetime import timedelta

import pytest
from conftest import (
    FIXED_NOW,
    OXYCODONE_NDC,
    PHARMACY_ID,
    VALID_DEA,
    advance_through,
    make_intake,
    make_legend_intake,
    stock_shelf,
)

from pharmflow.compliance.dispensing import IssueCode
from pharmflow.compliance.theft_loss import IncidentType, TheftLossItem, TheftLossReport
from pharmflow.core.exceptions import (
    ComplianceBlocked,
    ConcurrencyConflict,
    PermissionDenied,
    ValidationError,
)
from pharmflow.types import CSTransactionType, DeaSchedule
from pharmflow.workflow.states import WorkflowState


async def ready_to_fill(service, tech, intake):
    rx = await service.intake(intake, tech)
    await advance_through(service, rx.id, tech, "DATA_ENTRY", "DATA_ENTRY_COMPLETE")
    return rx.id


@pytest.mark.asyncio
class TestComplianceGate:
    """DEA rules checked on entry to FILLING."""

    async def test_missing_dea_blocks(self, service, tech):
        rx_id = await ready_to_fill(service, tech, make_intake(prescriber_dea=None))

        with pytest.raises(ComplianceBlocked) as exc:
            await service.advance_workflow(rx_id, "FILLING", tech)

        assert [i.code for i in exc.value.issues] == [IssueCode.PRESCRIBER_DEA_MISSING]
        assert exc.value.overridable
        assert (await service.get_prescription(rx_id)).state is WorkflowState.DATA_ENTRY_COMPLETE
        assert service.metrics.get_metrics()["blocked_by_reason"]["compliance"]["count"] == 1

    async def test_dv_override_by_pharmacist(self, service, tech, pharmacist):
        rx_id = await ready_to_fill(service, tech, make_intake(prescriber_dea=None))

        with pytest.raises(PermissionDenied):
            await service.apply_compliance_override(
                rx_id, IssueCode.PRESCRIBER_DEA_MISSING, "DV", "Called office", tech
            )

        rx = await service.apply_compliance_override(
            rx_id, "prescriber_dea_missing", "DV", "Called prescriber office, DEA confirmed", pharmacist
        )
        assert rx.has_override(IssueCode.PRESCRIBER_DEA_MISSING.value)

        result = await service.advance_workflow(rx_id, "FILLING", tech)
        assert result.new_state is WorkflowState.FILLING

    async def test_override_validation(self, service, tech, pharmacist):
        rx_id = await ready_to_fill(service, tech, make_intake(prescriber_dea=None))

        with pytest.raises(ValidationError) as wrong_code:
            await service.apply_compliance_override(
                rx_id, IssueCode.PRESCRIBER_DEA_MISSING, "VS", "Nope", pharmacist
            )
        with pytest.raises(ValidationError) as not_overridable:
            await service.apply_compliance_override(
                rx_id, IssueCode.PRESCRIPTION_EXPIRED, "DV", "Nope", pharmacist
            )
        with pytest.raises(ValidationError) as unknown:
            await service.apply_compliance_override(rx_id, "made_up", "DV", "Nope", pharmacist)

        assert wrong_code.value.field == "override_code"
        assert not_overridable.value.field == "issue_code"
        assert unknown.value.field == "issue_code"

    async def test_expired_prescription(self, service, tech):
        rx_id = await ready_to_fill(
            service, tech, make_intake(written_at=FIXED_NOW - timedelta(days=91))
        )

        with pytest.raises(ComplianceBlocked) as exc:
            await service.advance_workflow(rx_id, "FILLING", tech)

        assert [i.code for i in exc.value.issues] == [IssueCode.PRESCRIPTION_EXPIRED]
        assert not exc.value.overridable

    async def test_expires_while_waiting(self, service, tech, clock):
        """Expiry is judged when filling, not at intake."""
        rx_id = await ready_to_fill(
            service, tech, make_intake(written_at=FIXED_NOW - timedelta(days=85))
        )
        clock.advance(days=10)

        with pytest.raises(ComplianceBlocked):
            await service.advance_workflow(rx_id, "FILLING", tech)

    async def test_malformed_dea_only_warns(self, service, tech, pharmacist):
        await stock_shelf(service, pharmacist, 100)
        rx_id = await ready_to_fill(service, tech, make_intake(prescriber_dea="AB1234564"))

        result = await service.advance_workflow(rx_id, "FILLING", tech)

        assert any("format may be invalid" in w for w in result.warnings)

    async def test_validate_stored_prescription(self, service, tech):
        rx_id = await ready_to_fill(service, tech, make_intake(prescriber_dea=None))

        result = await service.validate_dispensing(rx_id)

        assert result.valid is False
        assert result.days_since_written == 5

    async def test_validate_ad_hoc(self, service):
        result = service.validate_cs_dispensing("II", FIXED_NOW - timedelta(days=100), 0, False, VALID_DEA)

        assert result.valid is False
        assert result.rules.schedule is DeaSchedule.II


@pytest.mark.asyncio
class TestDurAlerts:
    """Clinical alerts must be resolved by a pharmacist before filling."""

    async def test_alerts_block_filling(self, service, tech):
        rx_id = await ready_to_fill(
            service, tech, make_legend_intake(dur_alerts=["Interaction with warfarin"])
        )

        with pytest.raises(ComplianceBlocked) as exc:
            await service.advance_workflow(rx_id, "FILLING", tech)

        assert [i.code for i in exc.value.issues] == [IssueCode.UNRESOLVED_DUR]

    async def test_dur_review_path(self, service, tech, pharmacist):
        rx_id = await ready_to_fill(
            service, tech, make_legend_intake(dur_alerts=["Interaction with warfarin"])
        )

        with pytest.raises(PermissionDenied):
            await service.advance_workflow(rx_id, "DUR_REVIEW", tech)
        await service.advance_workflow(rx_id, "DUR_REVIEW", pharmacist)

        with pytest.raises(PermissionDenied):
            await service.resolve_dur_alerts(rx_id, tech, "Reviewed")
        rx = await service.resolve_dur_alerts(rx_id, pharmacist, "INR stable, prescriber aware")

        assert rx.unresolved_dur_alerts == ()
        assert rx.compliance_overrides[-1].override_code == "RESOLVED"
        result = await service.advance_workflow(rx_id, "FILLING", pharmacist)
        assert result.new_state is WorkflowState.FILLING

    async def test_resolve_without_alerts_is_noop(self, service, tech, pharmacist):
        rx_id = await ready_to_fill(service, tech, make_legend_intake())
        before = await service.get_prescription(rx_id)

        after = await service.resolve_dur_alerts(rx_id, pharmacist, "Nothing to review")

        assert after.version == before.version


@pytest.mark.asyncio
class TestLedgerOperations:
    """Direct perpetual-inventory entries."""

    async def test_destruction_with_witness(self, service, pharmacist):
        await stock_shelf(service, pharmacist, 100)

        entry = await service.record_ledger_transaction(
            PHARMACY_ID, OXYCODONE_NDC, "II", "destruction", 5, pharmacist, witness_id="rph-2"
        )

        assert entry.transaction_type is CSTransactionType.DESTRUCTION
        assert entry.balance_before == 100
        assert entry.running_balance == 95
        assert entry.witness_id == "rph-2"

    async def test_legend_not_tracked(self, service, pharmacist):
        with pytest.raises(ValidationError) as exc:
            await service.record_ledger_transaction(
                PHARMACY_ID, "68180-0513-01", "LEGEND", CSTransactionType.RECEIVE, 10, pharmacist
            )
        assert exc.value.field == "schedule"

    async def test_stale_balance_conflicts(self, service, pharmacist):
        await stock_shelf(service, pharmacist, 100)

        with pytest.raises(ConcurrencyConflict):
            await service.record_ledger_transaction(
                PHARMACY_ID,
                OXYCODONE_NDC,
                "II",
                CSTransactionType.RECEIVE,
                10,
                pharmacist,
                current_balance=0,
            )

        assert await service.get_balance(PHARMACY_ID, OXYCODONE_NDC) == 100
        assert service.metrics.get_metrics()["total_conflicts"] == 1

    async def test_matching_balance_accepted(self, service, pharmacist):
        await stock_shelf(service, pharmacist, 100)

        entry = await service.record_ledger_transaction(
            PHARMACY_ID,
            OXYCODONE_NDC,
            "II",
            CSTransactionType.RECEIVE,
            10,
            pharmacist,
            current_balance=100,
        )

        assert entry.running_balance == 110

    async def test_theft_loss_report(self, service, pharmacist):
        await stock_shelf(service, pharmacist, 100)
        report = TheftLossReport(
            pharmacy_id=PHARMACY_ID,
            pharmacy_dea_number="BP1234563",
            discovery_date=FIXED_NOW,
            incident_type=IncidentType.BREAKIN,
            items=[
                TheftLossItem(OXYCODONE_NDC, DeaSchedule.II, 20, drug_name="Oxycodone 5mg"),
                TheftLossItem("68180-0513-01", DeaSchedule.LEGEND, 5),
            ],
            description="Rear door forced overnight",
        )

        summary, entries = await service.report_theft_loss(report, pharmacist)

        assert len(entries) == 1
        assert entries[0].transaction_type is CSTransactionType.THEFT_LOSS
        assert entries[0].notes.startswith("breakin:")
        assert await service.get_balance(PHARMACY_ID, OXYCODONE_NDC) == 80
        assert summary.total_items_affected == 2
        assert summary.schedule_breakdown == {"Schedule II": 20, "LEGEND": 5}
