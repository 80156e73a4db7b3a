"""
Intake validation, queue management, retention and degraded audit handling.
"""

from datetime import timedelta

import pytest
from conftest import FIXED_NOW, advance_through, make_intake, make_legend_intake

from pharmflow.audit import AuditLogger, InMemoryRetentionService
from pharmflow.core.config import WorkflowConfig
from pharmflow.core.exceptions import ValidationError
from pharmflow.service import WorkflowService
from pharmflow.workflow.states import WorkflowPriority, WorkflowState


class FailingAuditLogger(AuditLogger):
    """Audit sink that is always down."""

    def __init__(self):
        self.attempts = 0

    async def log(self, action, resource_type, resource_id, actor, details=None):
        self.attempts += 1
        raise ConnectionError("audit store unreachable")


@pytest.mark.asyncio
class TestIntake:
    async def test_intake_from_dict(self, service, tech, clock):
        rx = await service.intake(make_intake(priority="STAT"), tech)

        assert rx.id.startswith("RX-")
        assert rx.priority is WorkflowPriority.STAT
        assert rx.state_timestamps == {WorkflowState.INTAKE: clock.now}
        assert rx.promise_time > clock.now

    async def test_written_at_defaults_to_now(self, service, tech, clock):
        data = make_legend_intake()
        del data["written_at"]

        rx = await service.intake(data, tech)

        assert rx.written_at == clock.now

    @pytest.mark.parametrize(
        "overrides",
        [
            {"schedule": "VII"},
            {"quantity": -1},
            {"patient_id": ""},
            {"refills_allowed": 1},
        ],
    )
    async def test_invalid_intake(self, service, tech, overrides):
        with pytest.raises(ValidationError):
            await service.intake(make_intake(**overrides), tech)

        assert await service.get_queue() == []


@pytest.mark.asyncio
class TestQueue:
    """Holds, assignment and work ordering."""

    async def test_queue_order(self, service, tech):
        normal = await service.intake(make_legend_intake(rx_number="1"), tech)
        stat = await service.intake(make_legend_intake(rx_number="2", priority="STAT"), tech)
        low = await service.intake(make_legend_intake(rx_number="3", priority="LOW"), tech)

        queue = await service.get_queue()

        assert [rx.id for rx in queue] == [stat.id, normal.id, low.id]

    async def test_queue_excludes_terminal(self, service, tech):
        keep = await service.intake(make_legend_intake(), tech)
        gone = await service.intake(make_legend_intake(), tech)
        await service.advance_workflow(gone.id, "CANCELLED", tech)

        assert [rx.id for rx in await service.get_queue()] == [keep.id]
        cancelled = await service.get_queue(states=[WorkflowState.CANCELLED])
        assert [rx.id for rx in cancelled] == [gone.id]

    async def test_assign(self, service, tech):
        rx = await service.intake(make_legend_intake(), tech)
        await service.intake(make_legend_intake(), tech)

        await service.assign(rx.id, "tech-2", tech)

        assert [r.id for r in await service.get_queue(assignee="tech-2")] == [rx.id]
        unassigned = await service.assign(rx.id, None, tech)
        assert unassigned.assigned_to is None

    async def test_hold_and_release(self, service, tech):
        rx = await service.intake(make_legend_intake(), tech)

        held = await service.place_on_hold(rx.id, tech, "Waiting on prescriber callback")
        assert held.on_hold is True
        assert held.hold_reason == "Waiting on prescriber callback"
        assert (await service.queue_summary()).on_hold_count == 1

        # holds flag the queue item; they do not stop the workflow
        result = await service.advance_workflow(rx.id, "DATA_ENTRY", tech)
        assert result.prescription.on_hold is True

        released = await service.release_hold(rx.id, tech)
        assert released.on_hold is False
        assert released.hold_reason is None

    async def test_hold_requires_reason(self, service, tech):
        rx = await service.intake(make_legend_intake(), tech)

        with pytest.raises(ValidationError) as exc:
            await service.place_on_hold(rx.id, tech, " ")
        assert exc.value.field == "reason"

    async def test_terminal_cannot_be_held(self, service, tech):
        rx = await service.intake(make_legend_intake(), tech)
        await service.advance_workflow(rx.id, "CANCELLED", tech)

        with pytest.raises(ValidationError):
            await service.place_on_hold(rx.id, tech, "Too late")

    async def test_queue_summary(self, service, tech, clock):
        first = await service.intake(make_legend_intake(), tech)
        await service.intake(make_legend_intake(priority="STAT"), tech)
        await advance_through(service, first.id, tech, "DATA_ENTRY")
        clock.advance(hours=3)

        summary = await service.queue_summary()

        assert summary.count(WorkflowState.INTAKE) == 1
        assert summary.count(WorkflowState.DATA_ENTRY) == 1
        assert summary.stat_count == 1
        assert summary.overdue_count == 2


@pytest.mark.asyncio
class TestRetention:
    """Archiving terminal prescriptions."""

    async def test_archive_terminal(self, service, tech):
        rx = await service.intake(make_legend_intake(), tech)
        await service.advance_workflow(rx.id, "CANCELLED", tech)

        assert await service.archive_terminal(rx.id, tech) is True

        stored = await service.get_prescription(rx.id)
        assert stored.archived is True
        assert await service.get_queue(states=[WorkflowState.CANCELLED]) == []
        assert await service.archive_terminal(rx.id, tech) is True

    async def test_legal_hold_blocks_archive(self, service, tech):
        rx = await service.intake(make_legend_intake(), tech)
        await service.advance_workflow(rx.id, "CANCELLED", tech)
        service.retention.place_hold("prescription", rx.id)

        assert await service.archive_terminal(rx.id, tech) is False
        assert (await service.get_prescription(rx.id)).archived is False

    async def test_active_prescription_not_archived(self, service, tech):
        rx = await service.intake(make_legend_intake(), tech)

        with pytest.raises(ValidationError) as exc:
            await service.archive_terminal(rx.id, tech)
        assert exc.value.field == "state"

    async def test_minimum_terminal_days(self, tech, clock):
        service = WorkflowService(
            WorkflowConfig(lock_timeout=1.0),
            retention=InMemoryRetentionService(min_terminal_days=30),
            clock=clock,
        )
        rx = await service.intake(make_legend_intake(), tech)
        await service.advance_workflow(rx.id, "CANCELLED", tech)

        clock.advance(days=29)
        assert await service.archive_terminal(rx.id, tech) is False
        clock.advance(days=1)
        assert await service.archive_terminal(rx.id, tech) is True


@pytest.mark.asyncio
class TestDegradedAudit:
    """A failing audit sink never undoes committed work."""

    async def test_transition_commits_despite_audit_failure(self, tech, clock, caplog):
        audit = FailingAuditLogger()
        service = WorkflowService(WorkflowConfig(lock_timeout=1.0), audit_logger=audit, clock=clock)

        rx = await service.intake(make_legend_intake(), tech)
        result = await service.advance_workflow(rx.id, "DATA_ENTRY", tech)

        assert result.new_state is WorkflowState.DATA_ENTRY
        assert (await service.get_prescription(rx.id)).version == 2
        assert audit.attempts == 2
        assert service.metrics.get_metrics()["total_audit_failures"] == 2
        assert any("Audit write FAILED" in r.getMessage() for r in caplog.records)

    async def test_metrics_can_be_disabled(self, tech, clock):
        service = WorkflowService(WorkflowConfig(metrics=False), clock=clock)

        rx = await service.intake(make_legend_intake(), tech)
        await service.advance_workflow(rx.id, "DATA_ENTRY", tech)

        assert service.metrics is None


@pytest.mark.asyncio
async def test_promise_time_tracks_intake_clock(service, tech, clock):
    clock.now = FIXED_NOW + timedelta(days=1)

    rx = await service.intake(make_legend_intake(), tech)

    assert rx.created_at == FIXED_NOW + timedelta(days=1)
    assert rx.promise_time == FIXED_NOW + timedelta(days=1, minutes=90)
