"""
Tests for theft/loss reporting (DEA Form 106).
"""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from pharmflow.compliance.theft_loss import (
    IncidentType,
    ReportStatus,
    TheftLossItem,
    TheftLossReport,
    TheftLossReportInput,
    generate_dea106_summary,
    requires_dea_report,
)
from pharmflow.types import DeaSchedule

DISCOVERED = datetime(2026, 3, 1, 9, 30, tzinfo=UTC)


def create_test_report(*items: TheftLossItem) -> TheftLossReport:
    return TheftLossReport(
        pharmacy_id="PH-001",
        pharmacy_dea_number="FP1234563",
        discovery_date=DISCOVERED,
        incident_type=IncidentType.BREAKIN,
        items=list(items),
        description="Rear door forced overnight",
    )


class TestRequiresDeaReport:
    """Only Schedule II-V losses are reportable."""

    def test_schedule_ii_reportable(self):
        assert requires_dea_report([TheftLossItem("A", DeaSchedule.II, 10)]) is True

    def test_schedule_v_reportable(self):
        assert requires_dea_report([TheftLossItem("A", DeaSchedule.V, 1)]) is True

    def test_non_controlled_not_reportable(self):
        items = [TheftLossItem("A", DeaSchedule.LEGEND, 10), TheftLossItem("B", DeaSchedule.OTC, 3)]

        assert requires_dea_report(items) is False

    def test_empty(self):
        assert requires_dea_report([]) is False


class TestGenerateDea106Summary:
    """Tests for generate_dea106_summary."""

    def test_schedule_breakdown(self):
        report = create_test_report(
            TheftLossItem("A", DeaSchedule.II, 10),
            TheftLossItem("B", DeaSchedule.II, 5),
            TheftLossItem("C", DeaSchedule.IV, 20),
        )

        summary = generate_dea106_summary(report)

        assert summary.pharmacy_dea_number == "FP1234563"
        assert summary.incident_date == DISCOVERED
        assert summary.incident_type == "breakin"
        assert summary.total_items_affected == 3
        assert summary.total_quantity_lost == 35
        assert summary.schedule_breakdown == {"Schedule II": 15, "Schedule IV": 20}
        assert summary.must_report_within == "1 business day of discovery"

    def test_new_report_is_draft(self):
        assert create_test_report().status is ReportStatus.DRAFT


class TestReportInput:
    """Tests for the pydantic input schema."""

    def payload(self, **overrides):
        data = {
            "pharmacy_id": "PH-001",
            "pharmacy_dea_number": "FP1234563",
            "discovery_date": "2026-03-01T09:30:00Z",
            "incident_type": "theft",
            "items": [
                {
                    "ndc": "00406-0512-01",
                    "drug_name": "Oxycodone 5mg",
                    "schedule": "II",
                    "quantity_lost": 12,
                    "unit": "EA",
                    "strength": "5mg",
                    "dosage_form": "tablet",
                }
            ],
            "description": "Count short after shift change",
            "circumstances": "Discovered during the evening count",
            "security_measures": "Cameras reviewed",
            "reported_by": "rph-1",
        }
        data.update(overrides)
        return data

    def test_to_report(self):
        report = TheftLossReportInput.model_validate(self.payload()).to_report()

        assert report.incident_type is IncidentType.THEFT
        assert report.items[0].schedule is DeaSchedule.II
        assert report.total_quantity_lost == 12

    def test_requires_an_item(self):
        with pytest.raises(PydanticValidationError):
            TheftLossReportInput.model_validate(self.payload(items=[]))

    def test_description_too_short(self):
        with pytest.raises(PydanticValidationError):
            TheftLossReportInput.model_validate(self.payload(description="short"))
