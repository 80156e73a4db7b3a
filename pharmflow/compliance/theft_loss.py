"""
Theft and significant-loss reporting (DEA Form 106).

Any loss of Schedule II–V stock must be reported to the DEA within one
business day of discovery.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from pharmflow.core.clock import resolve_now
from pharmflow.types import REPORTABLE_SCHEDULES, DeaSchedule

DEA_106_DEADLINE = "1 business day of discovery"
DEA_106_SUBMISSION = "Online via DEA Diversion Control Division website"


class IncidentType(Enum):
    THEFT = "theft"
    LOSS = "loss"
    ROBBERY = "robbery"
    BREAKIN = "breakin"
    EMPLOYEE_THEFT = "employee_theft"
    UNKNOWN = "unknown"


class ReportStatus(Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_INVESTIGATION = "under_investigation"
    CLOSED = "closed"


@dataclass(frozen=True)
class TheftLossItem:
    ndc: str
    schedule: DeaSchedule
    quantity_lost: float
    drug_name: str = ""
    unit: str = "EA"
    strength: str = ""
    dosage_form: str = ""
    lot_number: str | None = None
    estimated_value: float | None = None


@dataclass
class TheftLossReport:
    pharmacy_id: str
    pharmacy_dea_number: str
    discovery_date: datetime
    incident_type: IncidentType
    items: list[TheftLossItem]
    description: str = ""
    circumstances: str = ""
    security_measures: str = ""
    reported_by: str = ""
    police_report_number: str | None = None
    report_date: datetime = field(default_factory=lambda: resolve_now(None))
    status: ReportStatus = ReportStatus.DRAFT

    @property
    def total_quantity_lost(self) -> float:
        return sum(item.quantity_lost for item in self.items)


@dataclass(frozen=True)
class Dea106Summary:
    pharmacy_dea_number: str
    incident_date: datetime
    report_date: datetime
    incident_type: str
    total_items_affected: int
    total_quantity_lost: float
    schedule_breakdown: dict[str, float]
    must_report_within: str = DEA_106_DEADLINE
    submission_method: str = DEA_106_SUBMISSION


def requires_dea_report(items: Iterable[TheftLossItem]) -> bool:
    """True if any lost item is Schedule II through V."""
    return any(item.schedule in REPORTABLE_SCHEDULES for item in items)


def generate_dea106_summary(report: TheftLossReport) -> Dea106Summary:
    """Aggregate a theft/loss report into the data needed for DEA Form 106."""
    breakdown: dict[str, float] = {}
    for item in report.items:
        key = item.schedule.label
        breakdown[key] = breakdown.get(key, 0) + item.quantity_lost

    return Dea106Summary(
        pharmacy_dea_number=report.pharmacy_dea_number,
        incident_date=report.discovery_date,
        report_date=report.report_date,
        incident_type=report.incident_type.value,
        total_items_affected=len(report.items),
        total_quantity_lost=report.total_quantity_lost,
        schedule_breakdown=breakdown,
    )


# ============================================
# INPUT SCHEMAS
# ============================================


class TheftLossItemInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    ndc: str
    drug_name: str
    schedule: DeaSchedule
    quantity_lost: float = Field(gt=0)
    unit: str
    strength: str
    dosage_form: str

    def to_item(self) -> TheftLossItem:
        return TheftLossItem(**self.model_dump())


class TheftLossReportInput(BaseModel):
    pharmacy_id: str
    pharmacy_dea_number: str
    discovery_date: datetime
    incident_type: IncidentType
    items: list[TheftLossItemInput] = Field(min_length=1)
    description: str = Field(min_length=10)
    circumstances: str = Field(min_length=10)
    security_measures: str
    reported_by: str

    def to_report(self) -> TheftLossReport:
        return TheftLossReport(
            pharmacy_id=self.pharmacy_id,
            pharmacy_dea_number=self.pharmacy_dea_number,
            discovery_date=self.discovery_date,
            incident_type=self.incident_type,
            items=[item.to_item() for item in self.items],
            description=self.description,
            circumstances=self.circumstances,
            security_measures=self.security_measures,
            reported_by=self.reported_by,
        )
