"""
Physical inventory checks for controlled substances.

Covers count-vs-ledger variance analysis and the DEA biennial inventory
cycle (a full count at least every two years).
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum

from pharmflow.core.clock import DAY, as_utc, resolve_now
from pharmflow.core.exceptions import ValidationError
from pharmflow.types import DeaSchedule

BIENNIAL_INTERVAL_DAYS = 730
BIENNIAL_DUE_SOON_DAYS = 30

MINOR_VARIANCE_PERCENT = 1.0
SIGNIFICANT_VARIANCE_PERCENT = 5.0


class VarianceSeverity(Enum):
    NONE = "none"
    MINOR = "minor"
    SIGNIFICANT = "significant"
    """Mandatory investigation"""

    CRITICAL = "critical"
    """Investigation; DEA-reportable when stock is missing"""


class BiennialStatus(Enum):
    CURRENT = "current"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class VarianceResult:
    physical_count: float
    system_count: float
    variance: float
    variance_percent: float
    severity: VarianceSeverity
    requires_investigation: bool
    requires_dea_report: bool


@dataclass(frozen=True)
class BiennialTimingResult:
    last_inventory_date: datetime
    days_since_last_inventory: int
    days_until_due: int
    due_date: datetime
    status: BiennialStatus

    @property
    def is_overdue(self) -> bool:
        return self.status is BiennialStatus.OVERDUE

    @property
    def is_due_soon(self) -> bool:
        return self.status is BiennialStatus.DUE_SOON


@dataclass
class BiennialInventorySnapshot:
    """Point-in-time physical count of one NDC compared to the perpetual ledger."""

    ndc: str
    schedule: DeaSchedule
    physical_count: float
    system_count: float
    drug_name: str = ""
    count_method: str = "exact"
    counted_at: datetime = field(default_factory=lambda: resolve_now(None))
    lot_number: str | None = None

    @property
    def variance(self) -> VarianceResult:
        return calculate_variance(self.physical_count, self.system_count)


def _round_half_up(value: float, places: int = 2) -> float:
    factor = 10**places
    return math.floor(value * factor + 0.5) / factor


def calculate_variance(physical_count: float, system_count: float) -> VarianceResult:
    """
    Compare a physical count to the ledger balance.

    Severity bands on |variance percent|: 0 → none, ≤1% → minor,
    ≤5% → significant, otherwise critical. Overages are never DEA-reportable.

    Raises:
        ValidationError: On negative counts
    """
    if physical_count < 0 or system_count < 0:
        msg = "Inventory counts must not be negative"
        raise ValidationError(msg, field="physical_count" if physical_count < 0 else "system_count")

    variance = physical_count - system_count
    variance_percent = (variance / system_count) * 100 if system_count > 0 else 0.0

    if variance == 0:
        severity = VarianceSeverity.NONE
    elif abs(variance_percent) <= MINOR_VARIANCE_PERCENT:
        severity = VarianceSeverity.MINOR
    elif abs(variance_percent) <= SIGNIFICANT_VARIANCE_PERCENT:
        severity = VarianceSeverity.SIGNIFICANT
    else:
        severity = VarianceSeverity.CRITICAL

    return VarianceResult(
        physical_count=physical_count,
        system_count=system_count,
        variance=variance,
        variance_percent=_round_half_up(variance_percent),
        severity=severity,
        requires_investigation=severity in (VarianceSeverity.SIGNIFICANT, VarianceSeverity.CRITICAL),
        requires_dea_report=severity is VarianceSeverity.CRITICAL and variance < 0,
    )


def validate_biennial_inventory_timing(
    last_inventory_date: datetime | date, *, now: datetime | None = None
) -> BiennialTimingResult:
    """
    Check where the pharmacy is in the two-year inventory cycle.

    Due date is the last inventory plus 730 days; within 30 days of it the
    status is ``due_soon``, past it ``overdue``.
    """
    last = as_utc(last_inventory_date, "last_inventory_date")
    current = resolve_now(now)

    days_since = int((current - last) // DAY)
    days_until_due = BIENNIAL_INTERVAL_DAYS - days_since

    if days_until_due < 0:
        status = BiennialStatus.OVERDUE
    elif days_until_due <= BIENNIAL_DUE_SOON_DAYS:
        status = BiennialStatus.DUE_SOON
    else:
        status = BiennialStatus.CURRENT

    return BiennialTimingResult(
        last_inventory_date=last,
        days_since_last_inventory=days_since,
        days_until_due=max(0, days_until_due),
        due_date=last + timedelta(days=BIENNIAL_INTERVAL_DAYS),
        status=status,
    )


def summarize_snapshots(snapshots: list[BiennialInventorySnapshot]) -> dict[str, float]:
    """Total counted units per schedule label ('Schedule II', ...)."""
    totals: dict[str, float] = {}
    for snap in snapshots:
        key = snap.schedule.label
        totals[key] = totals.get(key, 0) + snap.physical_count
    return totals
