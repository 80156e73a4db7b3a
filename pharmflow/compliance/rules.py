"""
DEA schedule rules.

``CS_RULES`` is a read-only mapping keyed by the closed ``DeaSchedule`` enum.
"""

from dataclasses import dataclass
from types import MappingProxyType

from pharmflow.types import DeaSchedule


@dataclass(frozen=True)
class CSRules:
    """Dispensing and record-keeping rules for one schedule."""

    schedule: DeaSchedule
    refills_allowed: int
    prescription_valid_days: int
    partial_fill_allowed: bool
    electronic_prescribing_allowed: bool
    transfer_allowed: bool
    requires_dea_222: bool
    arcos_reporting: bool
    perpetual_inventory: bool
    partial_fill_time_limit_hours: int | None = None


CS_RULES: MappingProxyType[DeaSchedule, CSRules] = MappingProxyType(
    {
        DeaSchedule.I: CSRules(
            schedule=DeaSchedule.I,
            refills_allowed=0,
            prescription_valid_days=0,  # cannot be prescribed
            partial_fill_allowed=False,
            electronic_prescribing_allowed=False,
            transfer_allowed=False,
            requires_dea_222=True,
            arcos_reporting=True,
            perpetual_inventory=True,
        ),
        DeaSchedule.II: CSRules(
            schedule=DeaSchedule.II,
            refills_allowed=0,
            prescription_valid_days=90,
            partial_fill_allowed=True,
            partial_fill_time_limit_hours=72,
            electronic_prescribing_allowed=True,
            transfer_allowed=True,  # one-time transfer
            requires_dea_222=True,
            arcos_reporting=True,
            perpetual_inventory=True,
        ),
        DeaSchedule.III: CSRules(
            schedule=DeaSchedule.III,
            refills_allowed=5,
            prescription_valid_days=180,
            partial_fill_allowed=True,
            electronic_prescribing_allowed=True,
            transfer_allowed=True,
            requires_dea_222=False,
            arcos_reporting=True,
            perpetual_inventory=True,
        ),
        DeaSchedule.IV: CSRules(
            schedule=DeaSchedule.IV,
            refills_allowed=5,
            prescription_valid_days=180,
            partial_fill_allowed=True,
            electronic_prescribing_allowed=True,
            transfer_allowed=True,
            requires_dea_222=False,
            arcos_reporting=True,
            perpetual_inventory=True,
        ),
        DeaSchedule.V: CSRules(
            schedule=DeaSchedule.V,
            refills_allowed=5,
            prescription_valid_days=180,
            partial_fill_allowed=True,
            electronic_prescribing_allowed=True,
            transfer_allowed=True,
            requires_dea_222=False,
            arcos_reporting=False,
            perpetual_inventory=True,
        ),
        DeaSchedule.LEGEND: CSRules(
            schedule=DeaSchedule.LEGEND,
            refills_allowed=11,
            prescription_valid_days=365,
            partial_fill_allowed=True,
            electronic_prescribing_allowed=True,
            transfer_allowed=True,
            requires_dea_222=False,
            arcos_reporting=False,
            perpetual_inventory=False,
        ),
        DeaSchedule.OTC: CSRules(
            schedule=DeaSchedule.OTC,
            refills_allowed=99,
            prescription_valid_days=999,
            partial_fill_allowed=True,
            electronic_prescribing_allowed=True,
            transfer_allowed=True,
            requires_dea_222=False,
            arcos_reporting=False,
            perpetual_inventory=False,
        ),
    }
)


def get_rules(schedule: DeaSchedule | str) -> CSRules:
    return CS_RULES[DeaSchedule.parse(schedule)]
