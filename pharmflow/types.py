"""
Shared enums and value types used across the rule engines and the workflow.
"""

from dataclasses import dataclass
from enum import Enum

from pharmflow.core.exceptions import ValidationError


class DeaSchedule(Enum):
    """US controlled-substance schedule (I most restricted, V least)."""

    I = "I"  # noqa: E741
    II = "II"
    III = "III"
    IV = "IV"
    V = "V"
    LEGEND = "LEGEND"
    """Prescription-only, not controlled"""

    OTC = "OTC"
    """Over the counter"""

    @property
    def is_controlled(self) -> bool:
        return self in CONTROLLED_SCHEDULES

    @property
    def label(self) -> str:
        if self.is_controlled:
            return f"Schedule {self.value}"
        return self.value

    @classmethod
    def parse(cls, value: "str | DeaSchedule") -> "DeaSchedule":
        """Parse from a tag such as 'II' or 'legend'."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            msg = f"Unknown DEA schedule: {value!r}"
            raise ValidationError(msg, field="schedule") from None


CONTROLLED_SCHEDULES = frozenset(
    {DeaSchedule.I, DeaSchedule.II, DeaSchedule.III, DeaSchedule.IV, DeaSchedule.V}
)

# Schedules whose theft or loss must be reported on DEA Form 106
REPORTABLE_SCHEDULES = frozenset({DeaSchedule.II, DeaSchedule.III, DeaSchedule.IV, DeaSchedule.V})


class CSTransactionType(Enum):
    """Perpetual-inventory transaction types."""

    RECEIVE = "receive"
    DISPENSE = "dispense"
    RETURN_TO_STOCK = "return_to_stock"
    REVERSE_DISTRIBUTION = "reverse_distribution"
    DESTRUCTION = "destruction"
    THEFT_LOSS = "theft_loss"
    ADJUSTMENT = "adjustment"
    """Quantity is the new physical count, not a delta"""

    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"


class StaffRole(Enum):
    TECHNICIAN = "technician"
    PHARMACIST = "pharmacist"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """Staff member performing an operation."""

    id: str
    name: str = ""
    role: StaffRole = StaffRole.TECHNICIAN

    @property
    def is_pharmacist(self) -> bool:
        return self.role in (StaffRole.PHARMACIST, StaffRole.ADMIN)

    @property
    def display_name(self) -> str:
        return self.name or self.id


@dataclass(frozen=True)
class OverrideCode:
    """Documented reason code that clears a blocking reject or issue."""

    code: str
    description: str
    requires_documentation: bool = True
