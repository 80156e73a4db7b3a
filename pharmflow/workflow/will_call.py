"""
Will-call bin lifecycle.

A filled prescription waits in a will-call bin until the patient picks it up.
Bins left unclaimed for ``RETURN_TO_STOCK_DAYS`` must be returned to stock
(and the claim reversed); from ``EXPIRING_SOON_DAYS`` the bin is flagged so
staff can remind the patient.

Status flow:

    READY ──notify──▶ NOTIFIED ──pickup──▶ PICKED_UP
      │                  │
      └──── day 10 ──────┴──▶ RETURN_PENDING ──return──▶ RETURNED

``extend_hold`` pushes the day-counter anchor forward, which moves a
RETURN_PENDING bin back to READY/NOTIFIED.

Schedule II-V pickups need a passed photo ID check recorded with the pickup.
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType

from pharmflow.core.clock import DAY, resolve_now
from pharmflow.core.exceptions import InvalidTransition, ValidationError
from pharmflow.types import DeaSchedule

RETURN_TO_STOCK_DAYS = 10
EXPIRING_SOON_DAYS = 7

MIN_HOLD_EXTENSION_DAYS = 1
MAX_HOLD_EXTENSION_DAYS = 14
DEFAULT_HOLD_EXTENSION_DAYS = 7

ID_REQUIRED_SCHEDULES = frozenset({DeaSchedule.II, DeaSchedule.III, DeaSchedule.IV, DeaSchedule.V})


class WillCallStatus(Enum):
    READY = "ready"
    NOTIFIED = "notified"
    PICKED_UP = "picked_up"
    RETURN_PENDING = "return_pending"
    RETURNED = "returned"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


_W = WillCallStatus

ACTIVE_STATUSES = frozenset({_W.READY, _W.NOTIFIED, _W.RETURN_PENDING})

WILL_CALL_TRANSITIONS: MappingProxyType[WillCallStatus, frozenset[WillCallStatus]] = MappingProxyType(
    {
        _W.READY: frozenset({_W.NOTIFIED, _W.PICKED_UP, _W.RETURN_PENDING, _W.RETURNED}),
        _W.NOTIFIED: frozenset({_W.NOTIFIED, _W.PICKED_UP, _W.RETURN_PENDING, _W.RETURNED}),
        _W.RETURN_PENDING: frozenset({_W.READY, _W.NOTIFIED, _W.PICKED_UP, _W.RETURNED}),
        _W.PICKED_UP: frozenset(),
        _W.RETURNED: frozenset(),
    }
)


class IdType(Enum):
    DRIVERS_LICENSE = "drivers_license"
    STATE_ID = "state_id"
    PASSPORT = "passport"
    MILITARY_ID = "military_id"
    TRIBAL_ID = "tribal_id"
    OTHER = "other"


@dataclass(frozen=True)
class IdVerification:
    """
    Photo ID check made at the pickup counter.

    Only the last characters of the ID number are kept.
    """

    id_type: IdType
    id_number: str
    verified_by: str
    id_valid: bool = True
    photo_matches: bool = True
    name_matches: bool = True
    verified_at: datetime | None = None

    def __post_init__(self):
        if len(self.id_number) > 10:
            msg = "Store at most the last 10 characters of the ID number"
            raise ValidationError(msg, field="id_number")

    @property
    def passed(self) -> bool:
        return self.id_valid and self.photo_matches and self.name_matches


def requires_id_verification(schedule: DeaSchedule) -> bool:
    return schedule in ID_REQUIRED_SCHEDULES


def check_pickup_id(
    prescription_id: str, schedule: DeaSchedule, verification: IdVerification | None
) -> None:
    """
    Raises:
        ValidationError: Schedule II-V pickup without a passed ID check
    """
    if not requires_id_verification(schedule):
        return
    if verification is None or not verification.passed:
        msg = (
            f"ID verification is required to release {schedule.label} "
            f"prescription {prescription_id}"
        )
        raise ValidationError(msg, field="id_verification")


@dataclass(frozen=True)
class WillCallBin:
    """
    A filled prescription waiting for pickup.

    Attributes:
        hold_anchor: Start of the day counter; placement time plus any extensions
        reminder_count: Pickup reminders sent so far
    """

    prescription_id: str
    rx_number: str
    patient_id: str
    bin_location: str
    placed_at: datetime
    hold_anchor: datetime
    drug_name: str = ""
    quantity: float = 0
    is_controlled: bool = False
    is_refrigerated: bool = False
    status: WillCallStatus = WillCallStatus.READY
    reminder_count: int = 0
    extension_days: int = 0
    notified_at: datetime | None = None
    picked_up_at: datetime | None = None
    returned_at: datetime | None = None
    id_verification: IdVerification | None = None
    insurance_reversed: bool = False
    bin_id: str = field(default_factory=lambda: f"WC-{uuid.uuid4().hex[:10].upper()}")

    def days_in_bin(self, now: datetime | None = None) -> int:
        return max(0, math.floor((resolve_now(now) - self.hold_anchor) / DAY))

    def return_to_stock_date(self, return_days: int = RETURN_TO_STOCK_DAYS) -> datetime:
        return self.hold_anchor + timedelta(days=return_days)


@dataclass(frozen=True)
class WillCallEvaluation:
    bin: WillCallBin
    days_in_bin: int
    days_until_return: int
    is_expiring_soon: bool
    requires_return: bool


@dataclass
class WillCallScan:
    """Work list produced by ``scan_bins``."""

    to_notify: list[WillCallBin] = field(default_factory=list)
    expiring: list[WillCallBin] = field(default_factory=list)
    to_return: list[WillCallBin] = field(default_factory=list)
    evaluated: int = 0


def _move(bin: WillCallBin, target: WillCallStatus, **changes) -> WillCallBin:
    if target not in WILL_CALL_TRANSITIONS[bin.status]:
        raise InvalidTransition(bin.prescription_id, bin.status, target)
    return replace(bin, status=target, **changes)


def create_bin(
    prescription_id: str,
    rx_number: str,
    patient_id: str,
    bin_location: str,
    *,
    drug_name: str = "",
    quantity: float = 0,
    is_controlled: bool = False,
    is_refrigerated: bool = False,
    now: datetime | None = None,
) -> WillCallBin:
    if not bin_location.strip():
        msg = "bin_location is required"
        raise ValidationError(msg, field="bin_location")
    placed = resolve_now(now)
    return WillCallBin(
        prescription_id=prescription_id,
        rx_number=rx_number,
        patient_id=patient_id,
        bin_location=bin_location.strip(),
        placed_at=placed,
        hold_anchor=placed,
        drug_name=drug_name,
        quantity=quantity,
        is_controlled=is_controlled,
        is_refrigerated=is_refrigerated,
    )


def evaluate_bin(
    bin: WillCallBin,
    now: datetime | None = None,
    *,
    return_days: int = RETURN_TO_STOCK_DAYS,
    expiring_days: int = EXPIRING_SOON_DAYS,
) -> WillCallEvaluation:
    """
    Age a bin against the return-to-stock policy.

    Active bins at or past ``return_days`` move to RETURN_PENDING; bins at or
    past ``expiring_days`` (but not yet due) are flagged expiring soon.
    """
    current = resolve_now(now)
    days = bin.days_in_bin(current)

    if not bin.status.is_active:
        return WillCallEvaluation(bin, days, 0, is_expiring_soon=False, requires_return=False)

    requires_return = days >= return_days
    if requires_return and bin.status is not WillCallStatus.RETURN_PENDING:
        bin = _move(bin, WillCallStatus.RETURN_PENDING)

    remaining = (bin.return_to_stock_date(return_days) - current) / DAY
    return WillCallEvaluation(
        bin=bin,
        days_in_bin=days,
        days_until_return=max(0, math.ceil(remaining)),
        is_expiring_soon=expiring_days <= days < return_days,
        requires_return=requires_return,
    )


def mark_notified(bin: WillCallBin, now: datetime | None = None) -> WillCallBin:
    """Record a pickup reminder. Not allowed once the bin is due for return."""
    if bin.status is WillCallStatus.RETURN_PENDING:
        raise InvalidTransition(bin.prescription_id, bin.status, WillCallStatus.NOTIFIED)
    return _move(
        bin,
        WillCallStatus.NOTIFIED,
        reminder_count=bin.reminder_count + 1,
        notified_at=resolve_now(now),
    )


def mark_picked_up(
    bin: WillCallBin,
    now: datetime | None = None,
    id_verification: IdVerification | None = None,
) -> WillCallBin:
    return _move(
        bin,
        WillCallStatus.PICKED_UP,
        picked_up_at=resolve_now(now),
        id_verification=id_verification,
    )


def extend_hold(bin: WillCallBin, days: int = DEFAULT_HOLD_EXTENSION_DAYS) -> WillCallBin:
    """
    Give the patient more time by pushing the day-counter anchor forward.

    Raises:
        ValidationError: If days is outside 1..14
        InvalidTransition: If the bin is no longer active
    """
    if isinstance(days, bool) or not isinstance(days, int):
        msg = f"Extension must be a whole number of days, got {days!r}"
        raise ValidationError(msg, field="days")
    if not MIN_HOLD_EXTENSION_DAYS <= days <= MAX_HOLD_EXTENSION_DAYS:
        msg = (
            f"Extension must be between {MIN_HOLD_EXTENSION_DAYS} and "
            f"{MAX_HOLD_EXTENSION_DAYS} days, got {days}"
        )
        raise ValidationError(msg, field="days")
    if not bin.status.is_active:
        raise InvalidTransition(bin.prescription_id, bin.status, bin.status)

    status = bin.status
    if status is WillCallStatus.RETURN_PENDING:
        status = WillCallStatus.NOTIFIED if bin.reminder_count else WillCallStatus.READY

    return replace(
        bin,
        status=status,
        hold_anchor=bin.hold_anchor + timedelta(days=days),
        extension_days=bin.extension_days + days,
    )


def return_to_stock(
    bin: WillCallBin, now: datetime | None = None, *, insurance_reversed: bool = False
) -> WillCallBin:
    """Close the bin; ``insurance_reversed`` records that the paid claim was reversed."""
    return _move(
        bin,
        WillCallStatus.RETURNED,
        returned_at=resolve_now(now),
        insurance_reversed=insurance_reversed,
    )


def scan_bins(
    bins: list[WillCallBin],
    now: datetime | None = None,
    *,
    return_days: int = RETURN_TO_STOCK_DAYS,
    expiring_days: int = EXPIRING_SOON_DAYS,
) -> WillCallScan:
    """Sort active bins into reminders to send, expiring bins and bins to return."""
    current = resolve_now(now)
    scan = WillCallScan()
    for bin in bins:
        if not bin.status.is_active:
            continue
        result = evaluate_bin(bin, current, return_days=return_days, expiring_days=expiring_days)
        scan.evaluated += 1
        if result.requires_return:
            scan.to_return.append(result.bin)
            continue
        if result.is_expiring_soon:
            scan.expiring.append(result.bin)
        if result.bin.status is WillCallStatus.READY:
            scan.to_notify.append(result.bin)
    return scan
