"""Refill-too-soon timing."""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from pharmflow.core.clock import as_utc, days_between, resolve_now
from pharmflow.core.exceptions import ValidationError

DEFAULT_REFILL_PERCENTAGE = 80


@dataclass(frozen=True)
class EligibleRefillInfo:
    eligible_date: datetime
    days_until_eligible: int
    is_eligible: bool
    last_fill_date: datetime
    days_supply: int
    percentage_required: float


def calculate_eligible_refill_date(
    last_fill_date: datetime | date,
    days_supply: int,
    percentage_required: float = DEFAULT_REFILL_PERCENTAGE,
    *,
    now: datetime | None = None,
) -> EligibleRefillInfo:
    """
    Compute when a refill becomes payable.

    Most payers reject a refill until a percentage of the previous days
    supply has elapsed (80% by default; configurable per payer policy).

    Raises:
        ValidationError: On non-positive days supply or a percentage outside (0, 100]
    """
    if days_supply <= 0:
        msg = f"days_supply must be positive, got {days_supply}"
        raise ValidationError(msg, field="days_supply")
    if not 0 < percentage_required <= 100:
        msg = f"percentage_required must be in (0, 100], got {percentage_required}"
        raise ValidationError(msg, field="percentage_required")

    last_fill = as_utc(last_fill_date, "last_fill_date")
    current = resolve_now(now)

    offset_days = days_supply * percentage_required / 100
    days_since_last_fill = days_between(last_fill, current)
    days_until_eligible = max(0, math.ceil(offset_days - days_since_last_fill))

    return EligibleRefillInfo(
        eligible_date=last_fill + timedelta(days=offset_days),
        days_until_eligible=days_until_eligible,
        is_eligible=days_until_eligible == 0,
        last_fill_date=last_fill,
        days_supply=days_supply,
        percentage_required=percentage_required,
    )
