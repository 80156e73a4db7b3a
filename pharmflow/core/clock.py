"""
Time helpers shared by the rule engines.

All engine functions take an optional ``now`` so results are reproducible;
naive datetimes are treated as UTC and bare dates as midnight UTC.
"""

from datetime import UTC, date, datetime, timedelta

from pharmflow.core.exceptions import ValidationError

DAY = timedelta(days=1)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | date, field: str = "date") -> datetime:
    """Normalize a date or datetime to an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    msg = f"{field} must be a date or datetime, got {type(value).__name__}"
    raise ValidationError(msg, field=field)


def resolve_now(now: datetime | date | None) -> datetime:
    return utcnow() if now is None else as_utc(now, "now")


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end."""
    return (end - start) / DAY
