"""
Cron expression matching.

Two grammars are accepted and told apart by field count:

    5 fields: minute hour day month weekday
    6 fields: second minute hour day month weekday

The seconds field of the 6-field form is discarded, so both grammars fire at
minute granularity. A task is *due* at a reference instant when the most recent
firing instant at or before it lies within a tolerance window, which lets a
coarse external timer catch every firing despite jitter.
"""
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Optional, Tuple

from croniter import croniter
from pydantic import BaseModel, Field

DEFAULT_TOLERANCE_SECONDS = 60
INVALID_EXPRESSION = "invalid expression"

_MINUTE = timedelta(minutes=1)


class ScheduleParseError(ValueError):
    """Raised when a schedule expression cannot be parsed."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression '{expression}': {reason}")


class InvalidFieldCountError(ScheduleParseError):
    def __init__(self, expression: str, field_count: int):
        self.field_count = field_count
        super().__init__(expression, f"expected 5 or 6 fields, got {field_count}")


class InvalidFieldValueError(ScheduleParseError):
    pass


class CronSchedule(BaseModel):
    """
    A parsed schedule expression.
    """
    expression: str = Field(..., description="Expression as written by the user")
    field_count: int = Field(..., description="5 or 6, the grammar detected at parse time")
    fields: Tuple[str, ...] = Field(..., description="minute hour day month weekday")

    model_config = {"frozen": True}

    @property
    def has_seconds_field(self) -> bool:
        return self.field_count == 6

    @property
    def minute_expression(self) -> str:
        return " ".join(self.fields)


@lru_cache(maxsize=1024)
def parse(expression: str) -> CronSchedule:
    """
    Parse a 5-field or 6-field cron expression.

    Raises:
        InvalidFieldCountError: If the expression does not have 5 or 6 fields.
        InvalidFieldValueError: If a field holds a value cron cannot interpret.
    """
    parts = (expression or "").split()
    if len(parts) not in (5, 6):
        raise InvalidFieldCountError(expression, len(parts))

    fields = tuple(parts[1:]) if len(parts) == 6 else tuple(parts)
    minute_expression = " ".join(fields)
    if not croniter.is_valid(minute_expression):
        raise InvalidFieldValueError(expression, "unrecognised field value")

    return CronSchedule(expression=expression, field_count=len(parts), fields=fields)


def _localize(reference: datetime, tz: Optional[tzinfo]) -> datetime:
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return reference.astimezone(tz or timezone.utc)


def previous_fire_time(schedule: CronSchedule, reference: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Return the latest firing instant at or before ``reference``, evaluated in ``tz`` (UTC by default)."""
    local = _localize(reference, tz)
    # croniter's get_prev is strict, so start one minute past the reference minute
    start = local.replace(second=0, microsecond=0) + _MINUTE
    return croniter(schedule.minute_expression, start).get_prev(datetime)


def next_fire_time(schedule: CronSchedule, reference: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Return the earliest firing instant strictly after ``reference``."""
    local = _localize(reference, tz)
    return croniter(schedule.minute_expression, local).get_next(datetime)


def is_due(
    schedule: CronSchedule,
    reference: datetime,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    tz: Optional[tzinfo] = None,
) -> bool:
    previous = previous_fire_time(schedule, reference, tz)
    return abs((_localize(reference, tz) - previous).total_seconds()) <= tolerance_seconds


def is_expression_due(
    expression: str,
    reference: datetime,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    tz: Optional[tzinfo] = None,
) -> bool:
    """Like :func:`is_due` but takes the raw expression; unparseable expressions are never due."""
    try:
        schedule = parse(expression)
    except ScheduleParseError:
        return False
    return is_due(schedule, reference, tolerance_seconds, tz)


def describe_next_run(expression: str, reference: datetime, tz: Optional[tzinfo] = None) -> str:
    try:
        schedule = parse(expression)
    except ScheduleParseError:
        return INVALID_EXPRESSION
    return next_fire_time(schedule, reference, tz).isoformat()
