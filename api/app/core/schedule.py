"""Due-date calculation for compliance run recurrence rules.

Pure functions only: nothing here touches the database, so the same rules
are used at definition time (validation), at activation (next due date) and
by the recurrence sweep.
"""
import calendar
from datetime import date, timedelta
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from app.core.errors import InvalidScheduleError, ScheduleError, ValidationError
from app.core.time import utc_today
from app.models.compliance import RunFrequency

# Frequencies whose recurring_day means "day of the period" and the period
# length in months.
PERIOD_MONTHS = {
    RunFrequency.MONTHLY: 1,
    RunFrequency.BIMONTHLY: 2,
    RunFrequency.QUARTERLY: 3,
}

MIN_RECURRING_DAY = 1
MAX_RECURRING_DAY = 31


def coerce_frequency(frequency: Union[str, RunFrequency]) -> RunFrequency:
    """Accept either the enum or its string value."""
    try:
        return RunFrequency(frequency)
    except ValueError:
        raise InvalidScheduleError(f"Unknown frequency '{frequency}'")


def requires_recurring_day(frequency: Union[str, RunFrequency]) -> bool:
    """True for frequencies that are anchored to a day of the period."""
    return coerce_frequency(frequency) in PERIOD_MONTHS


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _clamped(year: int, month: int, day: int) -> date:
    """Date for `day` in the given month, clamped to the month's last day."""
    return date(year, month, min(day, days_in_month(year, month)))


def _check_recurring_day(recurring_day: Optional[int]) -> None:
    if recurring_day is None:
        return
    if isinstance(recurring_day, bool) or not isinstance(recurring_day, int):
        raise InvalidScheduleError("recurring_day must be an integer")
    if not MIN_RECURRING_DAY <= recurring_day <= MAX_RECURRING_DAY:
        raise InvalidScheduleError(
            f"recurring_day must be between {MIN_RECURRING_DAY} and {MAX_RECURRING_DAY}, got {recurring_day}"
        )


def next_due_date(
    frequency: Union[str, RunFrequency],
    recurring_day: Optional[int] = None,
    from_date: Optional[date] = None,
    explicit_date: Optional[date] = None,
) -> date:
    """Calculate the next due date for a recurrence rule.

    - once: `explicit_date` verbatim (the run's stored due date).
    - weekly: from_date + 7 days.
    - monthly: the next occurrence of recurring_day strictly after
      from_date, in from_date's own month when still ahead, otherwise the
      following month.
    - bimonthly / quarterly: recurring_day in the month two or three months
      after from_date's month; the rest of the current month is skipped.
    - Days past the end of a month clamp to its last day, so day 31 in
      April is April 30.
    - annually: same calendar date a year later; Feb 29 becomes Feb 28 in
      non-leap years.

    Raises:
        InvalidScheduleError: recurring_day missing or out of range for a
            day-of-period frequency, no explicit date for `once`, unknown
            frequency, or a computed date earlier than from_date.
    """
    freq = coerce_frequency(frequency)
    _check_recurring_day(recurring_day)

    if freq == RunFrequency.ONCE:
        if explicit_date is None:
            raise InvalidScheduleError("A one-off run needs an explicit due date")
        return explicit_date

    if from_date is None:
        from_date = utc_today()

    if freq == RunFrequency.WEEKLY:
        result = from_date + timedelta(days=7)
    elif freq == RunFrequency.ANNUALLY:
        result = from_date + relativedelta(years=1)
    else:
        if recurring_day is None:
            raise InvalidScheduleError(f"recurring_day is required for {freq.value} runs")
        result = None
        if freq == RunFrequency.MONTHLY:
            result = _clamped(from_date.year, from_date.month, recurring_day)
        if result is None or result <= from_date:
            anchor = from_date.replace(day=1) + relativedelta(months=PERIOD_MONTHS[freq])
            result = _clamped(anchor.year, anchor.month, recurring_day)

    if result < from_date:
        raise InvalidScheduleError(
            f"Computed due date {result} is before {from_date}"
        )
    return result


def validate_schedule(
    frequency: Union[str, RunFrequency],
    recurring_day: Optional[int],
    start_date: date,
    due_date: date,
) -> Optional[date]:
    """Definition-time check of a run's dates and recurrence rule.

    Returns the due date that would follow `due_date` for recurring runs,
    or None for one-off runs.
    """
    freq = coerce_frequency(frequency)

    if due_date < start_date:
        raise ValidationError("due_date must not be before start_date", fields=["due_date"])

    try:
        _check_recurring_day(recurring_day)
    except InvalidScheduleError as exc:
        raise ScheduleError(exc.message, fields=["recurring_day"])

    if freq in PERIOD_MONTHS and recurring_day is None:
        raise ScheduleError(
            f"recurring_day is required for {freq.value} runs", fields=["recurring_day"]
        )

    if freq == RunFrequency.ONCE:
        return None
    return next_due_date(freq, recurring_day, from_date=due_date)
