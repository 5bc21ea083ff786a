"""Expansion of recurrence definitions into concrete booking instances."""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Optional

from booking_engine.domain.constraints import validate_recurrence
from booking_engine.domain.models import (
    EndsAfterOccurrences,
    EndsOnDate,
    NeverEnds,
    RecurrenceDefinition,
    RecurrenceInstance,
    RecurrenceType,
    TimeSlot,
    ValidationError,
)
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

DEFAULT_HARD_CAP = 366


def sunday_based_weekday(day: date) -> int:
    """Map ``date.weekday()`` (Monday=0) onto the 0=Sunday convention."""
    return (day.weekday() + 1) % 7


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _day_in_month(year: int, month: int, day: int) -> Optional[date]:
    if year > date.max.year:
        return None
    if day > calendar.monthrange(year, month)[1]:
        return None
    return date(year, month, day)


def _weekly_cycle_matches(cursor: date, series_start_date: date, interval: int) -> bool:
    # Week index counts Monday-anchored weeks since the series started.
    start_week = series_start_date - timedelta(days=series_start_date.weekday())
    week_index = (cursor - start_week).days // 7
    return week_index % interval == 0


def expand(
    definition: RecurrenceDefinition,
    series_start_date: date,
    slot: TimeSlot,
    hard_cap: int = DEFAULT_HARD_CAP,
) -> list[RecurrenceInstance]:
    """Return the ordered instances produced by ``definition``.

    The loop stops at the occurrence budget, the effective end date or after
    ``hard_cap`` iterations. Exception dates are skipped without
    consuming the occurrence budget. The result is a pure function of the
    inputs.

    Only ``NeverEnds`` series may be cut at ``hard_cap``; a series whose
    explicit end lies beyond it raises ValidationError instead of coming back
    shorter than asked.
    """
    validate_recurrence(definition)
    if hard_cap < 1:
        raise ValidationError("hard_cap", "must be >= 1")

    end = definition.end
    if isinstance(end, EndsAfterOccurrences):
        effective_max: Optional[int] = end.count
    else:
        effective_max = None
    if isinstance(end, EndsOnDate):
        effective_end_date = end.end_date
    elif isinstance(end, EndsAfterOccurrences):
        effective_end_date = date.max
    else:
        effective_end_date = _safe_add_days(series_start_date, hard_cap)

    if definition.recurrence_type in (RecurrenceType.DAILY, RecurrenceType.WEEKLY):
        instances, truncated = _expand_by_day(
            definition, series_start_date, slot, hard_cap, effective_max, effective_end_date
        )
    else:
        instances, truncated = _expand_by_month(
            definition, series_start_date, slot, hard_cap, effective_max, effective_end_date
        )

    if truncated:
        logger.warning(
            "Recurrence expansion hit hard cap | type=%s | start=%s | hard_cap=%s | emitted=%s",
            definition.recurrence_type.value,
            series_start_date.isoformat(),
            hard_cap,
            len(instances),
        )
        # Open-ended series are bounded by the cap; an explicit end must be met in full.
        if not isinstance(end, NeverEnds):
            raise ValidationError("recurrence.end", "exceeds the maximum series length")
    return instances


def _safe_add_days(day: date, days: int) -> date:
    try:
        return day + timedelta(days=days)
    except OverflowError:
        return date.max


def _expand_by_day(
    definition: RecurrenceDefinition,
    series_start_date: date,
    slot: TimeSlot,
    hard_cap: int,
    effective_max: Optional[int],
    effective_end_date: date,
) -> tuple[list[RecurrenceInstance], bool]:
    weekly = definition.recurrence_type is RecurrenceType.WEEKLY
    step = timedelta(days=1 if weekly else definition.interval)

    instances: list[RecurrenceInstance] = []
    cursor = series_start_date
    iterations = 0
    while (effective_max is None or len(instances) < effective_max) and cursor <= effective_end_date:
        if iterations >= hard_cap:
            return instances, True
        iterations += 1
        if cursor not in definition.exception_dates:
            if not weekly:
                instances.append(RecurrenceInstance(date=cursor, slot=slot))
            elif sunday_based_weekday(cursor) in definition.weekdays and _weekly_cycle_matches(
                cursor, series_start_date, definition.interval
            ):
                instances.append(RecurrenceInstance(date=cursor, slot=slot))
        try:
            cursor = cursor + step
        except OverflowError:
            break
    return instances, False


def _expand_by_month(
    definition: RecurrenceDefinition,
    series_start_date: date,
    slot: TimeSlot,
    hard_cap: int,
    effective_max: Optional[int],
    effective_end_date: date,
) -> tuple[list[RecurrenceInstance], bool]:
    if definition.recurrence_type is RecurrenceType.MONTHLY:
        months_per_step = definition.interval
        target_month: Optional[int] = None
        target_day = int(definition.month_day or series_start_date.day)
    else:
        months_per_step = 12 * definition.interval
        target_month = series_start_date.month
        target_day = series_start_date.day

    instances: list[RecurrenceInstance] = []
    year, month = series_start_date.year, target_month or series_start_date.month
    iterations = 0
    while (effective_max is None or len(instances) < effective_max) and year <= effective_end_date.year:
        if iterations >= hard_cap:
            return instances, True
        iterations += 1
        # Months without the target day (Feb 30, Feb 29 off leap years) emit nothing.
        candidate = _day_in_month(year, month, target_day)
        if candidate is not None:
            if candidate > effective_end_date:
                break
            if candidate >= series_start_date and candidate not in definition.exception_dates:
                instances.append(RecurrenceInstance(date=candidate, slot=slot))
        year, month = _add_months(year, month, months_per_step)
    return instances, False
