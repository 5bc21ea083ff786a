"""Domain-level validation rules applied before any repository access."""

from __future__ import annotations

from datetime import date, datetime, time

from booking_engine.domain.models import (
    BookingRequest,
    EndsAfterOccurrences,
    EndsOnDate,
    NeverEnds,
    RecurrenceDefinition,
    RecurrenceType,
    RecurringBookingRequest,
    TimeSlot,
    ValidationError,
)


def parse_time_of_day(value: str, field_name: str) -> time:
    try:
        return datetime.strptime(value, "%H:%M").time()
    except ValueError as exc:
        raise ValidationError(field_name, "must follow HH:MM format") from exc


def business_window_from_settings(start: str, end: str) -> TimeSlot:
    start_time = parse_time_of_day(start, "business_hours_start")
    end_time = parse_time_of_day(end, "business_hours_end")
    if start_time >= end_time:
        raise ValidationError("business_hours", "start must be earlier than end")
    return TimeSlot(start_time=start_time, end_time=end_time)


def validate_recurrence(definition: RecurrenceDefinition) -> None:
    if not isinstance(definition.recurrence_type, RecurrenceType):
        raise ValidationError("recurrence.type", "unknown recurrence type")
    if isinstance(definition.interval, bool) or not isinstance(definition.interval, int):
        raise ValidationError("recurrence.interval", "must be an integer")
    if definition.interval < 1:
        raise ValidationError("recurrence.interval", "must be a positive integer")

    end = definition.end
    if isinstance(end, EndsAfterOccurrences):
        if end.count < 1:
            raise ValidationError("recurrence.end.count", "must be >= 1")
    elif isinstance(end, EndsOnDate):
        if not isinstance(end.end_date, date):
            raise ValidationError("recurrence.end.end_date", "is required")
    elif not isinstance(end, NeverEnds):
        raise ValidationError("recurrence.end", "must be never, on_date, or after_occurrences")

    if definition.recurrence_type is RecurrenceType.WEEKLY:
        if not definition.weekdays:
            raise ValidationError("recurrence.weekdays", "is required for weekly recurrence")
        for weekday in definition.weekdays:
            if not 0 <= weekday <= 6:
                raise ValidationError("recurrence.weekdays", "values must be between 0 and 6")

    if definition.recurrence_type is RecurrenceType.MONTHLY:
        if definition.month_day is None:
            raise ValidationError("recurrence.month_day", "is required for monthly recurrence")
        if not 1 <= definition.month_day <= 31:
            raise ValidationError("recurrence.month_day", "must be between 1 and 31")


def validate_booking_request(request: BookingRequest) -> None:
    if request.resource_id <= 0:
        raise ValidationError("resource_id", "must be a positive integer")
    if not request.title.strip():
        raise ValidationError("title", "must be non-empty")
    if not request.owner_id.strip():
        raise ValidationError("owner_id", "must be non-empty")
    if request.min_capacity < 1:
        raise ValidationError("min_capacity", "must be >= 1")


def validate_recurring_request(request: RecurringBookingRequest) -> None:
    if request.resource_id <= 0:
        raise ValidationError("resource_id", "must be a positive integer")
    if not request.title.strip():
        raise ValidationError("title", "must be non-empty")
    if not request.owner_id.strip():
        raise ValidationError("owner_id", "must be non-empty")
    if request.min_capacity < 1:
        raise ValidationError("min_capacity", "must be >= 1")
    validate_recurrence(request.recurrence)
    end = request.recurrence.end
    if isinstance(end, EndsOnDate) and end.end_date < request.series_start_date:
        raise ValidationError(
            "recurrence.end.end_date",
            "must not be earlier than series_start_date",
        )


def validate_duration(duration_minutes: int, business_window: TimeSlot) -> None:
    window = business_window.on(date.min)
    if duration_minutes <= 0:
        raise ValidationError("duration_minutes", "must be > 0")
    if duration_minutes > window.duration_minutes:
        raise ValidationError("duration_minutes", "must fit inside business hours")
