"""Domain models for bookings, recurrence and conflict resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum, IntEnum
from typing import Optional, Union


class ValidationError(ValueError):
    """Raised when a request or definition is malformed.

    Carries the name of the offending field so callers can point at it.
    """

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(f"{field_name}: {message}")
        self.field = field_name
        self.message = message


class Priority(IntEnum):
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    PARTIAL = "partial"
    BOOKED = "booked"


class SuggestionKind(str, Enum):
    TIME = "time"
    RESOURCE = "resource"


class ResolutionOutcome(str, Enum):
    OVERRIDE = "override"
    WAITLISTED = "waitlisted"
    RESCHEDULED = "rescheduled"
    RESOURCE_CHANGED = "resource_changed"
    CANCELLED = "cancelled"


class WaitlistStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestState(str, Enum):
    VALIDATING = "validating"
    EXPANDING = "expanding"
    CHECKING_CONFLICTS = "checking_conflicts"
    COMMITTING = "committing"
    CONFLICTS_FOUND = "conflicts_found"
    COMMITTED = "committed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class TimeInterval:
    """Half-open ``[start, end)`` interval on naive, pre-normalized timestamps."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is not None or self.end.tzinfo is not None:
            raise ValidationError("interval", "timestamps must be timezone-naive")
        if self.start >= self.end:
            raise ValidationError("interval", "start must be earlier than end")

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass(frozen=True)
class TimeSlot:
    """Time-of-day window, not yet bound to a date."""

    start_time: time
    end_time: time

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise ValidationError("slot", "start_time must be earlier than end_time")

    def on(self, day: date) -> TimeInterval:
        return TimeInterval(
            start=datetime.combine(day, self.start_time),
            end=datetime.combine(day, self.end_time),
        )


@dataclass(frozen=True)
class Resource:
    resource_id: int
    name: str
    capacity: int


@dataclass(frozen=True)
class Booking:
    booking_id: str
    resource_id: int
    title: str
    interval: TimeInterval
    owner_id: str
    priority: Priority = Priority.NORMAL
    recurring_group_id: Optional[str] = None
    status: BookingStatus = BookingStatus.CONFIRMED


@dataclass(frozen=True)
class NeverEnds:
    pass


@dataclass(frozen=True)
class EndsOnDate:
    end_date: date


@dataclass(frozen=True)
class EndsAfterOccurrences:
    count: int


RecurrenceEnd = Union[NeverEnds, EndsOnDate, EndsAfterOccurrences]


@dataclass(frozen=True)
class RecurrenceDefinition:
    """Recurrence pattern; weekdays use 0=Sunday through 6=Saturday."""

    recurrence_type: RecurrenceType
    interval: int
    end: RecurrenceEnd
    weekdays: frozenset[int] = frozenset()
    month_day: Optional[int] = None
    exception_dates: frozenset[date] = frozenset()


@dataclass(frozen=True)
class RecurrenceInstance:
    date: date
    slot: TimeSlot

    def to_interval(self) -> TimeInterval:
        return self.slot.on(self.date)


@dataclass(frozen=True)
class BookingRequest:
    resource_id: int
    title: str
    owner_id: str
    interval: TimeInterval
    priority: Priority = Priority.NORMAL
    min_capacity: int = 1


@dataclass(frozen=True)
class RecurringBookingRequest:
    resource_id: int
    title: str
    owner_id: str
    series_start_date: date
    slot: TimeSlot
    recurrence: RecurrenceDefinition
    priority: Priority = Priority.NORMAL
    min_capacity: int = 1


@dataclass(frozen=True)
class ConflictSuggestion:
    kind: SuggestionKind
    resource_id: int
    resource_name: str
    interval: TimeInterval


@dataclass(frozen=True)
class ResolutionResult:
    can_override: bool
    time_suggestions: list[ConflictSuggestion]
    resource_suggestions: list[ConflictSuggestion]


@dataclass(frozen=True)
class ResolutionRecord:
    conflict_id: str
    outcome: ResolutionOutcome
    resolved_by: str
    timestamp: datetime
    notes: str = ""


@dataclass(frozen=True)
class WaitlistEntry:
    entry_id: str
    booking_request: BookingRequest
    requested_at: datetime
    status: WaitlistStatus = WaitlistStatus.PENDING


@dataclass(frozen=True)
class BookingPage:
    """One page of a filtered booking listing plus the unpaged total."""

    bookings: list[Booking]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


@dataclass(frozen=True)
class AvailabilityBlock:
    interval: TimeInterval
    available: bool
    blocking_booking: Optional[Booking] = None


@dataclass(frozen=True)
class InstanceConflict:
    """One candidate booking that collided with existing confirmed bookings."""

    date: date
    interval: TimeInterval
    blockers: list[Booking]
    resolution: ResolutionResult


@dataclass(frozen=True)
class BookingOutcome:
    state: RequestState
    conflict_id: Optional[str] = None
    bookings: list[Booking] = field(default_factory=list)
    conflicts: list[InstanceConflict] = field(default_factory=list)
    displaced: list[Booking] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.state is RequestState.COMMITTED

    @property
    def can_override(self) -> bool:
        return bool(self.conflicts) and all(
            conflict.resolution.can_override for conflict in self.conflicts
        )
