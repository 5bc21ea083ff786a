"""HTTP controller layer for bookings, conflict resolution and the waitlist."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Iterator, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from booking_engine.controllers.dependencies import (
    get_booking_orchestrator,
    get_conflict_resolver,
    get_repository,
)
from booking_engine.domain.models import (
    Booking,
    BookingOutcome,
    BookingPage,
    BookingRequest,
    BookingStatus,
    ConflictSuggestion,
    EndsAfterOccurrences,
    EndsOnDate,
    NeverEnds,
    Priority,
    RecurrenceDefinition,
    RecurrenceType,
    RecurringBookingRequest,
    ResolutionOutcome,
    ResolutionRecord,
    TimeInterval,
    TimeSlot,
    ValidationError,
    WaitlistEntry,
    WaitlistStatus,
)
from booking_engine.repository.base import RepositoryUnavailable
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.booking_service import (
    BookingNotFoundError,
    BookingOrchestrator,
    ResourceNotFoundError,
    SeriesNotFoundError,
)
from booking_engine.services.resolution_service import (
    ConflictResolver,
    WaitlistEntryNotFoundError,
    WaitlistTransitionError,
)
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["bookings"])

PriorityName = Literal["low", "normal", "high", "critical"]
OutcomeName = Literal["override", "waitlisted", "rescheduled", "resource_changed", "cancelled"]


class RecurrenceEndPayload(BaseModel):
    kind: Literal["never", "on_date", "after_occurrences"]
    end_date: Optional[date] = None
    count: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_payload(self) -> "RecurrenceEndPayload":
        if self.kind == "on_date" and self.end_date is None:
            raise ValueError("end_date is required when kind is on_date")
        if self.kind == "after_occurrences" and self.count is None:
            raise ValueError("count is required when kind is after_occurrences")
        return self


class RecurrencePayload(BaseModel):
    """Input DTO for a recurrence pattern; weekdays use 0=Sunday."""

    type: Literal["daily", "weekly", "monthly", "yearly"]
    interval: int = Field(default=1, gt=0)
    end: RecurrenceEndPayload
    weekdays: list[int] = Field(default_factory=list)
    month_day: Optional[int] = Field(default=None, ge=1, le=31)
    exception_dates: list[date] = Field(default_factory=list)

    @field_validator("weekdays")
    @classmethod
    def validate_weekdays(cls, value: list[int]) -> list[int]:
        for weekday in value:
            if not 0 <= weekday <= 6:
                raise ValueError("weekdays values must be between 0 and 6")
        return value


class CreateBookingPayload(BaseModel):
    resource_id: int = Field(gt=0)
    title: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    start: datetime
    end: datetime
    priority: PriorityName = "normal"
    min_capacity: int = Field(default=1, ge=1)
    override: bool = False
    conflict_id: Optional[str] = None


class CreateRecurringBookingPayload(BaseModel):
    resource_id: int = Field(gt=0)
    title: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    series_start_date: date
    start_time: time
    end_time: time
    recurrence: RecurrencePayload
    priority: PriorityName = "normal"
    min_capacity: int = Field(default=1, ge=1)
    override: bool = False
    conflict_id: Optional[str] = None


class PreviewSeriesPayload(BaseModel):
    series_start_date: date
    start_time: time
    end_time: time
    recurrence: RecurrencePayload


class ReschedulePayload(BaseModel):
    start: datetime
    end: datetime
    resource_id: Optional[int] = Field(default=None, gt=0)


class ResolveConflictPayload(BaseModel):
    conflict_id: str = Field(min_length=1)
    outcome: OutcomeName
    resolved_by: str = Field(min_length=1)
    notes: str = ""
    booking: CreateBookingPayload
    new_start: Optional[datetime] = None
    new_end: Optional[datetime] = None
    new_resource_id: Optional[int] = Field(default=None, gt=0)


class BookingResponse(BaseModel):
    booking_id: str
    resource_id: int
    title: str
    start: datetime
    end: datetime
    owner_id: str
    priority: PriorityName
    recurring_group_id: Optional[str] = None
    status: str


class BookingPageResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class SeriesResponse(BaseModel):
    recurring_group_id: str
    bookings: list[BookingResponse]


class SuggestionResponse(BaseModel):
    kind: Literal["time", "resource"]
    resource_id: int
    resource_name: str
    start: datetime
    end: datetime


class InstanceConflictResponse(BaseModel):
    date: date
    start: datetime
    end: datetime
    blockers: list[BookingResponse]
    can_override: bool
    time_suggestions: list[SuggestionResponse]
    resource_suggestions: list[SuggestionResponse]


class BookingOutcomeResponse(BaseModel):
    state: str
    conflict_id: Optional[str] = None
    can_override: bool = False
    bookings: list[BookingResponse] = Field(default_factory=list)
    conflicts: list[InstanceConflictResponse] = Field(default_factory=list)
    displaced: list[BookingResponse] = Field(default_factory=list)


class OccurrenceResponse(BaseModel):
    date: date
    start: datetime
    end: datetime


class PreviewSeriesResponse(BaseModel):
    occurrences: list[OccurrenceResponse]


class ResolutionRecordResponse(BaseModel):
    conflict_id: str
    outcome: OutcomeName
    resolved_by: str
    timestamp: datetime
    notes: str


class WaitlistEntryResponse(BaseModel):
    entry_id: str
    resource_id: int
    title: str
    owner_id: str
    start: datetime
    end: datetime
    priority: PriorityName
    requested_at: datetime
    status: Literal["pending", "approved", "rejected"]


class AppliedResolutionResponse(BaseModel):
    outcome: OutcomeName
    record: Optional[ResolutionRecordResponse] = None
    booking_outcome: Optional[BookingOutcomeResponse] = None
    waitlist_entry: Optional[WaitlistEntryResponse] = None


@contextmanager
def service_errors(action: str) -> Iterator[None]:
    """Translate service exceptions into HTTP responses."""
    try:
        yield
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"field": exc.field, "message": exc.message},
        ) from exc
    except (
        BookingNotFoundError,
        ResourceNotFoundError,
        SeriesNotFoundError,
        WaitlistEntryNotFoundError,
    ) as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except WaitlistTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except RepositoryUnavailable as exc:
        logger.error("Repository unavailable during %s | error=%s", action, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except HTTPException:
        raise
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected failure during %s", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}",
        ) from exc


def to_interval(start: datetime, end: datetime) -> TimeInterval:
    return TimeInterval(start=start, end=end)


def to_slot(start_time: time, end_time: time) -> TimeSlot:
    return TimeSlot(start_time=start_time, end_time=end_time)


def to_recurrence(payload: RecurrencePayload) -> RecurrenceDefinition:
    if payload.end.kind == "on_date":
        end = EndsOnDate(end_date=payload.end.end_date)
    elif payload.end.kind == "after_occurrences":
        end = EndsAfterOccurrences(count=int(payload.end.count))
    else:
        end = NeverEnds()
    return RecurrenceDefinition(
        recurrence_type=RecurrenceType(payload.type),
        interval=payload.interval,
        end=end,
        weekdays=frozenset(payload.weekdays),
        month_day=payload.month_day,
        exception_dates=frozenset(payload.exception_dates),
    )


def to_booking_request(payload: CreateBookingPayload) -> BookingRequest:
    return BookingRequest(
        resource_id=payload.resource_id,
        title=payload.title,
        owner_id=payload.owner_id,
        interval=to_interval(payload.start, payload.end),
        priority=Priority[payload.priority.upper()],
        min_capacity=payload.min_capacity,
    )


def booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.booking_id,
        resource_id=booking.resource_id,
        title=booking.title,
        start=booking.interval.start,
        end=booking.interval.end,
        owner_id=booking.owner_id,
        priority=booking.priority.name.lower(),
        recurring_group_id=booking.recurring_group_id,
        status=booking.status.value,
    )


def suggestion_response(suggestion: ConflictSuggestion) -> SuggestionResponse:
    return SuggestionResponse(
        kind=suggestion.kind.value,
        resource_id=suggestion.resource_id,
        resource_name=suggestion.resource_name,
        start=suggestion.interval.start,
        end=suggestion.interval.end,
    )


def outcome_response(outcome: BookingOutcome) -> BookingOutcomeResponse:
    return BookingOutcomeResponse(
        state=outcome.state.value,
        conflict_id=outcome.conflict_id,
        can_override=outcome.can_override,
        bookings=[booking_response(item) for item in outcome.bookings],
        conflicts=[
            InstanceConflictResponse(
                date=conflict.date,
                start=conflict.interval.start,
                end=conflict.interval.end,
                blockers=[booking_response(item) for item in conflict.blockers],
                can_override=conflict.resolution.can_override,
                time_suggestions=[
                    suggestion_response(item) for item in conflict.resolution.time_suggestions
                ],
                resource_suggestions=[
                    suggestion_response(item)
                    for item in conflict.resolution.resource_suggestions
                ],
            )
            for conflict in outcome.conflicts
        ],
        displaced=[booking_response(item) for item in outcome.displaced],
    )


def record_response(record: ResolutionRecord) -> ResolutionRecordResponse:
    return ResolutionRecordResponse(
        conflict_id=record.conflict_id,
        outcome=record.outcome.value,
        resolved_by=record.resolved_by,
        timestamp=record.timestamp,
        notes=record.notes,
    )


def waitlist_response(entry: WaitlistEntry) -> WaitlistEntryResponse:
    request = entry.booking_request
    return WaitlistEntryResponse(
        entry_id=entry.entry_id,
        resource_id=request.resource_id,
        title=request.title,
        owner_id=request.owner_id,
        start=request.interval.start,
        end=request.interval.end,
        priority=request.priority.name.lower(),
        requested_at=entry.requested_at,
        status=entry.status.value,
    )


def page_response(page: BookingPage) -> BookingPageResponse:
    return BookingPageResponse(
        bookings=[booking_response(item) for item in page.bookings],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )


def _committed_or_conflict(outcome: BookingOutcome) -> BookingOutcomeResponse:
    response = outcome_response(outcome)
    if not outcome.committed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=response.model_dump(mode="json"),
        )
    return response


@router.post(
    "/bookings",
    response_model=BookingOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    payload: CreateBookingPayload,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> BookingOutcomeResponse:
    """Book one interval; 409 carries every blocker plus ranked alternatives."""
    with service_errors("create booking"):
        outcome = orchestrator.create_booking(
            to_booking_request(payload),
            override=payload.override,
            conflict_id=payload.conflict_id,
        )
    return _committed_or_conflict(outcome)


@router.get(
    "/bookings",
    response_model=BookingPageResponse,
    status_code=status.HTTP_200_OK,
)
async def list_bookings(
    resource_id: Optional[int] = Query(default=None, gt=0),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    booking_status: Optional[Literal["confirmed", "cancelled"]] = Query(
        default=None,
        alias="status",
    ),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    repository: DataRepository = Depends(get_repository),
) -> BookingPageResponse:
    """Page through bookings starting at or after ``start`` and ending by ``end``."""
    with service_errors("list bookings"):
        page = repository.list_bookings(
            resource_id=resource_id,
            starts_from=start,
            ends_by=end,
            status=BookingStatus(booking_status) if booking_status else None,
            limit=limit,
            offset=offset,
        )
    return page_response(page)


@router.post(
    "/bookings/recurring",
    response_model=BookingOutcomeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_recurring_booking(
    payload: CreateRecurringBookingPayload,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> BookingOutcomeResponse:
    with service_errors("create recurring booking"):
        request = RecurringBookingRequest(
            resource_id=payload.resource_id,
            title=payload.title,
            owner_id=payload.owner_id,
            series_start_date=payload.series_start_date,
            slot=to_slot(payload.start_time, payload.end_time),
            recurrence=to_recurrence(payload.recurrence),
            priority=Priority[payload.priority.upper()],
            min_capacity=payload.min_capacity,
        )
        outcome = orchestrator.create_recurring_booking(
            request,
            override=payload.override,
            conflict_id=payload.conflict_id,
        )
    return _committed_or_conflict(outcome)


@router.get(
    "/series/{group_id}",
    response_model=SeriesResponse,
    status_code=status.HTTP_200_OK,
)
async def get_series(
    group_id: str,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> SeriesResponse:
    with service_errors("get series"):
        bookings = orchestrator.get_series(group_id)
    return SeriesResponse(
        recurring_group_id=group_id,
        bookings=[booking_response(item) for item in bookings],
    )


@router.post(
    "/series/{group_id}/cancel",
    response_model=SeriesResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_series(
    group_id: str,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> SeriesResponse:
    """Cancel every confirmed booking of the series; the body lists those cancelled."""
    with service_errors("cancel series"):
        cancelled = orchestrator.cancel_series(group_id)
    return SeriesResponse(
        recurring_group_id=group_id,
        bookings=[booking_response(item) for item in cancelled],
    )


@router.post(
    "/recurrence/preview",
    response_model=PreviewSeriesResponse,
    status_code=status.HTTP_200_OK,
)
async def preview_series(
    payload: PreviewSeriesPayload,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> PreviewSeriesResponse:
    """Expand a pattern into dates without booking anything."""
    with service_errors("preview recurrence"):
        instances = orchestrator.preview_series(
            to_recurrence(payload.recurrence),
            payload.series_start_date,
            to_slot(payload.start_time, payload.end_time),
        )
    return PreviewSeriesResponse(
        occurrences=[
            OccurrenceResponse(
                date=instance.date,
                start=instance.to_interval().start,
                end=instance.to_interval().end,
            )
            for instance in instances
        ]
    )


@router.post(
    "/bookings/{booking_id}/cancel",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def cancel_booking(
    booking_id: str,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> BookingResponse:
    with service_errors("cancel booking"):
        booking = orchestrator.cancel_booking(booking_id)
    return booking_response(booking)


@router.post(
    "/bookings/{booking_id}/reschedule",
    response_model=BookingOutcomeResponse,
    status_code=status.HTTP_200_OK,
)
async def reschedule_booking(
    booking_id: str,
    payload: ReschedulePayload,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> BookingOutcomeResponse:
    with service_errors("reschedule booking"):
        outcome = orchestrator.reschedule_booking(
            booking_id,
            to_interval(payload.start, payload.end),
            new_resource_id=payload.resource_id,
        )
    return _committed_or_conflict(outcome)


@router.post(
    "/conflicts/resolve",
    response_model=AppliedResolutionResponse,
    status_code=status.HTTP_200_OK,
)
async def resolve_conflict(
    payload: ResolveConflictPayload,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> AppliedResolutionResponse:
    """Apply the caller's chosen resolution; override is never automatic."""
    with service_errors("resolve conflict"):
        new_interval = None
        if payload.new_start is not None or payload.new_end is not None:
            if payload.new_start is None or payload.new_end is None:
                raise ValidationError("new_interval", "new_start and new_end are both required")
            new_interval = to_interval(payload.new_start, payload.new_end)
        applied = orchestrator.apply_resolution(
            conflict_id=payload.conflict_id,
            request=to_booking_request(payload.booking),
            outcome=ResolutionOutcome(payload.outcome),
            resolved_by=payload.resolved_by,
            notes=payload.notes,
            new_interval=new_interval,
            new_resource_id=payload.new_resource_id,
        )

    response = AppliedResolutionResponse(
        outcome=applied.outcome.value,
        record=record_response(applied.record) if applied.record else None,
        booking_outcome=(
            outcome_response(applied.booking_outcome) if applied.booking_outcome else None
        ),
        waitlist_entry=waitlist_response(applied.waitlist_entry) if applied.waitlist_entry else None,
    )
    if applied.booking_outcome is not None and not applied.booking_outcome.committed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/waitlist",
    response_model=list[WaitlistEntryResponse],
    status_code=status.HTTP_200_OK,
)
async def list_waitlist(
    entry_status: Optional[Literal["pending", "approved", "rejected"]] = Query(
        default=None,
        alias="status",
    ),
    resolver: ConflictResolver = Depends(get_conflict_resolver),
) -> list[WaitlistEntryResponse]:
    with service_errors("list waitlist"):
        entries = resolver.list_waitlist(
            WaitlistStatus(entry_status) if entry_status else None
        )
    return [waitlist_response(entry) for entry in entries]


@router.post(
    "/waitlist/{entry_id}/approve",
    response_model=AppliedResolutionResponse,
    status_code=status.HTTP_200_OK,
)
async def approve_waitlist_entry(
    entry_id: str,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
) -> AppliedResolutionResponse:
    """Re-run the conflict check for a waitlisted request and admit it if free."""
    with service_errors("approve waitlist entry"):
        applied = orchestrator.approve_waitlist_entry(entry_id)
    response = AppliedResolutionResponse(
        outcome=applied.outcome.value,
        booking_outcome=outcome_response(applied.booking_outcome),
        waitlist_entry=waitlist_response(applied.waitlist_entry),
    )
    if not applied.booking_outcome.committed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=response.model_dump(mode="json"),
        )
    return response


@router.post(
    "/waitlist/{entry_id}/reject",
    response_model=WaitlistEntryResponse,
    status_code=status.HTTP_200_OK,
)
async def reject_waitlist_entry(
    entry_id: str,
    resolver: ConflictResolver = Depends(get_conflict_resolver),
) -> WaitlistEntryResponse:
    with service_errors("reject waitlist entry"):
        entry = resolver.reject_waitlist_entry(entry_id)
    return waitlist_response(entry)
