"""Booking orchestration: expand, check every instance, then commit atomically."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Optional, Sequence
from uuid import uuid4

from booking_engine.domain.constraints import (
    validate_booking_request,
    validate_recurrence,
    validate_recurring_request,
)
from booking_engine.domain.models import (
    Booking,
    BookingOutcome,
    BookingRequest,
    BookingStatus,
    InstanceConflict,
    RecurrenceDefinition,
    RecurrenceInstance,
    RecurringBookingRequest,
    RequestState,
    ResolutionOutcome,
    ResolutionRecord,
    TimeInterval,
    TimeSlot,
    ValidationError,
    WaitlistEntry,
    WaitlistStatus,
)
from booking_engine.repository.base import BookingRepository, ConstraintViolation
from booking_engine.services.conflict_service import ConflictDetector
from booking_engine.services.recurrence_service import expand
from booking_engine.services.resolution_service import ConflictResolver
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


class BookingError(Exception):
    """Base exception for booking workflow failures."""


class BookingNotFoundError(BookingError):
    """Raised when a booking id does not exist or is no longer confirmed."""


class ResourceNotFoundError(BookingError):
    """Raised when a resource id does not exist in persisted state."""


class SeriesNotFoundError(BookingError):
    """Raised when no booking carries the requested recurring group id."""


@dataclass(frozen=True)
class AppliedResolution:
    """What happened when a caller acted on a reported conflict."""

    outcome: ResolutionOutcome
    record: Optional[ResolutionRecord] = None
    booking_outcome: Optional[BookingOutcome] = None
    waitlist_entry: Optional[WaitlistEntry] = None


@dataclass(frozen=True)
class _Candidate:
    date: date
    booking: Booking


class BookingOrchestrator:
    """Coordinates validation -> expansion -> conflict check -> commit."""

    def __init__(
        self,
        repository: BookingRepository,
        resolver: ConflictResolver,
        settings: Optional[Settings] = None,
        detector: Optional[ConflictDetector] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._resolver = resolver
        self._detector = detector or ConflictDetector(repository)

    def create_booking(
        self,
        request: BookingRequest,
        override: bool = False,
        conflict_id: Optional[str] = None,
    ) -> BookingOutcome:
        outcome = self._book(request, override=override, conflict_id=conflict_id)
        self._record_override(outcome, request.owner_id)
        return outcome

    def _book(
        self,
        request: BookingRequest,
        override: bool,
        conflict_id: Optional[str],
    ) -> BookingOutcome:
        self._log_state(RequestState.VALIDATING, request.resource_id)
        validate_booking_request(request)
        self._require_resource(request.resource_id)

        self._log_state(RequestState.EXPANDING, request.resource_id)
        candidate = _Candidate(
            date=request.interval.start.date(),
            booking=Booking(
                booking_id=uuid4().hex,
                resource_id=request.resource_id,
                title=request.title.strip(),
                interval=request.interval,
                owner_id=request.owner_id,
                priority=request.priority,
            ),
        )
        return self._check_and_commit(
            [candidate],
            min_capacity=request.min_capacity,
            override=override,
            conflict_id=conflict_id,
        )

    def create_recurring_booking(
        self,
        request: RecurringBookingRequest,
        override: bool = False,
        conflict_id: Optional[str] = None,
    ) -> BookingOutcome:
        """Commit every instance of a series, or none of them.

        All instances are checked before anything is written, and every
        conflicting instance is reported together so the caller can make a
        single decision (for example a batch override).
        """
        self._log_state(RequestState.VALIDATING, request.resource_id)
        validate_recurring_request(request)

        # Expansion is pure, so a malformed or empty series fails before storage is read.
        self._log_state(RequestState.EXPANDING, request.resource_id)
        instances = expand(
            request.recurrence,
            request.series_start_date,
            request.slot,
            hard_cap=self._settings.recurrence_hard_cap,
        )
        if not instances:
            raise ValidationError("recurrence", "produces no instances")
        self._require_resource(request.resource_id)

        group_id = uuid4().hex
        candidates = [
            _Candidate(
                date=instance.date,
                booking=Booking(
                    booking_id=uuid4().hex,
                    resource_id=request.resource_id,
                    title=request.title.strip(),
                    interval=instance.to_interval(),
                    owner_id=request.owner_id,
                    priority=request.priority,
                    recurring_group_id=group_id,
                ),
            )
            for instance in instances
        ]
        outcome = self._check_and_commit(
            candidates,
            min_capacity=request.min_capacity,
            override=override,
            conflict_id=conflict_id,
        )
        self._record_override(outcome, request.owner_id)
        return outcome

    def preview_series(
        self,
        definition: RecurrenceDefinition,
        series_start_date: date,
        slot: TimeSlot,
    ) -> list[RecurrenceInstance]:
        """Expand a series without touching the repository."""
        validate_recurrence(definition)
        return expand(
            definition,
            series_start_date,
            slot,
            hard_cap=self._settings.recurrence_hard_cap,
        )

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self._require_confirmed_booking(booking_id)
        self._repository.cancel_bookings([booking_id])
        logger.info(
            "Booking cancelled | booking_id=%s | resource_id=%s",
            booking_id,
            booking.resource_id,
        )
        return replace(booking, status=BookingStatus.CANCELLED)

    def get_series(self, recurring_group_id: str) -> list[Booking]:
        """Every booking created for one recurring series, in start order."""
        bookings = self._repository.list_bookings_for_group(recurring_group_id)
        if not bookings:
            raise SeriesNotFoundError(f"Recurring series {recurring_group_id} not found")
        return bookings

    def cancel_series(self, recurring_group_id: str) -> list[Booking]:
        """Cancel all still-confirmed members of a series in one repository call.

        Members already cancelled or completed are left alone; the returned
        list holds only the bookings this call cancelled.
        """
        confirmed = [
            booking
            for booking in self.get_series(recurring_group_id)
            if booking.status is BookingStatus.CONFIRMED
        ]
        self._repository.cancel_bookings([booking.booking_id for booking in confirmed])
        logger.info(
            "Series cancelled | recurring_group_id=%s | cancelled=%s",
            recurring_group_id,
            len(confirmed),
        )
        return [replace(booking, status=BookingStatus.CANCELLED) for booking in confirmed]

    def reschedule_booking(
        self,
        booking_id: str,
        new_interval: TimeInterval,
        new_resource_id: Optional[int] = None,
    ) -> BookingOutcome:
        """Move a booking by cancelling it and committing a fresh one atomically."""
        existing = self._require_confirmed_booking(booking_id)
        resource_id = new_resource_id or existing.resource_id
        self._require_resource(resource_id)
        candidate = _Candidate(
            date=new_interval.start.date(),
            booking=replace(
                existing,
                booking_id=uuid4().hex,
                resource_id=resource_id,
                interval=new_interval,
            ),
        )
        return self._check_and_commit(
            [candidate],
            min_capacity=1,
            override=False,
            exclude_booking_id=booking_id,
            cancel_booking_ids=(booking_id,),
        )

    def apply_resolution(
        self,
        conflict_id: str,
        request: BookingRequest,
        outcome: ResolutionOutcome,
        resolved_by: str,
        notes: str = "",
        new_interval: Optional[TimeInterval] = None,
        new_resource_id: Optional[int] = None,
    ) -> AppliedResolution:
        """Carry out the resolution a caller picked for a reported conflict.

        A resolution record is written only when the chosen path actually
        succeeds; a failed retry comes back with fresh conflicts instead.
        """
        validate_booking_request(request)

        if outcome is ResolutionOutcome.OVERRIDE:
            booking_outcome = self._book(request, override=True, conflict_id=conflict_id)
            record = None
            if booking_outcome.committed:
                record = self._resolver.record(conflict_id, outcome, resolved_by, notes)
            return AppliedResolution(outcome=outcome, record=record, booking_outcome=booking_outcome)

        if outcome is ResolutionOutcome.WAITLISTED:
            self._require_resource(request.resource_id)
            entry = self._resolver.enqueue(request)
            record = self._resolver.record(conflict_id, outcome, resolved_by, notes)
            return AppliedResolution(outcome=outcome, record=record, waitlist_entry=entry)

        if outcome is ResolutionOutcome.RESCHEDULED:
            if new_interval is None:
                raise ValidationError("new_interval", "is required to reschedule")
            retried = replace(request, interval=new_interval)
        elif outcome is ResolutionOutcome.RESOURCE_CHANGED:
            if new_resource_id is None:
                raise ValidationError("new_resource_id", "is required to change resource")
            retried = replace(request, resource_id=new_resource_id)
        else:
            record = self._resolver.record(conflict_id, outcome, resolved_by, notes)
            return AppliedResolution(outcome=outcome, record=record)

        booking_outcome = self.create_booking(retried, conflict_id=conflict_id)
        record = None
        if booking_outcome.committed:
            record = self._resolver.record(conflict_id, outcome, resolved_by, notes)
        return AppliedResolution(outcome=outcome, record=record, booking_outcome=booking_outcome)

    def approve_waitlist_entry(self, entry_id: str) -> AppliedResolution:
        """Admit a pending waitlist request if its slot is free now."""
        entry = self._resolver.pending_entry(entry_id)
        booking_outcome = self.create_booking(entry.booking_request)
        if booking_outcome.committed:
            entry = self._resolver.transition(entry_id, WaitlistStatus.APPROVED)
        return AppliedResolution(
            outcome=ResolutionOutcome.WAITLISTED,
            booking_outcome=booking_outcome,
            waitlist_entry=entry,
        )

    def _check_and_commit(
        self,
        candidates: Sequence[_Candidate],
        *,
        min_capacity: int,
        override: bool,
        conflict_id: Optional[str] = None,
        exclude_booking_id: Optional[str] = None,
        cancel_booking_ids: Sequence[str] = (),
    ) -> BookingOutcome:
        resource_id = candidates[0].booking.resource_id
        self._log_state(RequestState.CHECKING_CONFLICTS, resource_id)
        conflicts = self._collect_conflicts(candidates, min_capacity, exclude_booking_id)
        bookings = [candidate.booking for candidate in candidates]

        displaced: list[Booking] = []
        if conflicts:
            if not (override and all(c.resolution.can_override for c in conflicts)):
                return self._reject(conflicts, conflict_id)
            displaced = _unique_blockers(conflicts)
            logger.info(
                "Override granted | resource_id=%s | displaced=%s",
                resource_id,
                [booking.booking_id for booking in displaced],
            )

        self._log_state(RequestState.COMMITTING, resource_id)
        try:
            self._repository.commit_bookings(
                bookings,
                cancel_booking_ids=[
                    *cancel_booking_ids,
                    *(booking.booking_id for booking in displaced),
                ],
            )
        except ConstraintViolation as exc:
            logger.warning(
                "Late conflict at commit; re-checking | resource_id=%s | booking_id=%s",
                resource_id,
                exc.booking.booking_id,
            )
            fresh = self._collect_conflicts(candidates, min_capacity, exclude_booking_id)
            if not fresh:
                fresh = [self._conflict_from_violation(exc, candidates, min_capacity)]
            return self._reject(fresh, conflict_id)

        self._log_state(RequestState.COMMITTED, resource_id)
        return BookingOutcome(
            state=RequestState.COMMITTED,
            conflict_id=conflict_id or (uuid4().hex if displaced else None),
            bookings=bookings,
            displaced=displaced,
        )

    def _collect_conflicts(
        self,
        candidates: Sequence[_Candidate],
        min_capacity: int,
        exclude_booking_id: Optional[str],
    ) -> list[InstanceConflict]:
        conflicts: list[InstanceConflict] = []
        for candidate in candidates:
            blockers = self._detector.find_conflicts(
                candidate.booking.resource_id,
                candidate.booking.interval,
                exclude_booking_id,
            )
            if not blockers:
                continue
            conflicts.append(
                InstanceConflict(
                    date=candidate.date,
                    interval=candidate.booking.interval,
                    blockers=blockers,
                    resolution=self._resolver.resolve(
                        candidate.booking,
                        blockers,
                        min_capacity=min_capacity,
                    ),
                )
            )
        return conflicts

    def _conflict_from_violation(
        self,
        exc: ConstraintViolation,
        candidates: Sequence[_Candidate],
        min_capacity: int,
    ) -> InstanceConflict:
        # The store saw a clash the re-check no longer sees; report what it saw.
        candidate = next(
            (c for c in candidates if c.booking.booking_id == exc.booking.booking_id),
            candidates[0],
        )
        return InstanceConflict(
            date=candidate.date,
            interval=candidate.booking.interval,
            blockers=exc.conflicts,
            resolution=self._resolver.resolve(
                candidate.booking,
                exc.conflicts,
                min_capacity=min_capacity,
            ),
        )

    def _reject(
        self,
        conflicts: list[InstanceConflict],
        conflict_id: Optional[str],
    ) -> BookingOutcome:
        resolved_id = conflict_id or uuid4().hex
        self._log_state(RequestState.CONFLICTS_FOUND, conflicts[0].blockers[0].resource_id)
        logger.info(
            "Booking rejected | conflict_id=%s | conflicting_instances=%s | dates=%s",
            resolved_id,
            len(conflicts),
            [conflict.date.isoformat() for conflict in conflicts],
        )
        return BookingOutcome(
            state=RequestState.REJECTED,
            conflict_id=resolved_id,
            conflicts=conflicts,
        )

    def _record_override(self, outcome: BookingOutcome, resolved_by: str) -> None:
        if not (outcome.committed and outcome.displaced and outcome.conflict_id):
            return
        self._resolver.record(
            outcome.conflict_id,
            ResolutionOutcome.OVERRIDE,
            resolved_by,
            notes=f"displaced {len(outcome.displaced)} booking(s)",
        )

    def _require_resource(self, resource_id: int) -> None:
        if self._repository.get_resource(resource_id) is None:
            raise ResourceNotFoundError(f"Resource {resource_id} not found")

    def _require_confirmed_booking(self, booking_id: str) -> Booking:
        booking = self._repository.get_booking(booking_id)
        if booking is None or booking.status is not BookingStatus.CONFIRMED:
            raise BookingNotFoundError(f"Confirmed booking {booking_id} not found")
        return booking

    @staticmethod
    def _log_state(state: RequestState, resource_id: int) -> None:
        logger.debug("Booking request state | resource_id=%s | state=%s", resource_id, state.value)


def _unique_blockers(conflicts: Sequence[InstanceConflict]) -> list[Booking]:
    seen: dict[str, Booking] = {}
    for conflict in conflicts:
        for blocker in conflict.blockers:
            seen.setdefault(blocker.booking_id, blocker)
    return sorted(seen.values(), key=lambda booking: (booking.interval.start, booking.booking_id))
