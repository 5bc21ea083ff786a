"""Conflict-resolution policy: override eligibility, suggestions, waitlist."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional, Sequence
from uuid import uuid4

from booking_engine.domain.constraints import business_window_from_settings
from booking_engine.domain.models import (
    Booking,
    BookingRequest,
    ConflictSuggestion,
    ResolutionOutcome,
    ResolutionRecord,
    ResolutionResult,
    SuggestionKind,
    TimeInterval,
    WaitlistEntry,
    WaitlistStatus,
)
from booking_engine.repository.base import AuditSink, BookingRepository, WaitlistStore
from booking_engine.services.conflict_service import ConflictDetector, conflicts_among
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


class ResolutionError(Exception):
    """Base exception for conflict-resolution workflow failures."""


class WaitlistEntryNotFoundError(ResolutionError):
    """Raised when a waitlist entry id does not exist."""


class WaitlistTransitionError(ResolutionError):
    """Raised when a waitlist entry is no longer pending."""


def can_override(candidate: Booking, blockers: Sequence[Booking]) -> bool:
    """Only a strictly higher priority displaces; ties never override."""
    if not blockers:
        return False
    return candidate.priority > max(blocker.priority for blocker in blockers)


class ConflictResolver:
    """Turns a blocked candidate into an override decision and ranked alternatives."""

    def __init__(
        self,
        repository: BookingRepository,
        audit_sink: AuditSink,
        waitlist_store: WaitlistStore,
        settings: Optional[Settings] = None,
        detector: Optional[ConflictDetector] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._audit_sink = audit_sink
        self._waitlist_store = waitlist_store
        self._detector = detector or ConflictDetector(repository)

    def resolve(
        self,
        candidate: Booking,
        blockers: Sequence[Booking],
        min_capacity: int = 1,
        limit: Optional[int] = None,
    ) -> ResolutionResult:
        max_results = self._settings.suggestion_limit if limit is None else limit
        result = ResolutionResult(
            can_override=can_override(candidate, blockers),
            time_suggestions=self.suggest_times(candidate, max_results),
            resource_suggestions=self.suggest_resources(candidate, min_capacity, max_results),
        )
        logger.info(
            (
                "Conflict resolved into options | resource_id=%s | start=%s | blockers=%s | "
                "can_override=%s | time_suggestions=%s | resource_suggestions=%s"
            ),
            candidate.resource_id,
            candidate.interval.start.isoformat(),
            len(blockers),
            result.can_override,
            len(result.time_suggestions),
            len(result.resource_suggestions),
        )
        return result

    def suggest_times(self, candidate: Booking, limit: int) -> list[ConflictSuggestion]:
        """Earliest conflict-free windows of the candidate's length on its date."""
        if limit <= 0:
            return []
        business_window = business_window_from_settings(
            self._settings.business_hours_start,
            self._settings.business_hours_end,
        )
        window = business_window.on(candidate.interval.start.date())
        duration = candidate.interval.end - candidate.interval.start
        if duration > window.end - window.start:
            return []

        resource = self._repository.get_resource(candidate.resource_id)
        resource_name = resource.name if resource else f"Resource {candidate.resource_id}"
        day_bookings = self._detector.find_conflicts(candidate.resource_id, window)

        step = timedelta(minutes=self._settings.suggestion_step_minutes)
        suggestions: list[ConflictSuggestion] = []
        slot_start = window.start
        while slot_start + duration <= window.end and len(suggestions) < limit:
            slot = TimeInterval(start=slot_start, end=slot_start + duration)
            if not conflicts_among(day_bookings, slot, candidate.booking_id):
                suggestions.append(
                    ConflictSuggestion(
                        kind=SuggestionKind.TIME,
                        resource_id=candidate.resource_id,
                        resource_name=resource_name,
                        interval=slot,
                    )
                )
            slot_start += step
        return suggestions

    def suggest_resources(
        self,
        candidate: Booking,
        min_capacity: int,
        limit: int,
    ) -> list[ConflictSuggestion]:
        """Other resources free for the identical window, closest capacity first."""
        if limit <= 0:
            return []
        resources = sorted(
            self._repository.list_resources_by_min_capacity(min_capacity),
            key=lambda resource: (resource.capacity, resource.name),
        )
        suggestions: list[ConflictSuggestion] = []
        for resource in resources:
            if resource.resource_id == candidate.resource_id:
                continue
            if self._detector.find_conflicts(resource.resource_id, candidate.interval):
                continue
            suggestions.append(
                ConflictSuggestion(
                    kind=SuggestionKind.RESOURCE,
                    resource_id=resource.resource_id,
                    resource_name=resource.name,
                    interval=candidate.interval,
                )
            )
            if len(suggestions) >= limit:
                break
        return suggestions

    def enqueue(self, request: BookingRequest) -> WaitlistEntry:
        """Hold a blocked request as a pending waitlist entry.

        Promotion is triggered from outside and goes back through the normal
        conflict check; nothing here admits the request automatically.
        """
        entry = WaitlistEntry(
            entry_id=uuid4().hex,
            booking_request=request,
            requested_at=datetime.now(),
            status=WaitlistStatus.PENDING,
        )
        self._waitlist_store.save_waitlist_entry(entry)
        logger.info(
            "Waitlist entry created | entry_id=%s | resource_id=%s | owner_id=%s",
            entry.entry_id,
            request.resource_id,
            request.owner_id,
        )
        return entry

    def pending_entry(self, entry_id: str) -> WaitlistEntry:
        entry = self._waitlist_store.get_waitlist_entry(entry_id)
        if entry is None:
            raise WaitlistEntryNotFoundError(f"Waitlist entry {entry_id} not found")
        if entry.status is not WaitlistStatus.PENDING:
            raise WaitlistTransitionError(
                f"Waitlist entry {entry_id} is already {entry.status.value}"
            )
        return entry

    def transition(self, entry_id: str, status: WaitlistStatus) -> WaitlistEntry:
        entry = self.pending_entry(entry_id)
        self._waitlist_store.update_waitlist_status(entry_id, status)
        logger.info(
            "Waitlist entry transitioned | entry_id=%s | status=%s",
            entry_id,
            status.value,
        )
        return replace(entry, status=status)

    def reject_waitlist_entry(self, entry_id: str) -> WaitlistEntry:
        return self.transition(entry_id, WaitlistStatus.REJECTED)

    def list_waitlist(self, status: Optional[WaitlistStatus] = None) -> list[WaitlistEntry]:
        return self._waitlist_store.list_waitlist_entries(status)

    def record(
        self,
        conflict_id: str,
        outcome: ResolutionOutcome,
        resolved_by: str,
        notes: str = "",
    ) -> ResolutionRecord:
        record = ResolutionRecord(
            conflict_id=conflict_id,
            outcome=outcome,
            resolved_by=resolved_by,
            timestamp=datetime.now(),
            notes=notes,
        )
        self._audit_sink.append_resolution_record(record)
        logger.info(
            "Resolution recorded | conflict_id=%s | outcome=%s | resolved_by=%s",
            conflict_id,
            outcome.value,
            resolved_by,
        )
        return record
