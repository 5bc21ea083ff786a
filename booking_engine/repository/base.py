"""Collaborator interfaces the scheduling engine depends on.

Services only talk to these abstractions, so the SQLite implementation can be
swapped for any other store that honours the atomic commit contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from booking_engine.domain.models import (
    Booking,
    ResolutionRecord,
    Resource,
    TimeInterval,
    WaitlistEntry,
    WaitlistStatus,
)


class RepositoryError(Exception):
    """Base class for storage collaborator failures."""


class RepositoryUnavailable(RepositoryError):
    """Raised on I/O failure; no partial commit has taken place."""


class ConstraintViolation(RepositoryError):
    """Raised at commit time when a late overlapping booking is discovered."""

    def __init__(self, booking: Booking, conflicts: Sequence[Booking]) -> None:
        super().__init__(
            f"Booking {booking.booking_id} overlaps {len(conflicts)} confirmed booking(s) "
            f"on resource {booking.resource_id}"
        )
        self.booking = booking
        self.conflicts = list(conflicts)


class BookingRepository(ABC):
    @abstractmethod
    def list_confirmed_bookings(
        self,
        resource_id: int,
        interval_range: TimeInterval,
    ) -> list[Booking]:
        """Return confirmed bookings of the resource overlapping the range."""

    @abstractmethod
    def commit_bookings(
        self,
        bookings: Sequence[Booking],
        cancel_booking_ids: Sequence[str] = (),
    ) -> None:
        """Atomically cancel ``cancel_booking_ids`` and insert ``bookings``.

        Raises ConstraintViolation if any insert overlaps a confirmed booking
        at commit time; nothing is written in that case.
        """

    @abstractmethod
    def list_resources_by_min_capacity(self, capacity: int) -> list[Resource]:
        """Return resources whose capacity is at least ``capacity``."""

    @abstractmethod
    def get_resource(self, resource_id: int) -> Optional[Resource]:
        ...

    @abstractmethod
    def get_booking(self, booking_id: str) -> Optional[Booking]:
        ...

    @abstractmethod
    def list_bookings_for_group(self, recurring_group_id: str) -> list[Booking]:
        """Return every booking of a recurring series regardless of status."""

    @abstractmethod
    def cancel_bookings(self, booking_ids: Sequence[str]) -> int:
        """Mark bookings cancelled and return how many changed."""


class AuditSink(ABC):
    @abstractmethod
    def append_resolution_record(self, record: ResolutionRecord) -> None:
        ...


class WaitlistStore(ABC):
    @abstractmethod
    def save_waitlist_entry(self, entry: WaitlistEntry) -> None:
        ...

    @abstractmethod
    def get_waitlist_entry(self, entry_id: str) -> Optional[WaitlistEntry]:
        ...

    @abstractmethod
    def update_waitlist_status(self, entry_id: str, status: WaitlistStatus) -> None:
        ...

    @abstractmethod
    def list_waitlist_entries(
        self,
        status: Optional[WaitlistStatus] = None,
    ) -> list[WaitlistEntry]:
        ...
