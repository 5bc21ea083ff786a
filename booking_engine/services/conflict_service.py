"""Overlap detection between candidate intervals and confirmed bookings."""

from __future__ import annotations

from typing import Iterable, Optional

from booking_engine.domain.intervals import overlaps
from booking_engine.domain.models import Booking, BookingStatus, TimeInterval
from booking_engine.repository.base import BookingRepository
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


def conflicts_among(
    bookings: Iterable[Booking],
    interval: TimeInterval,
    exclude_booking_id: Optional[str] = None,
) -> list[Booking]:
    """Filter already-fetched bookings down to confirmed ones overlapping ``interval``."""
    matches = [
        booking
        for booking in bookings
        if booking.status is BookingStatus.CONFIRMED
        and booking.booking_id != exclude_booking_id
        and overlaps(booking.interval, interval)
    ]
    return sorted(matches, key=lambda booking: (booking.interval.start, booking.booking_id))


class ConflictDetector:
    """Finds confirmed bookings that block a candidate interval on one resource."""

    def __init__(self, repository: BookingRepository) -> None:
        self._repository = repository

    def find_conflicts(
        self,
        resource_id: int,
        interval: TimeInterval,
        exclude_booking_id: Optional[str] = None,
    ) -> list[Booking]:
        """Return blocking bookings sorted by start; an empty list means free."""
        candidates = self._repository.list_confirmed_bookings(resource_id, interval)
        conflicts = conflicts_among(candidates, interval, exclude_booking_id)
        if conflicts:
            logger.debug(
                "Conflicts detected | resource_id=%s | start=%s | end=%s | count=%s",
                resource_id,
                interval.start.isoformat(),
                interval.end.isoformat(),
                len(conflicts),
            )
        return conflicts
