"""Daily availability classification and slot-grid views for a resource."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from booking_engine.domain.constraints import business_window_from_settings, validate_duration
from booking_engine.domain.intervals import covered_minutes
from booking_engine.domain.models import (
    AvailabilityBlock,
    AvailabilityStatus,
    TimeInterval,
    TimeSlot,
    ValidationError,
)
from booking_engine.repository.base import BookingRepository
from booking_engine.services.conflict_service import ConflictDetector, conflicts_among
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

# Days at or above this share of business hours count as fully booked.
BOOKED_RATIO_THRESHOLD = 0.8


def classify_ratio(ratio: float) -> AvailabilityStatus:
    if ratio <= 0.0:
        return AvailabilityStatus.AVAILABLE
    if ratio < BOOKED_RATIO_THRESHOLD:
        return AvailabilityStatus.PARTIAL
    return AvailabilityStatus.BOOKED


class AvailabilityAggregator:
    """Summarizes how much of a resource's business day is already booked."""

    def __init__(
        self,
        repository: BookingRepository,
        settings: Optional[Settings] = None,
        detector: Optional[ConflictDetector] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._detector = detector or ConflictDetector(repository)

    @property
    def default_business_window(self) -> TimeSlot:
        return business_window_from_settings(
            self._settings.business_hours_start,
            self._settings.business_hours_end,
        )

    def covered_ratio(
        self,
        resource_id: int,
        day: date,
        business_window: Optional[TimeSlot] = None,
    ) -> float:
        window = (business_window or self.default_business_window).on(day)
        window_minutes = window.duration_minutes
        if window_minutes <= 0:
            raise ValidationError("business_window", "must span at least one minute")
        bookings = self._detector.find_conflicts(resource_id, window)
        total_covered = sum(
            covered_minutes(booking.interval, window.start, window.end)
            for booking in bookings
        )
        return total_covered / window_minutes

    def classify(
        self,
        resource_id: int,
        day: date,
        business_window: Optional[TimeSlot] = None,
    ) -> AvailabilityStatus:
        ratio = self.covered_ratio(resource_id, day, business_window)
        status = classify_ratio(ratio)
        logger.debug(
            "Availability classified | resource_id=%s | date=%s | ratio=%.4f | status=%s",
            resource_id,
            day.isoformat(),
            ratio,
            status.value,
        )
        return status

    def availability_blocks(
        self,
        resource_id: int,
        day: date,
        duration_minutes: int,
        business_window: Optional[TimeSlot] = None,
    ) -> list[AvailabilityBlock]:
        """Lay a stepped grid of ``duration_minutes`` windows over business hours.

        Each block is marked free or carries the earliest booking blocking it.
        Windows running past the close of business are not offered.
        """
        window_slot = business_window or self.default_business_window
        validate_duration(duration_minutes, window_slot)
        window = window_slot.on(day)
        bookings = self._detector.find_conflicts(resource_id, window)

        step = timedelta(minutes=self._settings.suggestion_step_minutes)
        duration = timedelta(minutes=duration_minutes)
        blocks: list[AvailabilityBlock] = []
        block_start = window.start
        while block_start + duration <= window.end:
            block = TimeInterval(start=block_start, end=block_start + duration)
            blockers = conflicts_among(bookings, block)
            blocks.append(
                AvailabilityBlock(
                    interval=block,
                    available=not blockers,
                    blocking_booking=blockers[0] if blockers else None,
                )
            )
            block_start += step
        return blocks
