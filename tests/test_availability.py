"""Tests for daily availability classification and slot-grid blocks.

Business hours default to 08:00-18:00, a 600 minute day.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time

import pytest

from booking_engine.domain.models import (
    AvailabilityStatus,
    Booking,
    TimeInterval,
    TimeSlot,
    ValidationError,
)
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.availability_service import (
    BOOKED_RATIO_THRESHOLD,
    AvailabilityAggregator,
    classify_ratio,
)
from booking_engine.utils.config import get_settings


DAY = date(2024, 5, 6)


def _build_aggregator(tmp_path) -> tuple[AvailabilityAggregator, DataRepository]:
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "availability.db",
        business_hours_start="08:00",
        business_hours_end="18:00",
        suggestion_step_minutes=30,
        seed_demo_resources=False,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_resource("Room A", 8)
    return AvailabilityAggregator(repository=repository, settings=settings), repository


def _book(repository: DataRepository, booking_id: str, start: datetime, end: datetime) -> Booking:
    booking = Booking(
        booking_id=booking_id,
        resource_id=1,
        title="Workshop",
        interval=TimeInterval(start=start, end=end),
        owner_id="alice",
    )
    repository.commit_bookings([booking])
    return booking


def test_threshold_constant() -> None:
    assert BOOKED_RATIO_THRESHOLD == 0.8
    assert classify_ratio(0.0) is AvailabilityStatus.AVAILABLE
    assert classify_ratio(0.5) is AvailabilityStatus.PARTIAL
    assert classify_ratio(1.0) is AvailabilityStatus.BOOKED


def test_empty_day_is_available(tmp_path) -> None:
    aggregator, _ = _build_aggregator(tmp_path)
    assert aggregator.classify(1, DAY) is AvailabilityStatus.AVAILABLE


def test_480_of_600_minutes_is_booked(tmp_path) -> None:
    aggregator, repository = _build_aggregator(tmp_path)
    _book(repository, "long", datetime(2024, 5, 6, 8), datetime(2024, 5, 6, 16))

    assert aggregator.covered_ratio(1, DAY) == pytest.approx(0.8)
    assert aggregator.classify(1, DAY) is AvailabilityStatus.BOOKED


def test_479_of_600_minutes_is_partial(tmp_path) -> None:
    aggregator, repository = _build_aggregator(tmp_path)
    _book(repository, "short", datetime(2024, 5, 6, 8), datetime(2024, 5, 6, 15, 59))

    assert aggregator.classify(1, DAY) is AvailabilityStatus.PARTIAL


def test_bookings_outside_business_hours_are_clamped(tmp_path) -> None:
    aggregator, repository = _build_aggregator(tmp_path)
    _book(repository, "early", datetime(2024, 5, 6, 6), datetime(2024, 5, 6, 9))
    _book(repository, "other-day", datetime(2024, 5, 7, 8), datetime(2024, 5, 7, 18))

    assert aggregator.covered_ratio(1, DAY) == pytest.approx(60 / 600)


def test_custom_business_window(tmp_path) -> None:
    aggregator, repository = _build_aggregator(tmp_path)
    _book(repository, "morning", datetime(2024, 5, 6, 9), datetime(2024, 5, 6, 12))

    window = TimeSlot(start_time=time(9), end_time=time(12))
    assert aggregator.classify(1, DAY, window) is AvailabilityStatus.BOOKED


def test_availability_blocks_mark_blocking_booking(tmp_path) -> None:
    aggregator, repository = _build_aggregator(tmp_path)
    blocker = _book(repository, "lunch", datetime(2024, 5, 6, 12), datetime(2024, 5, 6, 13))

    blocks = aggregator.availability_blocks(1, DAY, 60)

    # 08:00 through 17:00 in 30 minute steps.
    assert len(blocks) == 19
    assert blocks[0].interval.start == datetime(2024, 5, 6, 8)
    assert blocks[-1].interval.end == datetime(2024, 5, 6, 18)
    taken = [block for block in blocks if not block.available]
    assert [block.interval.start.time() for block in taken] == [
        time(11, 30),
        time(12, 0),
        time(12, 30),
    ]
    assert all(block.blocking_booking == blocker for block in taken)


def test_availability_blocks_reject_oversized_duration(tmp_path) -> None:
    aggregator, _ = _build_aggregator(tmp_path)
    with pytest.raises(ValidationError) as exc_info:
        aggregator.availability_blocks(1, DAY, 601)
    assert exc_info.value.field == "duration_minutes"
