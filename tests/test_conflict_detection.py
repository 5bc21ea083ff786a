from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import datetime

import pytest

from booking_engine.domain.models import Booking, BookingStatus, Priority, TimeInterval
from booking_engine.repository.base import ConstraintViolation, RepositoryUnavailable
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.conflict_service import ConflictDetector, conflicts_among
from booking_engine.utils.config import get_settings


def _build_repository(tmp_path) -> DataRepository:
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "conflicts.db",
        seed_demo_resources=False,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.create_resource("Room A", 8)
    repository.create_resource("Room B", 20)
    return repository


def _booking(booking_id: str, start_hour: int, end_hour: int, resource_id: int = 1) -> Booking:
    return Booking(
        booking_id=booking_id,
        resource_id=resource_id,
        title=f"Meeting {booking_id}",
        interval=TimeInterval(
            start=datetime(2024, 5, 6, start_hour),
            end=datetime(2024, 5, 6, end_hour),
        ),
        owner_id="alice",
        priority=Priority.NORMAL,
    )


def _window(start_hour: int, end_hour: int) -> TimeInterval:
    return TimeInterval(start=datetime(2024, 5, 6, start_hour), end=datetime(2024, 5, 6, end_hour))


def test_conflicts_are_sorted_by_start(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings([_booking("late", 13, 14), _booking("early", 9, 10)])
    detector = ConflictDetector(repository)

    conflicts = detector.find_conflicts(1, _window(8, 18))

    assert [booking.booking_id for booking in conflicts] == ["early", "late"]


def test_touching_booking_is_not_a_conflict(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings([_booking("existing", 10, 11)])
    detector = ConflictDetector(repository)

    assert detector.find_conflicts(1, _window(11, 12)) == []
    assert detector.find_conflicts(1, _window(9, 10)) == []
    assert len(detector.find_conflicts(1, _window(10, 12))) == 1


def test_other_resources_do_not_conflict(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings([_booking("room-b", 9, 10, resource_id=2)])

    assert ConflictDetector(repository).find_conflicts(1, _window(9, 10)) == []


def test_cancelled_bookings_are_ignored(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings([_booking("gone", 9, 10)])
    assert repository.cancel_bookings(["gone"]) == 1

    assert ConflictDetector(repository).find_conflicts(1, _window(9, 10)) == []
    assert repository.get_booking("gone").status is BookingStatus.CANCELLED


def test_excluded_booking_is_skipped(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings([_booking("self", 9, 10)])

    assert ConflictDetector(repository).find_conflicts(1, _window(9, 10), "self") == []


def test_conflicts_among_filters_in_memory() -> None:
    cancelled = replace(_booking("cancelled", 9, 10), status=BookingStatus.CANCELLED)
    bookings = [_booking("b", 9, 11), cancelled, _booking("a", 9, 10), _booking("far", 15, 16)]

    matches = conflicts_among(bookings, _window(9, 12))

    assert [booking.booking_id for booking in matches] == ["a", "b"]


def test_commit_rejects_overlap_and_writes_nothing(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings([_booking("existing", 9, 10)])

    with pytest.raises(ConstraintViolation) as exc_info:
        repository.commit_bookings([_booking("fresh", 11, 12), _booking("clash", 9, 11)])

    assert exc_info.value.booking.booking_id == "clash"
    assert [booking.booking_id for booking in exc_info.value.conflicts] == ["existing"]
    assert repository.get_booking("fresh") is None
    assert repository.count_confirmed_bookings(1) == 1


def test_commit_cancels_displaced_bookings_in_same_transaction(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings([_booking("existing", 9, 10)])

    repository.commit_bookings([_booking("winner", 9, 10)], cancel_booking_ids=["existing"])

    assert repository.get_booking("existing").status is BookingStatus.CANCELLED
    assert repository.get_booking("winner").status is BookingStatus.CONFIRMED


def test_connection_failure_surfaces_as_repository_unavailable(tmp_path, monkeypatch) -> None:
    repository = _build_repository(tmp_path)

    def _broken_connect():
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repository, "_connect", _broken_connect)

    with pytest.raises(RepositoryUnavailable):
        repository.list_confirmed_bookings(1, _window(9, 10))


def test_list_bookings_filters_and_pages(tmp_path) -> None:
    repository = _build_repository(tmp_path)
    repository.commit_bookings(
        [
            _booking("early", 8, 9),
            _booking("mid", 10, 11),
            _booking("late", 14, 16),
            _booking("other-room", 10, 11, resource_id=2),
        ]
    )
    repository.cancel_bookings(["mid"])

    page = repository.list_bookings(resource_id=1, limit=2)
    assert [booking.booking_id for booking in page.bookings] == ["early", "mid"]
    assert (page.total, page.has_more) == (3, True)

    last = repository.list_bookings(resource_id=1, limit=2, offset=2)
    assert [booking.booking_id for booking in last.bookings] == ["late"]
    assert last.has_more is False

    window = repository.list_bookings(
        starts_from=datetime(2024, 5, 6, 9),
        ends_by=datetime(2024, 5, 6, 12),
        status=BookingStatus.CONFIRMED,
    )
    assert [booking.booking_id for booking in window.bookings] == ["other-room"]
    assert window.total == 1
