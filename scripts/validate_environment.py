#!/usr/bin/env python3
"""Validate local booking engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date, datetime, time
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from booking_engine.domain.models import (
    BookingRequest,
    EndsAfterOccurrences,
    RecurrenceDefinition,
    RecurrenceType,
    RecurringBookingRequest,
    TimeInterval,
    TimeSlot,
)
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.booking_service import BookingOrchestrator
from booking_engine.services.resolution_service import ConflictResolver
from booking_engine.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = ["fastapi", "uvicorn", "pydantic", "httpx", "pytest"]
    import_errors: list[str] = []
    for module_name in package_specs:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "booking_validation.db",
        )
        repository = DataRepository(validation_settings)
        resolver = ConflictResolver(
            repository=repository,
            audit_sink=repository,
            waitlist_store=repository,
            settings=validation_settings,
        )
        orchestrator = BookingOrchestrator(
            repository=repository,
            resolver=resolver,
            settings=validation_settings,
        )

        # CHECK 3: Database initialization and demo resources
        try:
            repository.initialize_database()
            repository.seed_demo_resources()
            room_count = len(repository.list_resources())
            if room_count == 0:
                raise RuntimeError("no resources seeded")
            ok, line = _print_result("Database initialization", True, f": {room_count} rooms")
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Recurring series commit
        try:
            outcome = orchestrator.create_recurring_booking(
                RecurringBookingRequest(
                    resource_id=1,
                    title="Validation standup",
                    owner_id="validator",
                    series_start_date=date(2024, 1, 1),
                    slot=TimeSlot(start_time=time(9, 0), end_time=time(9, 30)),
                    recurrence=RecurrenceDefinition(
                        recurrence_type=RecurrenceType.WEEKLY,
                        interval=1,
                        end=EndsAfterOccurrences(count=4),
                        weekdays=frozenset({1, 3}),
                    ),
                )
            )
            if not outcome.committed or len(outcome.bookings) != 4:
                raise RuntimeError(f"expected 4 committed instances, got state={outcome.state.value}")
            ok, line = _print_result("Recurring booking commit", True, ": 4 instances")
        except Exception as exc:
            ok, line = _print_result("Recurring booking commit", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Conflict detection rejects a double booking
        try:
            outcome = orchestrator.create_booking(
                BookingRequest(
                    resource_id=1,
                    title="Validation clash",
                    owner_id="validator",
                    interval=TimeInterval(
                        start=datetime(2024, 1, 1, 9, 0),
                        end=datetime(2024, 1, 1, 10, 0),
                    ),
                )
            )
            if outcome.committed or not outcome.conflicts:
                raise RuntimeError("overlapping booking was not rejected")
            ok, line = _print_result(
                "Conflict detection",
                True,
                f": {len(outcome.conflicts[0].resolution.time_suggestions)} time suggestions",
            )
        except Exception as exc:
            ok, line = _print_result("Conflict detection", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Engine Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
