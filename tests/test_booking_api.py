from __future__ import annotations

from dataclasses import replace

from fastapi import FastAPI
from fastapi.testclient import TestClient

from booking_engine.controllers.availability_controller import router as availability_router
from booking_engine.controllers.booking_controller import router as booking_router
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.availability_service import AvailabilityAggregator
from booking_engine.services.booking_service import BookingOrchestrator
from booking_engine.services.conflict_service import ConflictDetector
from booking_engine.services.resolution_service import ConflictResolver
from booking_engine.utils.config import get_settings


def _build_test_app(tmp_path) -> tuple[FastAPI, DataRepository]:
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "booking_api.db",
        business_hours_start="08:00",
        business_hours_end="18:00",
        suggestion_step_minutes=30,
        suggestion_limit=3,
    )
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_resources()

    detector = ConflictDetector(repository)
    resolver = ConflictResolver(
        repository=repository,
        audit_sink=repository,
        waitlist_store=repository,
        settings=settings,
        detector=detector,
    )
    orchestrator = BookingOrchestrator(
        repository=repository,
        resolver=resolver,
        settings=settings,
        detector=detector,
    )
    aggregator = AvailabilityAggregator(repository=repository, settings=settings, detector=detector)

    app = FastAPI()
    app.include_router(booking_router)
    app.include_router(availability_router)
    app.state.repository = repository
    app.state.conflict_resolver = resolver
    app.state.booking_orchestrator = orchestrator
    app.state.availability_aggregator = aggregator
    return app, repository


def _booking_payload(**overrides) -> dict:
    payload = {
        "resource_id": 1,
        "title": "Design review",
        "owner_id": "alice",
        "start": "2024-05-06T09:00:00",
        "end": "2024-05-06T10:00:00",
    }
    payload.update(overrides)
    return payload


def test_create_booking_then_conflict(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    created = client.post("/bookings", json=_booking_payload())
    assert created.status_code == 201
    body = created.json()
    assert body["state"] == "committed"
    booking_id = body["bookings"][0]["booking_id"]

    clash = client.post(
        "/bookings",
        json=_booking_payload(start="2024-05-06T09:30:00", end="2024-05-06T10:30:00"),
    )
    assert clash.status_code == 409
    detail = clash.json()["detail"]
    assert detail["state"] == "rejected"
    assert detail["conflict_id"]
    assert detail["can_override"] is False
    conflict = detail["conflicts"][0]
    assert conflict["date"] == "2024-05-06"
    assert conflict["blockers"][0]["booking_id"] == booking_id
    assert conflict["time_suggestions"][0]["start"] == "2024-05-06T08:00:00"
    assert conflict["resource_suggestions"]

    fetched = client.get(f"/bookings/{booking_id}")
    assert fetched.status_code == 200
    assert fetched.json()["title"] == "Design review"


def test_invalid_interval_returns_400_with_field(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.post(
        "/bookings",
        json=_booking_payload(start="2024-05-06T10:00:00", end="2024-05-06T09:00:00"),
    )

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "interval"


def test_unknown_resource_returns_404(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.post("/bookings", json=_booking_payload(resource_id=999))

    assert response.status_code == 404


def test_override_via_api(tmp_path) -> None:
    app, repository = _build_test_app(tmp_path)
    client = TestClient(app)
    first = client.post("/bookings", json=_booking_payload(priority="high")).json()

    response = client.post(
        "/bookings",
        json=_booking_payload(priority="critical", override=True),
    )

    assert response.status_code == 201
    body = response.json()
    assert [item["booking_id"] for item in body["displaced"]] == [
        first["bookings"][0]["booking_id"]
    ]
    assert len(repository.list_resolution_records(body["conflict_id"])) == 1


def test_override_reuses_reported_conflict_id(tmp_path) -> None:
    app, repository = _build_test_app(tmp_path)
    client = TestClient(app)
    client.post("/bookings", json=_booking_payload(priority="high"))
    reported = client.post("/bookings", json=_booking_payload(priority="critical"))
    assert reported.status_code == 409
    conflict_id = reported.json()["detail"]["conflict_id"]

    response = client.post(
        "/bookings",
        json=_booking_payload(priority="critical", override=True, conflict_id=conflict_id),
    )

    assert response.status_code == 201
    assert response.json()["conflict_id"] == conflict_id
    records = repository.list_resolution_records(conflict_id)
    assert [record.outcome.value for record in records] == ["override"]


def test_list_bookings_with_filters_and_pagination(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    for hour in (9, 11, 13):
        client.post(
            "/bookings",
            json=_booking_payload(
                start=f"2024-05-06T{hour:02d}:00:00",
                end=f"2024-05-06T{hour + 1:02d}:00:00",
            ),
        )
    client.post("/bookings", json=_booking_payload(resource_id=2))

    first = client.get("/bookings", params={"resource_id": 1, "limit": 2})
    assert first.status_code == 200
    body = first.json()
    assert [item["start"] for item in body["bookings"]] == [
        "2024-05-06T09:00:00",
        "2024-05-06T11:00:00",
    ]
    assert (body["total"], body["limit"], body["offset"], body["has_more"]) == (3, 2, 0, True)

    window = client.get(
        "/bookings",
        params={
            "start": "2024-05-06T10:00:00",
            "end": "2024-05-06T12:00:00",
            "status": "confirmed",
        },
    )
    assert [item["start"] for item in window.json()["bookings"]] == ["2024-05-06T11:00:00"]
    assert window.json()["has_more"] is False

    assert client.get("/bookings", params={"limit": 0}).status_code == 422


def test_series_endpoints(tmp_path) -> None:
    app, repository = _build_test_app(tmp_path)
    client = TestClient(app)
    created = client.post(
        "/bookings/recurring",
        json={
            "resource_id": 2,
            "title": "Planning",
            "owner_id": "alice",
            "series_start_date": "2024-01-01",
            "start_time": "09:00:00",
            "end_time": "10:00:00",
            "recurrence": {
                "type": "daily",
                "end": {"kind": "after_occurrences", "count": 3},
            },
        },
    ).json()
    group_id = created["bookings"][0]["recurring_group_id"]

    series = client.get(f"/series/{group_id}")
    assert series.status_code == 200
    assert [item["start"] for item in series.json()["bookings"]] == [
        "2024-01-01T09:00:00",
        "2024-01-02T09:00:00",
        "2024-01-03T09:00:00",
    ]

    cancelled = client.post(f"/series/{group_id}/cancel")
    assert cancelled.status_code == 200
    assert len(cancelled.json()["bookings"]) == 3
    assert {item["status"] for item in cancelled.json()["bookings"]} == {"cancelled"}
    assert repository.count_confirmed_bookings(2) == 0

    assert client.get("/series/missing").status_code == 404
    assert client.post("/series/missing/cancel").status_code == 404


def test_series_longer_than_hard_cap_returns_400(tmp_path) -> None:
    app, repository = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.post(
        "/bookings/recurring",
        json={
            "resource_id": 1,
            "title": "Weekly review",
            "owner_id": "alice",
            "series_start_date": "2024-01-01",
            "start_time": "09:00:00",
            "end_time": "10:00:00",
            "recurrence": {
                "type": "weekly",
                "weekdays": [1],
                "end": {"kind": "after_occurrences", "count": 60},
            },
        },
    )

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "recurrence.end"
    assert repository.count_confirmed_bookings() == 0


def test_recurring_booking_and_preview(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    recurrence = {
        "type": "weekly",
        "interval": 1,
        "weekdays": [1, 3],
        "end": {"kind": "after_occurrences", "count": 4},
    }

    preview = client.post(
        "/recurrence/preview",
        json={
            "series_start_date": "2024-01-01",
            "start_time": "09:00:00",
            "end_time": "10:00:00",
            "recurrence": recurrence,
        },
    )
    assert preview.status_code == 200
    assert [item["date"] for item in preview.json()["occurrences"]] == [
        "2024-01-01",
        "2024-01-03",
        "2024-01-08",
        "2024-01-10",
    ]

    created = client.post(
        "/bookings/recurring",
        json={
            "resource_id": 2,
            "title": "Planning",
            "owner_id": "alice",
            "series_start_date": "2024-01-01",
            "start_time": "09:00:00",
            "end_time": "10:00:00",
            "recurrence": recurrence,
        },
    )
    assert created.status_code == 201
    bookings = created.json()["bookings"]
    assert len(bookings) == 4
    assert len({item["recurring_group_id"] for item in bookings}) == 1


def test_weekly_without_weekdays_returns_400(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.post(
        "/recurrence/preview",
        json={
            "series_start_date": "2024-01-01",
            "start_time": "09:00:00",
            "end_time": "10:00:00",
            "recurrence": {"type": "weekly", "end": {"kind": "never"}},
        },
    )

    assert response.status_code == 400
    assert response.json()["detail"]["field"] == "recurrence.weekdays"


def test_cancel_and_reschedule(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    booking_id = client.post("/bookings", json=_booking_payload()).json()["bookings"][0]["booking_id"]

    moved = client.post(
        f"/bookings/{booking_id}/reschedule",
        json={"start": "2024-05-06T11:00:00", "end": "2024-05-06T12:00:00"},
    )
    assert moved.status_code == 200
    new_id = moved.json()["bookings"][0]["booking_id"]
    assert client.get(f"/bookings/{booking_id}").json()["status"] == "cancelled"

    cancelled = client.post(f"/bookings/{new_id}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert client.post(f"/bookings/{new_id}/cancel").status_code == 404


def test_waitlist_flow(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    blocker_id = client.post("/bookings", json=_booking_payload()).json()["bookings"][0]["booking_id"]
    conflict_id = client.post("/bookings", json=_booking_payload(owner_id="bob")).json()["detail"][
        "conflict_id"
    ]

    waitlisted = client.post(
        "/conflicts/resolve",
        json={
            "conflict_id": conflict_id,
            "outcome": "waitlisted",
            "resolved_by": "bob",
            "booking": _booking_payload(owner_id="bob"),
        },
    )
    assert waitlisted.status_code == 200
    entry_id = waitlisted.json()["waitlist_entry"]["entry_id"]
    assert waitlisted.json()["record"]["outcome"] == "waitlisted"

    pending = client.get("/waitlist", params={"status": "pending"})
    assert [item["entry_id"] for item in pending.json()] == [entry_id]

    assert client.post(f"/waitlist/{entry_id}/approve").status_code == 409
    client.post(f"/bookings/{blocker_id}/cancel")
    approved = client.post(f"/waitlist/{entry_id}/approve")
    assert approved.status_code == 200
    assert approved.json()["waitlist_entry"]["status"] == "approved"
    assert client.post(f"/waitlist/{entry_id}/reject").status_code == 409


def test_availability_endpoints(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)
    client.post(
        "/bookings",
        json=_booking_payload(start="2024-05-06T08:00:00", end="2024-05-06T16:00:00"),
    )

    summary = client.get("/availability", params={"resource_id": 1, "date": "2024-05-06"})
    assert summary.status_code == 200
    assert summary.json()["status"] == "booked"
    assert summary.json()["covered_ratio"] == 0.8

    free_day = client.get("/availability", params={"resource_id": 1, "date": "2024-05-07"})
    assert free_day.json()["status"] == "available"

    blocks = client.get(
        "/availability/blocks",
        params={"resource_id": 1, "date": "2024-05-06", "duration_minutes": 60},
    )
    assert blocks.status_code == 200
    available = [item for item in blocks.json()["availability_blocks"] if item["available"]]
    assert [item["start"] for item in available] == [
        "2024-05-06T16:00:00",
        "2024-05-06T16:30:00",
        "2024-05-06T17:00:00",
    ]


def test_resources_listing_filters_capacity(tmp_path) -> None:
    app, _ = _build_test_app(tmp_path)
    client = TestClient(app)

    response = client.get("/resources", params={"min_capacity": 12})

    assert response.status_code == 200
    assert [item["name"] for item in response.json()] == ["Room D", "Room B", "Room F"]


def test_missing_service_returns_503() -> None:
    app = FastAPI()
    app.include_router(booking_router)
    client = TestClient(app)

    response = client.post("/bookings", json=_booking_payload())

    assert response.status_code == 503


def test_app_factory_initializes_and_seeds_on_startup(tmp_path) -> None:
    from app import create_app

    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "factory.db",
        seed_demo_resources=True,
    )

    with TestClient(create_app(settings)) as client:
        response = client.get("/resources")

    assert response.status_code == 200
    assert len(response.json()) == 6
