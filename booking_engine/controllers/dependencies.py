"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.availability_service import AvailabilityAggregator
from booking_engine.services.booking_service import BookingOrchestrator
from booking_engine.services.resolution_service import ConflictResolver


def _require_state(request: Request, attribute: str, label: str):
    service = getattr(request.app.state, attribute, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_repository(request: Request) -> DataRepository:
    return _require_state(request, "repository", "Repository")


def get_booking_orchestrator(request: Request) -> BookingOrchestrator:
    return _require_state(request, "booking_orchestrator", "Booking service")


def get_conflict_resolver(request: Request) -> ConflictResolver:
    return _require_state(request, "conflict_resolver", "Conflict resolver")


def get_availability_aggregator(request: Request) -> AvailabilityAggregator:
    return _require_state(request, "availability_aggregator", "Availability service")
