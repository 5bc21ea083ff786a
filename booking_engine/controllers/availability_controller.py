"""HTTP controller layer for resource availability queries."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from booking_engine.controllers.booking_controller import (
    BookingResponse,
    booking_response,
    service_errors,
)
from booking_engine.controllers.dependencies import (
    get_availability_aggregator,
    get_repository,
)
from booking_engine.domain.models import TimeSlot
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.availability_service import AvailabilityAggregator, classify_ratio
from booking_engine.services.booking_service import BookingNotFoundError, ResourceNotFoundError


router = APIRouter(tags=["availability"])


class AvailabilityResponse(BaseModel):
    resource_id: int = Field(gt=0)
    date: date
    status: Literal["available", "partial", "booked"]
    covered_ratio: float = Field(ge=0.0, le=1.0)


class AvailabilityBlockResponse(BaseModel):
    start: datetime
    end: datetime
    available: bool
    booking: Optional[BookingResponse] = None


class AvailabilityBlocksResponse(BaseModel):
    resource_id: int = Field(gt=0)
    date: date
    duration_minutes: int = Field(gt=0)
    availability_blocks: list[AvailabilityBlockResponse]


class ResourceResponse(BaseModel):
    resource_id: int = Field(gt=0)
    name: str
    capacity: int = Field(gt=0)


def _business_window(
    business_start: Optional[time],
    business_end: Optional[time],
    aggregator: AvailabilityAggregator,
) -> TimeSlot:
    default = aggregator.default_business_window
    return TimeSlot(
        start_time=business_start or default.start_time,
        end_time=business_end or default.end_time,
    )


def _require_resource(repository: DataRepository, resource_id: int) -> None:
    if repository.get_resource(resource_id) is None:
        raise ResourceNotFoundError(f"Resource {resource_id} not found")


@router.get(
    "/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
async def check_availability(
    resource_id: int = Query(gt=0),
    day: date = Query(alias="date"),
    business_start: Optional[time] = None,
    business_end: Optional[time] = None,
    aggregator: AvailabilityAggregator = Depends(get_availability_aggregator),
    repository: DataRepository = Depends(get_repository),
) -> AvailabilityResponse:
    """Classify the day as available, partial, or booked for one resource."""
    with service_errors("check availability"):
        _require_resource(repository, resource_id)
        window = _business_window(business_start, business_end, aggregator)
        ratio = aggregator.covered_ratio(resource_id, day, window)
        availability = classify_ratio(ratio)
    return AvailabilityResponse(
        resource_id=resource_id,
        date=day,
        status=availability.value,
        covered_ratio=min(1.0, ratio),
    )


@router.get(
    "/availability/blocks",
    response_model=AvailabilityBlocksResponse,
    status_code=status.HTTP_200_OK,
)
async def availability_blocks(
    resource_id: int = Query(gt=0),
    day: date = Query(alias="date"),
    duration_minutes: int = Query(default=60, gt=0),
    aggregator: AvailabilityAggregator = Depends(get_availability_aggregator),
    repository: DataRepository = Depends(get_repository),
) -> AvailabilityBlocksResponse:
    with service_errors("list availability blocks"):
        _require_resource(repository, resource_id)
        blocks = aggregator.availability_blocks(resource_id, day, duration_minutes)
    return AvailabilityBlocksResponse(
        resource_id=resource_id,
        date=day,
        duration_minutes=duration_minutes,
        availability_blocks=[
            AvailabilityBlockResponse(
                start=block.interval.start,
                end=block.interval.end,
                available=block.available,
                booking=(
                    booking_response(block.blocking_booking)
                    if block.blocking_booking
                    else None
                ),
            )
            for block in blocks
        ],
    )


@router.get(
    "/resources",
    response_model=list[ResourceResponse],
    status_code=status.HTTP_200_OK,
)
async def list_resources(
    min_capacity: int = Query(default=1, ge=1),
    repository: DataRepository = Depends(get_repository),
) -> list[ResourceResponse]:
    with service_errors("list resources"):
        resources = repository.list_resources_by_min_capacity(min_capacity)
    return [
        ResourceResponse(
            resource_id=resource.resource_id,
            name=resource.name,
            capacity=resource.capacity,
        )
        for resource in resources
    ]


@router.get(
    "/bookings/{booking_id}",
    response_model=BookingResponse,
    status_code=status.HTTP_200_OK,
)
async def get_booking(
    booking_id: str,
    repository: DataRepository = Depends(get_repository),
) -> BookingResponse:
    with service_errors("fetch booking"):
        booking = repository.get_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
    return booking_response(booking)
