"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and scheduling services, registers routers, and runs
startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from booking_engine.controllers.availability_controller import router as availability_router
from booking_engine.controllers.booking_controller import router as booking_router
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.availability_service import AvailabilityAggregator
from booking_engine.services.booking_service import BookingOrchestrator
from booking_engine.services.conflict_service import ConflictDetector
from booking_engine.services.resolution_service import ConflictResolver
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service receives its collaborators explicitly and is exposed via
    app.state. The SQLite repository doubles as audit sink and waitlist store.
    """
    settings = settings or get_settings()

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services (scheduling logic, no direct DB access) ---
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
    aggregator = AvailabilityAggregator(
        repository=repository,
        settings=settings,
        detector=detector,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(booking_router)
    app.include_router(availability_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.repository = repository
    app.state.conflict_detector = detector
    app.state.conflict_resolver = resolver
    app.state.booking_orchestrator = orchestrator
    app.state.availability_aggregator = aggregator

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before demo resources are seeded.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_resources:
        logger.info("Startup: seeding demo resources (skipped if Resources table not empty)")
        repository.seed_demo_resources()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
