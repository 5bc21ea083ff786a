"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable configuration snapshot shared by every layer."""

    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    business_hours_start: str
    business_hours_end: str
    suggestion_step_minutes: int
    suggestion_limit: int
    recurrence_hard_cap: int
    seed_demo_resources: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process; tests call ``cache_clear`` to reload."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Room Booking Engine"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/bookings.db")),
        business_hours_start=os.getenv("BUSINESS_HOURS_START", "08:00"),
        business_hours_end=os.getenv("BUSINESS_HOURS_END", "18:00"),
        suggestion_step_minutes=int(os.getenv("SUGGESTION_STEP_MINUTES", "30")),
        suggestion_limit=int(os.getenv("SUGGESTION_LIMIT", "3")),
        recurrence_hard_cap=int(os.getenv("RECURRENCE_HARD_CAP", "366")),
        seed_demo_resources=_env_bool("SEED_DEMO_RESOURCES", True),
    )
