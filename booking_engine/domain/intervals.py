"""Half-open interval arithmetic shared by every scheduling component."""

from __future__ import annotations

from datetime import datetime

from booking_engine.domain.models import TimeInterval


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """Return True when two intervals share at least one instant.

    Intervals are ``[start, end)``, so touching boundaries (10:00-11:00 and
    11:00-12:00) do not overlap.
    """
    return a.start < b.end and b.start < a.end


def covered_minutes(
    interval: TimeInterval,
    window_start: datetime,
    window_end: datetime,
) -> int:
    """Minutes of ``interval`` that fall inside ``[window_start, window_end)``."""
    start = max(interval.start, window_start)
    end = min(interval.end, window_end)
    if start >= end:
        return 0
    return int((end - start).total_seconds() // 60)
