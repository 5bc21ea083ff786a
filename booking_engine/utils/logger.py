"""Logging setup shared by the booking engine layers.

Messages are written as ``event | key=value | key=value`` so a booking can be
followed across controller, service and repository lines with a plain grep.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from booking_engine.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured = False


def resolve_level(name: Optional[str]) -> int:
    """Map a level name such as ``"debug"`` to its number; unknown names give INFO."""
    level = logging.getLevelName((name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Install the stdout handler on first use; later calls are no-ops."""
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=resolve_level(level or get_settings().log_level),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
