from __future__ import annotations

import logging

from booking_engine.utils.logger import get_logger, resolve_level


def test_level_names_are_case_insensitive() -> None:
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(" WARNING ") == logging.WARNING


def test_unknown_or_missing_level_falls_back_to_info() -> None:
    assert resolve_level("verbose") == logging.INFO
    assert resolve_level(None) == logging.INFO


def test_get_logger_returns_named_logger() -> None:
    logger = get_logger("booking_engine.services.booking_service")
    assert logger.name == "booking_engine.services.booking_service"
