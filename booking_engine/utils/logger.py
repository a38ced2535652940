"""Process-wide logging setup for the arbitration engine."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from booking_engine.utils.config import get_settings


_LOGGER_INITIALIZED = False

ALERT_LOGGER_NAME = "booking_engine.alerts"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once.

    Invariant alerts go through a dedicated logger that always emits at
    CRITICAL, even when the configured level would hide engine chatter.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    logging.getLogger(ALERT_LOGGER_NAME).setLevel(logging.CRITICAL)
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def get_alert_logger() -> logging.Logger:
    """Logger reserved for broken-invariant alerts that need an operator."""
    configure_logging()
    return logging.getLogger(ALERT_LOGGER_NAME)
