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


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    engine_timezone: str
    arbitration_lock_timeout_seconds: float
    seed_demo_catalog: bool
    reservation_code_prefix: str
    reservation_code_length: int = 8
    demo_resource_count: int = 4
    max_submission_skew_seconds: float = 300.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive copies with `replace`."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Reservation Arbitration Engine"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/booking_engine.db")),
        engine_timezone=os.getenv("ENGINE_TIMEZONE", "UTC"),
        arbitration_lock_timeout_seconds=_env_float(
            "ARBITRATION_LOCK_TIMEOUT_SECONDS", 10.0
        ),
        seed_demo_catalog=_env_bool("SEED_DEMO_CATALOG", True),
        reservation_code_prefix=os.getenv("RESERVATION_CODE_PREFIX", "RSV"),
        max_submission_skew_seconds=_env_float("MAX_SUBMISSION_SKEW_SECONDS", 300.0),
    )
