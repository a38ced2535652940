"""Timezone helpers shared by schedule evaluation and the HTTP layer."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo


@lru_cache(maxsize=16)
def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime, default_tz: tzinfo) -> datetime:
    """Attach the engine timezone to naive datetimes; leave aware ones alone."""
    if value.tzinfo is None:
        return value.replace(tzinfo=default_tz)
    return value
