from __future__ import annotations

from dataclasses import replace
from datetime import datetime, time, timedelta

import pytest

from booking_engine.domain.models import (
    OperatingWindow,
    PriorityEntry,
    ReservationRequest,
    Resource,
    RestrictionPolicy,
)
from booking_engine.repository.data_repository import DataRepository
from booking_engine.utils.config import get_settings


@pytest.fixture
def settings(tmp_path):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / "engine.db",
        engine_timezone="UTC",
        arbitration_lock_timeout_seconds=5.0,
        seed_demo_catalog=False,
    )


@pytest.fixture
def repository(settings) -> DataRepository:
    """Catalog with resources R and S open Monday 08:00-18:00."""
    repository = DataRepository(settings)
    repository.initialize_database()
    for entry in (
        PriorityEntry("STUDENT", 1),
        PriorityEntry("TEACHER", 5),
        PriorityEntry("ADMIN", 10),
    ):
        repository.upsert_priority_entry(entry)
    for resource_id in ("R", "S"):
        repository.upsert_resource(Resource(resource_id, "CLASSROOM", 30))
        repository.replace_operating_windows(
            resource_id,
            [OperatingWindow(0, time(8, 0), time(18, 0))],
        )
        repository.upsert_restriction_policy(
            RestrictionPolicy(
                resource_id=resource_id,
                allowed_categories=frozenset({"STUDENT", "TEACHER", "ADMIN"}),
                min_duration_minutes=15,
                max_duration_minutes=240,
                min_advance_notice_hours=24,
            )
        )
    return repository


@pytest.fixture
def make_request():
    def _make(
        start: datetime,
        end: datetime,
        *,
        category: str = "STUDENT",
        requester_id: str = "user-1",
        resource_id: str = "R",
        submitted_at: datetime | None = None,
    ) -> ReservationRequest:
        return ReservationRequest(
            requester_id=requester_id,
            requester_category=category,
            resource_id=resource_id,
            start=start,
            end=end,
            submitted_at=submitted_at or start - timedelta(hours=48),
        )

    return _make
