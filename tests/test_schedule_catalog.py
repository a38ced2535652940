from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone

from booking_engine.domain.models import (
    ExceptionStatus,
    OperatingWindow,
    ReasonCode,
    ScheduleException,
)
from booking_engine.services.schedule_catalog import ScheduleCatalog


MONDAY = datetime(2026, 3, 2, tzinfo=timezone.utc)


def _at(hour: int, minute: int = 0, day: datetime = MONDAY) -> datetime:
    return day.replace(hour=hour, minute=minute)


def test_interval_inside_window_is_allowed(repository, settings):
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    assert catalog.is_within_operating_hours("R", _at(9), _at(10))
    assert catalog.is_within_operating_hours("R", _at(8), _at(18))


def test_interval_outside_or_overhanging_window_is_denied(repository, settings):
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    assert not catalog.is_within_operating_hours("R", _at(19), _at(20))
    assert not catalog.is_within_operating_hours("R", _at(17), _at(18, 30))
    reason = catalog.explain("R", _at(19), _at(20))
    assert reason.code is ReasonCode.OUTSIDE_OPERATING_HOURS


def test_day_without_windows_is_denied(repository, settings):
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    tuesday = MONDAY + timedelta(days=1)
    assert not catalog.is_within_operating_hours("R", _at(9, day=tuesday), _at(10, day=tuesday))


def test_interval_must_fit_a_single_window(repository, settings):
    repository.replace_operating_windows(
        "R",
        [
            OperatingWindow(0, time(8), time(12)),
            OperatingWindow(0, time(13), time(18)),
        ],
    )
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    assert catalog.is_within_operating_hours("R", _at(13), _at(14))
    assert not catalog.is_within_operating_hours("R", _at(11), _at(14))


def test_crossing_midnight_is_denied(repository, settings):
    repository.replace_operating_windows(
        "R",
        [
            OperatingWindow(0, time(0), time(23, 59)),
            OperatingWindow(1, time(0), time(23, 59)),
        ],
    )
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    reason = catalog.explain("R", _at(23), _at(23) + timedelta(hours=2))
    assert reason.code is ReasonCode.SPANS_MIDNIGHT


def test_closed_exception_overrides_weekly_window(repository, settings):
    repository.upsert_schedule_exception(
        "R",
        ScheduleException(date(2026, 3, 2), ExceptionStatus.CLOSED),
    )
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    reason = catalog.explain("R", _at(9), _at(10))
    assert reason.code is ReasonCode.SCHEDULE_CLOSED
    assert catalog.windows_for("R", date(2026, 3, 2)) == []
    next_monday = MONDAY + timedelta(days=7)
    assert catalog.is_within_operating_hours(
        "R", _at(9, day=next_monday), _at(10, day=next_monday)
    )


def test_custom_window_replaces_weekly_window_for_that_date(repository, settings):
    repository.upsert_schedule_exception(
        "R",
        ScheduleException(
            date(2026, 3, 2),
            ExceptionStatus.CUSTOM_WINDOW,
            override_start=time(18),
            override_end=time(21),
        ),
    )
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    assert catalog.is_within_operating_hours("R", _at(19), _at(20))
    assert not catalog.is_within_operating_hours("R", _at(9), _at(10))


def test_windows_are_read_in_engine_timezone(repository, settings):
    bogota = replace(settings, engine_timezone="America/Bogota")
    catalog = ScheduleCatalog(repository=repository, settings=bogota)
    # 14:00-15:00 UTC is 09:00-10:00 in Bogota (UTC-5).
    assert catalog.is_within_operating_hours("R", _at(14), _at(15))
    # 08:00-09:00 UTC is 03:00-04:00 local.
    assert not catalog.is_within_operating_hours("R", _at(8), _at(9))


def test_interval_ending_at_midnight_stays_on_its_day(repository, settings):
    catalog = ScheduleCatalog(repository=repository, settings=settings)
    next_midnight = MONDAY + timedelta(days=1)
    reason = catalog.explain("R", _at(22), next_midnight)
    assert reason.code is ReasonCode.OUTSIDE_OPERATING_HOURS

    repository.replace_operating_windows("R", [OperatingWindow(0, time(18), time(0))])
    assert catalog.is_within_operating_hours("R", _at(22), next_midnight)
    reason = catalog.explain("R", _at(23), next_midnight + timedelta(hours=1))
    assert reason.code is ReasonCode.SPANS_MIDNIGHT
