"""Weekly operating hours and date-specific exceptions lookup."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from booking_engine.domain.models import (
    END_OF_DAY,
    ExceptionStatus,
    OperatingWindow,
    Reason,
    ReasonCode,
)
from booking_engine.repository.data_repository import DataRepository
from booking_engine.utils.clock import resolve_timezone
from booking_engine.utils.config import Settings, get_settings


class ScheduleCatalog:
    """Read-only view over resource schedules.

    Instants are converted to the engine timezone before weekday and
    time-of-day comparisons, so windows are interpreted as local wall-clock
    hours of the site that owns the resources.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._tz = resolve_timezone(self._settings.engine_timezone)

    def windows_for(self, resource_id: str, on_date: date) -> list[OperatingWindow]:
        """Effective windows for one date after applying any exception."""
        weekday = on_date.weekday()
        exception = self._repository.get_schedule_exception(resource_id, on_date)
        if exception is not None:
            if exception.status is ExceptionStatus.CLOSED:
                return []
            return [
                OperatingWindow(
                    day_of_week=weekday,
                    start_time=exception.override_start,
                    end_time=exception.override_end,
                )
            ]
        return self._repository.list_operating_windows(resource_id, day_of_week=weekday)

    def explain(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
    ) -> Optional[Reason]:
        """Return why the interval is outside operating hours, or None if it fits."""
        local_start = start.astimezone(self._tz)
        local_end = end.astimezone(self._tz)
        day_start = local_start.replace(hour=0, minute=0, second=0, microsecond=0)
        # Same tzinfo on both sides, so these are wall-clock offsets.
        start_offset = local_start - day_start
        end_offset = local_end - day_start
        if end_offset > END_OF_DAY:
            return Reason(
                code=ReasonCode.SPANS_MIDNIGHT,
                message="Reservations cannot cross a day boundary",
            )

        exception = self._repository.get_schedule_exception(resource_id, local_start.date())
        if exception is not None and exception.status is ExceptionStatus.CLOSED:
            return Reason(
                code=ReasonCode.SCHEDULE_CLOSED,
                message=f"Resource {resource_id} is closed on {local_start.date().isoformat()}",
            )

        for window in self.windows_for(resource_id, local_start.date()):
            if window.contains(start_offset, end_offset):
                return None
        return Reason(
            code=ReasonCode.OUTSIDE_OPERATING_HOURS,
            message=(
                f"{local_start.strftime('%H:%M')}-{local_end.strftime('%H:%M')} is not inside "
                f"a single operating window of {resource_id}"
            ),
        )

    def is_within_operating_hours(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
    ) -> bool:
        return self.explain(resource_id, start, end) is None
