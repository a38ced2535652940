"""Domain models for availability evaluation and reservation arbitration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Optional


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREEMPTED = "PREEMPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ExceptionStatus(str, Enum):
    CLOSED = "CLOSED"
    CUSTOM_WINDOW = "CUSTOM_WINDOW"


class OutcomeStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    PREEMPTED_OTHERS = "PREEMPTED_OTHERS"


class ReasonCode(str, Enum):
    OUTSIDE_OPERATING_HOURS = "OUTSIDE_OPERATING_HOURS"
    SCHEDULE_CLOSED = "SCHEDULE_CLOSED"
    SPANS_MIDNIGHT = "SPANS_MIDNIGHT"
    CATEGORY_NOT_ALLOWED = "CATEGORY_NOT_ALLOWED"
    DURATION_TOO_SHORT = "DURATION_TOO_SHORT"
    DURATION_TOO_LONG = "DURATION_TOO_LONG"
    INSUFFICIENT_ADVANCE_NOTICE = "INSUFFICIENT_ADVANCE_NOTICE"
    TOO_FAR_IN_ADVANCE = "TOO_FAR_IN_ADVANCE"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True)
class Resource:
    resource_id: str
    category: str
    capacity: int
    active: bool = True


END_OF_DAY = timedelta(hours=24)


def day_offset(value: time, *, closing: bool = False) -> timedelta:
    """Offset of a wall-clock time from local midnight.

    A closing time of 00:00 stands for the end of the day.
    """
    offset = timedelta(
        hours=value.hour,
        minutes=value.minute,
        seconds=value.second,
        microseconds=value.microsecond,
    )
    if closing and not offset:
        return END_OF_DAY
    return offset


@dataclass(frozen=True)
class OperatingWindow:
    """Half-open time-of-day range [start_time, end_time) on a weekday (Monday=0).

    An end_time of 00:00 closes the window at midnight.
    """

    day_of_week: int
    start_time: time
    end_time: time

    @property
    def start_offset(self) -> timedelta:
        return day_offset(self.start_time)

    @property
    def end_offset(self) -> timedelta:
        return day_offset(self.end_time, closing=True)

    def contains(self, start_offset: timedelta, end_offset: timedelta) -> bool:
        return self.start_offset <= start_offset and end_offset <= self.end_offset


@dataclass(frozen=True)
class ScheduleException:
    exception_date: date
    status: ExceptionStatus
    override_start: Optional[time] = None
    override_end: Optional[time] = None


@dataclass(frozen=True)
class RestrictionPolicy:
    resource_id: str
    allowed_categories: frozenset[str]
    min_duration_minutes: int
    max_duration_minutes: int
    min_advance_notice_hours: float
    max_advance_days: Optional[int] = None


@dataclass(frozen=True)
class PriorityEntry:
    category: str
    priority_score: int


@dataclass(frozen=True)
class ReservationRequest:
    requester_id: str
    requester_category: str
    resource_id: str
    start: datetime
    end: datetime
    submitted_at: datetime

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    code: str
    resource_id: str
    requester_id: str
    requester_category: str
    priority_score: int
    start: datetime
    end: datetime
    submitted_at: datetime
    status: ReservationStatus
    created_at: datetime
    updated_at: datetime
    preempted_by: Optional[str] = None

    def rank(self) -> tuple[int, float]:
        """Arbitration rank; higher wins, earlier submission breaks ties."""
        return (self.priority_score, -self.submitted_at.timestamp())


@dataclass(frozen=True)
class Reason:
    code: ReasonCode
    message: str
    reservation_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code.value,
            "message": self.message,
            "reservation_ids": list(self.reservation_ids),
        }


@dataclass(frozen=True)
class Verdict:
    provisionally_admissible: bool
    reasons: tuple[Reason, ...] = ()


@dataclass(frozen=True)
class IntervalEntry:
    start: datetime
    end: datetime
    reservation_id: str


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    reservation_id: Optional[str]
    reasons: tuple[Reason, ...] = ()
    blocking_ids: tuple[str, ...] = ()
    preempted_ids: tuple[str, ...] = field(default_factory=tuple)
