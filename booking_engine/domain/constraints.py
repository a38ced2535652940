"""Domain-level validation rules for schedules, policies and reservation lifecycle."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from booking_engine.domain.models import (
    ExceptionStatus,
    OperatingWindow,
    PriorityEntry,
    ReservationStatus,
    RestrictionPolicy,
    ScheduleException,
    day_offset,
)


LEGAL_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {
            ReservationStatus.CONFIRMED,
            ReservationStatus.REJECTED,
            ReservationStatus.PREEMPTED,
        }
    ),
    ReservationStatus.CONFIRMED: frozenset(
        {
            ReservationStatus.CANCELLED,
            ReservationStatus.PREEMPTED,
        }
    ),
    ReservationStatus.PREEMPTED: frozenset(),
    ReservationStatus.REJECTED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}

# Statuses whose interval still blocks other requests.
BLOCKING_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})


def is_legal_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in LEGAL_TRANSITIONS[current]


def is_terminal(status: ReservationStatus) -> bool:
    return not LEGAL_TRANSITIONS[status]


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Half-open overlap: [s1, e1) and [s2, e2) overlap iff s1 < e2 and s2 < e1."""
    return start_a < end_b and start_b < end_a


def validate_interval(start: datetime, end: datetime) -> None:
    if start.tzinfo is None or end.tzinfo is None:
        raise ValueError("start and end must be timezone-aware")
    if end <= start:
        raise ValueError("end must be after start")


def validate_operating_windows(windows: Iterable[OperatingWindow]) -> None:
    by_day: dict[int, list[OperatingWindow]] = {}
    for window in windows:
        if not 0 <= window.day_of_week <= 6:
            raise ValueError("day_of_week must be between 0 and 6")
        if window.start_offset >= window.end_offset:
            raise ValueError("operating window start_time must be before end_time")
        by_day.setdefault(window.day_of_week, []).append(window)

    for day, day_windows in by_day.items():
        ordered = sorted(day_windows, key=lambda item: item.start_offset)
        for previous, current in zip(ordered, ordered[1:]):
            if current.start_offset < previous.end_offset:
                raise ValueError(f"operating windows overlap on day_of_week={day}")


def validate_schedule_exception(exception: ScheduleException) -> None:
    has_start = exception.override_start is not None
    has_end = exception.override_end is not None
    if exception.status is ExceptionStatus.CUSTOM_WINDOW:
        if not (has_start and has_end):
            raise ValueError("CUSTOM_WINDOW exceptions require an override window")
        if day_offset(exception.override_start) >= day_offset(
            exception.override_end, closing=True
        ):
            raise ValueError("override_start must be before override_end")
    elif has_start or has_end:
        raise ValueError("CLOSED exceptions must not carry an override window")


def validate_restriction_policy(policy: RestrictionPolicy) -> None:
    if not policy.allowed_categories:
        raise ValueError("allowed_categories must not be empty")
    if policy.min_duration_minutes < 0:
        raise ValueError("min_duration_minutes must be >= 0")
    if policy.max_duration_minutes <= 0:
        raise ValueError("max_duration_minutes must be > 0")
    if policy.min_duration_minutes > policy.max_duration_minutes:
        raise ValueError("min_duration_minutes must not exceed max_duration_minutes")
    if policy.min_advance_notice_hours < 0:
        raise ValueError("min_advance_notice_hours must be >= 0")
    if policy.max_advance_days is not None and policy.max_advance_days <= 0:
        raise ValueError("max_advance_days must be > 0 when set")


def validate_priority_entry(entry: PriorityEntry) -> None:
    if not entry.category.strip():
        raise ValueError("priority category must be non-empty")
