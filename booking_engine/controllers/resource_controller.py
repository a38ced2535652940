"""Controller layer for per-resource calendar, audit history and operator actions."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from booking_engine.controllers.dependencies import (
    get_arbiter,
    get_engine_timezone,
    get_ledger,
    get_schedule_catalog,
)
from booking_engine.controllers.reservation_controller import ReservationResponse
from booking_engine.services.arbiter_service import ConflictArbiter
from booking_engine.services.ledger_service import ReservationLedger
from booking_engine.services.schedule_catalog import ScheduleCatalog
from booking_engine.utils.clock import ensure_aware


router = APIRouter(prefix="/resources", tags=["resources"])


class IntervalResponse(BaseModel):
    reservation_id: str
    start: datetime
    end: datetime


class CalendarResponse(BaseModel):
    resource_id: str
    start: datetime
    end: datetime
    intervals: list[IntervalResponse]


class WindowResponse(BaseModel):
    start_time: time
    end_time: time


class DayScheduleResponse(BaseModel):
    resource_id: str
    date: date
    windows: list[WindowResponse]


class HaltStatusResponse(BaseModel):
    resource_id: str
    halted: bool


@router.get("/{resource_id}/calendar", response_model=CalendarResponse)
def get_calendar(
    resource_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    ledger: ReservationLedger = Depends(get_ledger),
    tz=Depends(get_engine_timezone),
) -> CalendarResponse:
    """Confirmed intervals overlapping the requested range."""
    range_start = ensure_aware(start, tz)
    range_end = ensure_aware(end, tz)
    if range_end <= range_start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must be after start",
        )
    entries = ledger.confirmed_intervals_for(resource_id, range_start, range_end)
    return CalendarResponse(
        resource_id=resource_id,
        start=range_start,
        end=range_end,
        intervals=[
            IntervalResponse(
                reservation_id=entry.reservation_id,
                start=entry.start,
                end=entry.end,
            )
            for entry in entries
        ],
    )


@router.get("/{resource_id}/schedule", response_model=DayScheduleResponse)
def get_day_schedule(
    resource_id: str,
    on: date = Query(...),
    catalog: ScheduleCatalog = Depends(get_schedule_catalog),
) -> DayScheduleResponse:
    windows = catalog.windows_for(resource_id, on)
    return DayScheduleResponse(
        resource_id=resource_id,
        date=on,
        windows=[
            WindowResponse(start_time=window.start_time, end_time=window.end_time)
            for window in windows
        ],
    )


@router.get("/{resource_id}/history", response_model=list[ReservationResponse])
def get_history(
    resource_id: str,
    status_filter: Optional[str] = Query(default=None, alias="status"),
    ledger: ReservationLedger = Depends(get_ledger),
) -> list[ReservationResponse]:
    """Audit view including REJECTED and PREEMPTED records."""
    history = ledger.history(resource_id)
    if status_filter is not None:
        history = [item for item in history if item.status.value == status_filter.upper()]
    return [ReservationResponse.from_domain(item) for item in history]


@router.post("/{resource_id}/resume", response_model=HaltStatusResponse)
def resume_arbitration(
    resource_id: str,
    arbiter: ConflictArbiter = Depends(get_arbiter),
) -> HaltStatusResponse:
    arbiter.resume(resource_id)
    return HaltStatusResponse(resource_id=resource_id, halted=arbiter.is_halted(resource_id))
