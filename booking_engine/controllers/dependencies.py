"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from booking_engine.services.arbiter_service import ConflictArbiter
from booking_engine.services.ledger_service import ReservationLedger
from booking_engine.services.schedule_catalog import ScheduleCatalog
from booking_engine.utils.clock import resolve_timezone
from booking_engine.utils.config import Settings, get_settings


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_arbiter(request: Request) -> ConflictArbiter:
    service = getattr(request.app.state, "arbiter", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Conflict arbiter is not initialized",
        )
    return service


def get_ledger(request: Request) -> ReservationLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        arbiter = get_arbiter(request)
        ledger = arbiter.ledger
        request.app.state.ledger = ledger
    return ledger


def get_schedule_catalog(request: Request) -> ScheduleCatalog:
    catalog = getattr(request.app.state, "schedule_catalog", None)
    if catalog is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Schedule catalog is not initialized",
            )
        catalog = ScheduleCatalog(repository=repository, settings=get_app_settings(request))
        request.app.state.schedule_catalog = catalog
    return catalog


def get_engine_timezone(request: Request):
    return resolve_timezone(get_app_settings(request).engine_timezone)
