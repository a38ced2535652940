"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository, lookup services, ledger and arbiter, registers
routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from booking_engine.controllers.reservation_controller import router as reservation_router
from booking_engine.controllers.resource_controller import router as resource_router
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.arbiter_service import ConflictArbiter
from booking_engine.services.availability_service import AvailabilityEvaluator
from booking_engine.services.ledger_service import ReservationLedger
from booking_engine.services.priority_table import PriorityTable
from booking_engine.services.restriction_service import RestrictionPolicyService
from booking_engine.services.schedule_catalog import ScheduleCatalog
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service receives its collaborators explicitly; app.state is only the
    lookup point for the dependency providers.
    """
    settings = settings or get_settings()

    # --- Repository (catalog + reservation persistence) ---
    repository = DataRepository(settings)

    # --- Read-mostly lookups ---
    schedule_catalog = ScheduleCatalog(repository=repository, settings=settings)
    restriction_service = RestrictionPolicyService(repository=repository, settings=settings)
    priority_table = PriorityTable(repository=repository, settings=settings)
    evaluator = AvailabilityEvaluator(
        repository=repository,
        settings=settings,
        schedule_catalog=schedule_catalog,
        restriction_service=restriction_service,
        priority_table=priority_table,
    )

    # --- Ledger and arbiter (the only writers of reservation state) ---
    ledger = ReservationLedger(repository=repository)
    arbiter = ConflictArbiter(
        repository=repository,
        settings=settings,
        ledger=ledger,
        evaluator=evaluator,
        priority_table=priority_table,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(reservation_router)
    app.include_router(resource_router)

    @app.get("/health", tags=["health"])
    def health() -> dict[str, object]:
        return {
            "status": "ok",
            "halted_resources": sorted(arbiter.halted_resources()),
        }

    app.state.settings = settings
    app.state.repository = repository
    app.state.schedule_catalog = schedule_catalog
    app.state.ledger = ledger
    app.state.arbiter = arbiter

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before seeding.
      2. The demo catalog is seeded only into an empty database.
      3. The ledger is rebuilt last, from persisted reservations.
    """
    settings: Settings = app.state.settings
    repository: DataRepository = app.state.repository
    ledger: ReservationLedger = app.state.ledger

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_catalog:
        logger.info("Startup: seeding demo catalog (skipped if resources exist)")
        repository.seed_demo_catalog()

    logger.info("Startup: loading reservation ledger")
    ledger.load()

    logger.info("Startup complete | arbiter ready")


# Module-level app object for uvicorn
app = create_app()
