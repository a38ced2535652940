"""HTTP controller layer for reservation submission, evaluation and cancellation."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from booking_engine.controllers.dependencies import (
    get_app_settings,
    get_arbiter,
    get_engine_timezone,
    get_ledger,
)
from booking_engine.domain.models import (
    Outcome,
    Reason,
    Reservation,
    ReservationRequest,
    Verdict,
)
from booking_engine.services.arbiter_service import (
    ArbitrationHaltedError,
    ArbitrationTimeoutError,
    CancelStatus,
    ConflictArbiter,
)
from booking_engine.services.availability_service import (
    RequestValidationError,
    ResourceInactiveError,
    ResourceNotFoundError,
)
from booking_engine.services.ledger_service import LedgerError, ReservationLedger
from booking_engine.utils.clock import ensure_aware, utc_now
from booking_engine.utils.config import Settings
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["reservations"])


class ReservationRequestBody(BaseModel):
    """Input DTO; requester identity is trusted, it was verified upstream.

    `submitted_at` is only honoured for retries of a recent submission; new
    requests are stamped with the server clock.
    """

    requester_id: str = Field(min_length=1)
    requester_category: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    start: datetime
    end: datetime
    submitted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_interval_order(self) -> "ReservationRequestBody":
        if (self.start.tzinfo is None) != (self.end.tzinfo is None):
            raise ValueError("start and end must both carry a UTC offset or both omit it")
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def to_domain(self, tz, submitted_at: datetime) -> ReservationRequest:
        return ReservationRequest(
            requester_id=self.requester_id,
            requester_category=self.requester_category,
            resource_id=self.resource_id,
            start=ensure_aware(self.start, tz),
            end=ensure_aware(self.end, tz),
            submitted_at=submitted_at,
        )


class ReasonResponse(BaseModel):
    code: str
    message: str
    reservation_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, reason: Reason) -> "ReasonResponse":
        return cls(**reason.to_dict())


class OutcomeResponse(BaseModel):
    status: str
    reservation_id: Optional[str] = None
    reasons: list[ReasonResponse] = Field(default_factory=list)
    blocking_ids: list[str] = Field(default_factory=list)
    preempted_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, outcome: Outcome) -> "OutcomeResponse":
        return cls(
            status=outcome.status.value,
            reservation_id=outcome.reservation_id,
            reasons=[ReasonResponse.from_domain(reason) for reason in outcome.reasons],
            blocking_ids=list(outcome.blocking_ids),
            preempted_ids=list(outcome.preempted_ids),
        )


class VerdictResponse(BaseModel):
    provisionally_admissible: bool
    reasons: list[ReasonResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, verdict: Verdict) -> "VerdictResponse":
        return cls(
            provisionally_admissible=verdict.provisionally_admissible,
            reasons=[ReasonResponse.from_domain(reason) for reason in verdict.reasons],
        )


class ReservationResponse(BaseModel):
    reservation_id: str
    code: str
    resource_id: str
    requester_id: str
    requester_category: str
    priority_score: int
    start: datetime
    end: datetime
    submitted_at: datetime
    status: str
    preempted_by: Optional[str] = None

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            reservation_id=reservation.reservation_id,
            code=reservation.code,
            resource_id=reservation.resource_id,
            requester_id=reservation.requester_id,
            requester_category=reservation.requester_category,
            priority_score=reservation.priority_score,
            start=reservation.start,
            end=reservation.end,
            submitted_at=reservation.submitted_at,
            status=reservation.status.value,
            preempted_by=reservation.preempted_by,
        )


def _resolve_submitted_at(payload: ReservationRequestBody, tz, settings: Settings) -> datetime:
    now = utc_now()
    if payload.submitted_at is None:
        return now
    submitted_at = ensure_aware(payload.submitted_at, tz)
    max_skew = timedelta(seconds=settings.max_submission_skew_seconds)
    if abs(submitted_at - now) > max_skew:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"submitted_at must be within {settings.max_submission_skew_seconds:g}s "
                "of the server clock"
            ),
        )
    return submitted_at


def _raise_validation_http_error(exc: RequestValidationError) -> None:
    if isinstance(exc, ResourceNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, ResourceInactiveError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


# Plain `def` handlers: arbitration blocks on per-resource locks, so these run
# in FastAPI's worker threadpool instead of on the event loop.


@router.post(
    "/reservations",
    response_model=OutcomeResponse,
    status_code=status.HTTP_200_OK,
)
def submit_reservation(
    payload: ReservationRequestBody,
    arbiter: ConflictArbiter = Depends(get_arbiter),
    tz=Depends(get_engine_timezone),
    settings: Settings = Depends(get_app_settings),
) -> OutcomeResponse:
    """Evaluate and arbitrate a booking request."""
    request = payload.to_domain(tz, _resolve_submitted_at(payload, tz, settings))
    try:
        outcome = arbiter.submit(request)
        return OutcomeResponse.from_domain(outcome)
    except RequestValidationError as exc:
        _raise_validation_http_error(exc)
    except (ArbitrationHaltedError, ArbitrationTimeoutError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except (LedgerError, RuntimeError) as exc:
        logger.exception("Commit failure during arbitration")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Arbitration failed; resource halted",
        ) from exc


@router.post(
    "/availability/evaluate",
    response_model=VerdictResponse,
    status_code=status.HTTP_200_OK,
)
def evaluate_availability(
    payload: ReservationRequestBody,
    arbiter: ConflictArbiter = Depends(get_arbiter),
    tz=Depends(get_engine_timezone),
    settings: Settings = Depends(get_app_settings),
) -> VerdictResponse:
    """Dry run against schedule and restrictions; the ledger is not consulted."""
    request = payload.to_domain(tz, _resolve_submitted_at(payload, tz, settings))
    try:
        verdict = arbiter.evaluator.evaluate(request)
        return VerdictResponse.from_domain(verdict)
    except RequestValidationError as exc:
        _raise_validation_http_error(exc)


@router.get(
    "/reservations/{reservation_id}",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
)
def get_reservation(
    reservation_id: str,
    ledger: ReservationLedger = Depends(get_ledger),
) -> ReservationResponse:
    reservation = ledger.get(reservation_id)
    if reservation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Reservation {reservation_id} not found",
        )
    return ReservationResponse.from_domain(reservation)


@router.post(
    "/reservations/{reservation_id}/cancel",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
)
def cancel_reservation(
    reservation_id: str,
    arbiter: ConflictArbiter = Depends(get_arbiter),
) -> ReservationResponse:
    try:
        result = arbiter.cancel(reservation_id)
    except (ArbitrationHaltedError, ArbitrationTimeoutError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    if result.status is CancelStatus.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Reservation {reservation_id} not found",
        )
    if result.status is CancelStatus.ALREADY_TERMINAL:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Reservation {reservation_id} is already "
                f"{result.reservation.status.value if result.reservation else 'terminal'}"
            ),
        )
    return ReservationResponse.from_domain(result.reservation)
