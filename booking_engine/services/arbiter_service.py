"""Per-resource serialized commit protocol for reservation requests."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from enum import Enum
from threading import Event, Lock
from typing import Optional
from uuid import uuid4

from booking_engine.domain.models import (
    Outcome,
    OutcomeStatus,
    Reason,
    ReasonCode,
    Reservation,
    ReservationRequest,
    ReservationStatus,
)
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.availability_service import (
    AvailabilityEvaluator,
    CategoryNotRegisteredError,
)
from booking_engine.services.ledger_service import ReservationLedger
from booking_engine.services.notification_service import (
    LoggingPreemptionNotifier,
    PreemptionNotifier,
)
from booking_engine.services.priority_table import PriorityTable, UnknownCategoryError
from booking_engine.utils.clock import utc_now
from booking_engine.utils.config import Settings, get_settings
from booking_engine.utils.logger import get_alert_logger, get_logger


logger = get_logger(__name__)
alert_logger = get_alert_logger()


class ArbitrationError(Exception):
    """Base exception for arbitration failures that are not normal outcomes."""


class ArbitrationTimeoutError(ArbitrationError):
    """Raised when the resource's serialization lock was not acquired in time."""


class SubmissionCancelledError(ArbitrationError):
    """Raised when the caller cancelled before entering the critical section."""


class ArbitrationHaltedError(ArbitrationError):
    """Raised for resources halted after a failed commit or invariant violation."""


class CancelStatus(str, Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_TERMINAL = "ALREADY_TERMINAL"


@dataclass(frozen=True)
class CancelResult:
    status: CancelStatus
    reservation_id: str
    reservation: Optional[Reservation] = None


@dataclass(frozen=True)
class _Decision:
    outcome: Outcome
    committed: Optional[Reservation] = None
    preempted: tuple[Reservation, ...] = ()


class ConflictArbiter:
    """Serializes submissions per resource and decides confirm / reject / preempt.

    Evaluation against schedule and restrictions happens before the lock is
    taken. Everything from the overlap read to the final ledger write runs
    under the resource's lock, so no other submission for that resource can
    interleave.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        ledger: Optional[ReservationLedger] = None,
        evaluator: Optional[AvailabilityEvaluator] = None,
        priority_table: Optional[PriorityTable] = None,
        notifier: Optional[PreemptionNotifier] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._ledger = ledger or ReservationLedger(repository=self._repository)
        self._priority_table = priority_table or PriorityTable(
            repository=self._repository,
            settings=self._settings,
        )
        self._evaluator = evaluator or AvailabilityEvaluator(
            repository=self._repository,
            settings=self._settings,
            priority_table=self._priority_table,
        )
        self._notifier = notifier or LoggingPreemptionNotifier()
        self._locks: dict[str, Lock] = {}
        self._locks_guard = Lock()
        self._halted: dict[str, str] = {}

    @property
    def ledger(self) -> ReservationLedger:
        return self._ledger

    @property
    def evaluator(self) -> AvailabilityEvaluator:
        return self._evaluator

    def _lock_for(self, resource_id: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = Lock()
                self._locks[resource_id] = lock
            return lock

    def _acquire(self, resource_id: str, timeout: Optional[float]) -> Lock:
        wait_seconds = (
            timeout
            if timeout is not None
            else self._settings.arbitration_lock_timeout_seconds
        )
        lock = self._lock_for(resource_id)
        if not lock.acquire(timeout=wait_seconds):
            raise ArbitrationTimeoutError(
                f"Timed out after {wait_seconds:g}s waiting for resource {resource_id}"
            )
        return lock

    def is_halted(self, resource_id: str) -> bool:
        return resource_id in self._halted

    def halted_resources(self) -> dict[str, str]:
        return dict(self._halted)

    def resume(self, resource_id: str) -> None:
        """Operator action after investigating a halted resource."""
        reason = self._halted.pop(resource_id, None)
        if reason is not None:
            logger.warning("Arbitration resumed | resource_id=%s", resource_id)

    def _ensure_not_halted(self, resource_id: str) -> None:
        reason = self._halted.get(resource_id)
        if reason is not None:
            raise ArbitrationHaltedError(
                f"Arbitration for resource {resource_id} is halted: {reason}"
            )

    def _halt(self, resource_id: str, exc: Exception) -> None:
        self._halted[resource_id] = str(exc)
        alert_logger.critical(
            "Arbitration failed; resource halted | resource_id=%s | error=%r",
            resource_id,
            exc,
        )

    def submit(
        self,
        request: ReservationRequest,
        *,
        timeout: Optional[float] = None,
        cancel_token: Optional[Event] = None,
    ) -> Outcome:
        verdict = self._evaluator.evaluate(request)
        if not verdict.provisionally_admissible:
            logger.info(
                "Reservation rejected by policy | resource_id=%s | requester_id=%s | reasons=%s",
                request.resource_id,
                request.requester_id,
                [reason.code.value for reason in verdict.reasons],
            )
            return Outcome(
                status=OutcomeStatus.REJECTED,
                reservation_id=None,
                reasons=verdict.reasons,
            )

        self._ensure_not_halted(request.resource_id)
        lock = self._acquire(request.resource_id, timeout)
        try:
            if cancel_token is not None and cancel_token.is_set():
                raise SubmissionCancelledError(
                    f"Submission by {request.requester_id} was cancelled before arbitration"
                )
            self._ensure_not_halted(request.resource_id)
            try:
                priority_score = self._priority_table.score_for(request.requester_category)
            except UnknownCategoryError as exc:
                raise CategoryNotRegisteredError(str(exc)) from exc
            try:
                decision = self._arbitrate(request, priority_score)
            except Exception as exc:
                self._halt(request.resource_id, exc)
                raise
        finally:
            lock.release()

        if decision.preempted:
            self._notifier.notify_preempted(decision.committed, decision.preempted)
        logger.info(
            "Reservation arbitrated | resource_id=%s | requester_id=%s | reservation_id=%s | "
            "status=%s | blocking=%s | preempted=%s",
            request.resource_id,
            request.requester_id,
            decision.outcome.reservation_id,
            decision.outcome.status.value,
            list(decision.outcome.blocking_ids),
            list(decision.outcome.preempted_ids),
        )
        return decision.outcome

    def _new_reservation(self, request: ReservationRequest, priority_score: int) -> Reservation:
        now = utc_now()
        code = (
            f"{self._settings.reservation_code_prefix}-"
            f"{secrets.token_hex(self._settings.reservation_code_length // 2).upper()}"
        )
        return Reservation(
            reservation_id=str(uuid4()),
            code=code,
            resource_id=request.resource_id,
            requester_id=request.requester_id,
            requester_category=request.requester_category,
            priority_score=priority_score,
            start=request.start,
            end=request.end,
            submitted_at=request.submitted_at,
            status=ReservationStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    def _arbitrate(self, request: ReservationRequest, priority_score: int) -> _Decision:
        """Decide and commit in one ledger batch; the candidate is appended PENDING."""
        overlapping = self._ledger.blocking_for(
            request.resource_id,
            request.start,
            request.end,
        )
        candidate = self._new_reservation(request, priority_score)

        if not overlapping:
            committed = self._ledger.apply(
                appended=[candidate],
                transitions=[(candidate.reservation_id, ReservationStatus.CONFIRMED, None)],
            )[0]
            return _Decision(
                outcome=Outcome(
                    status=OutcomeStatus.CONFIRMED,
                    reservation_id=committed.reservation_id,
                ),
                committed=committed,
            )

        incoming_rank = candidate.rank()
        blockers = [
            existing for existing in overlapping if existing.rank() >= incoming_rank
        ]
        if blockers:
            rejected = self._ledger.apply(
                appended=[candidate],
                transitions=[(candidate.reservation_id, ReservationStatus.REJECTED, None)],
            )[0]
            blocking_ids = tuple(item.reservation_id for item in blockers)
            return _Decision(
                outcome=Outcome(
                    status=OutcomeStatus.REJECTED,
                    reservation_id=rejected.reservation_id,
                    reasons=(
                        Reason(
                            code=ReasonCode.CONFLICT,
                            message=(
                                f"Interval is held by reservations with equal or higher "
                                f"priority on {request.resource_id}"
                            ),
                            reservation_ids=blocking_ids,
                        ),
                    ),
                    blocking_ids=blocking_ids,
                ),
                committed=rejected,
            )

        displaced = sorted(overlapping, key=lambda item: (item.start, item.reservation_id))
        committed, *preempted = self._ledger.apply(
            appended=[candidate],
            transitions=[
                *(
                    (item.reservation_id, ReservationStatus.PREEMPTED, candidate.reservation_id)
                    for item in displaced
                ),
                (candidate.reservation_id, ReservationStatus.CONFIRMED, None),
            ],
        )
        return _Decision(
            outcome=Outcome(
                status=OutcomeStatus.PREEMPTED_OTHERS,
                reservation_id=committed.reservation_id,
                preempted_ids=tuple(item.reservation_id for item in preempted),
            ),
            committed=committed,
            preempted=tuple(preempted),
        )

    def cancel(self, reservation_id: str, *, timeout: Optional[float] = None) -> CancelResult:
        """Cancel a CONFIRMED reservation, freeing its interval immediately."""
        existing = self._ledger.get(reservation_id)
        if existing is None:
            return CancelResult(status=CancelStatus.NOT_FOUND, reservation_id=reservation_id)

        self._ensure_not_halted(existing.resource_id)
        lock = self._acquire(existing.resource_id, timeout)
        try:
            current = self._ledger.get(reservation_id)
            if current is None or current.status is not ReservationStatus.CONFIRMED:
                return CancelResult(
                    status=CancelStatus.ALREADY_TERMINAL,
                    reservation_id=reservation_id,
                    reservation=current,
                )
            try:
                cancelled = self._ledger.transition(reservation_id, ReservationStatus.CANCELLED)
            except Exception as exc:
                self._halt(existing.resource_id, exc)
                raise
        finally:
            lock.release()

        logger.info(
            "Reservation cancelled | reservation_id=%s | resource_id=%s",
            reservation_id,
            cancelled.resource_id,
        )
        return CancelResult(
            status=CancelStatus.OK,
            reservation_id=reservation_id,
            reservation=cancelled,
        )
