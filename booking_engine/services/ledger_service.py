"""Authoritative per-resource reservation ledger with SQLite write-through."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from threading import RLock
from typing import Optional, Sequence

from booking_engine.domain.constraints import (
    BLOCKING_STATUSES,
    intervals_overlap,
    is_legal_transition,
)
from booking_engine.domain.models import IntervalEntry, Reservation, ReservationStatus
from booking_engine.repository.data_repository import DataRepository
from booking_engine.utils.clock import utc_now
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


class LedgerError(Exception):
    """Base exception for ledger failures."""


class ReservationNotFoundError(LedgerError):
    """Raised when a reservation id is unknown to the ledger."""


class InvalidTransitionError(LedgerError):
    """Raised when a status change is not allowed by the reservation lifecycle."""


class LedgerInvariantError(LedgerError):
    """Raised when a write would leave two CONFIRMED reservations overlapping."""


class ReservationLedger:
    """Single source of truth for overlap queries.

    Mutations (`append`, `transition`) are only issued by the arbiter while it
    holds the resource's serialization lock. The internal guard only protects
    the in-memory indexes so that calendar reads can run at any time.
    """

    def __init__(self, repository: Optional[DataRepository] = None) -> None:
        self._repository = repository
        self._guard = RLock()
        self._reservations: dict[str, Reservation] = {}
        self._ids_by_resource: dict[str, list[str]] = {}

    def load(self) -> int:
        """Rebuild the in-memory ledger from persisted rows.

        PENDING rows can only survive a crash mid-arbitration; they are closed
        as REJECTED so they stop blocking their interval.
        """
        if self._repository is None:
            return 0
        rows = self._repository.list_reservations()
        with self._guard:
            self._reservations.clear()
            self._ids_by_resource.clear()
            for reservation in rows:
                self._index(reservation)
        for reservation in rows:
            if reservation.status is ReservationStatus.PENDING:
                logger.warning(
                    "Closing stale pending reservation | reservation_id=%s | resource_id=%s",
                    reservation.reservation_id,
                    reservation.resource_id,
                )
                self.transition(reservation.reservation_id, ReservationStatus.REJECTED)
        logger.info("Ledger loaded | reservations=%s", len(rows))
        return len(rows)

    def _index(self, reservation: Reservation) -> None:
        self._reservations[reservation.reservation_id] = reservation
        self._ids_by_resource.setdefault(reservation.resource_id, []).append(
            reservation.reservation_id
        )

    def _for_resource(self, resource_id: str) -> list[Reservation]:
        with self._guard:
            ids = list(self._ids_by_resource.get(resource_id, ()))
            return [self._reservations[reservation_id] for reservation_id in ids]

    def get(self, reservation_id: str) -> Optional[Reservation]:
        with self._guard:
            return self._reservations.get(reservation_id)

    def confirmed_intervals_for(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
    ) -> list[IntervalEntry]:
        """CONFIRMED intervals overlapping [start, end), ordered by start."""
        entries = [
            IntervalEntry(
                start=reservation.start,
                end=reservation.end,
                reservation_id=reservation.reservation_id,
            )
            for reservation in self._for_resource(resource_id)
            if reservation.status is ReservationStatus.CONFIRMED
            and intervals_overlap(reservation.start, reservation.end, start, end)
        ]
        return sorted(entries, key=lambda entry: (entry.start, entry.reservation_id))

    def pending_for(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
    ) -> list[Reservation]:
        return [
            reservation
            for reservation in self._for_resource(resource_id)
            if reservation.status is ReservationStatus.PENDING
            and intervals_overlap(reservation.start, reservation.end, start, end)
        ]

    def blocking_for(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        exclude_id: Optional[str] = None,
    ) -> list[Reservation]:
        """CONFIRMED and PENDING reservations that overlap [start, end)."""
        return [
            reservation
            for reservation in self._for_resource(resource_id)
            if reservation.reservation_id != exclude_id
            and reservation.status in BLOCKING_STATUSES
            and intervals_overlap(reservation.start, reservation.end, start, end)
        ]

    def history(self, resource_id: str) -> list[Reservation]:
        """Every reservation of the resource, in append order, all statuses."""
        return self._for_resource(resource_id)

    def append(self, reservation: Reservation) -> Reservation:
        return self.apply(appended=[reservation])[0]

    def transition(
        self,
        reservation_id: str,
        new_status: ReservationStatus,
        *,
        preempted_by: Optional[str] = None,
    ) -> Reservation:
        return self.apply(transitions=[(reservation_id, new_status, preempted_by)])[0]

    def apply(
        self,
        appended: Sequence[Reservation] = (),
        transitions: Sequence[tuple[str, ReservationStatus, Optional[str]]] = (),
    ) -> list[Reservation]:
        """Validate and commit one batch of ledger changes as a unit.

        Transitions may target reservations appended in the same batch. The
        overlap invariant is checked on the resulting state, the batch is
        persisted in a single repository transaction, and only then is it
        published to the in-memory indexes. Nothing changes if any step fails.
        Returns the final version of every touched reservation, appended ones
        first.
        """
        with self._guard:
            staged: dict[str, Reservation] = {}
            inserted: list[Reservation] = []
            updates: list[tuple[Reservation, Reservation]] = []

            for reservation in appended:
                if reservation.reservation_id in self._reservations or (
                    reservation.reservation_id in staged
                ):
                    raise LedgerInvariantError(
                        f"Reservation {reservation.reservation_id} already exists"
                    )
                staged[reservation.reservation_id] = reservation
                inserted.append(reservation)

            for reservation_id, new_status, preempted_by in transitions:
                current = staged.get(reservation_id) or self._reservations.get(reservation_id)
                if current is None:
                    raise ReservationNotFoundError(f"Reservation {reservation_id} not found")
                if not is_legal_transition(current.status, new_status):
                    raise InvalidTransitionError(
                        f"Reservation {reservation_id} cannot move from "
                        f"{current.status.value} to {new_status.value}"
                    )
                updated = replace(
                    current,
                    status=new_status,
                    updated_at=utc_now(),
                    preempted_by=preempted_by if preempted_by is not None else current.preempted_by,
                )
                staged[reservation_id] = updated
                updates.append((current, updated))

            self._check_confirmed_disjoint(staged, inserted)

            if self._repository is not None:
                self._repository.commit_changes(inserted, updates)
            for reservation in inserted:
                self._index(reservation)
            for _, updated in updates:
                self._reservations[updated.reservation_id] = updated

        for reservation in inserted:
            logger.debug(
                "Ledger append | reservation_id=%s | resource_id=%s | status=%s",
                reservation.reservation_id,
                reservation.resource_id,
                reservation.status.value,
            )
        for previous, updated in updates:
            logger.debug(
                "Ledger transition | reservation_id=%s | %s -> %s",
                updated.reservation_id,
                previous.status.value,
                updated.status.value,
            )
        return list(staged.values())

    def _check_confirmed_disjoint(
        self,
        staged: dict[str, Reservation],
        inserted: Sequence[Reservation],
    ) -> None:
        for candidate in staged.values():
            if candidate.status is not ReservationStatus.CONFIRMED:
                continue
            pool = [
                staged.get(existing.reservation_id, existing)
                for existing in self._for_resource(candidate.resource_id)
            ]
            pool.extend(
                staged[reservation.reservation_id]
                for reservation in inserted
                if reservation.resource_id == candidate.resource_id
            )
            overlaps = [
                existing.reservation_id
                for existing in pool
                if existing.reservation_id != candidate.reservation_id
                and existing.status is ReservationStatus.CONFIRMED
                and intervals_overlap(existing.start, existing.end, candidate.start, candidate.end)
            ]
            if overlaps:
                raise LedgerInvariantError(
                    f"Reservation {candidate.reservation_id} would overlap confirmed {overlaps}"
                )
