"""Hand-off point for requesters whose reservations were preempted."""

from __future__ import annotations

from typing import Protocol, Sequence

from booking_engine.domain.models import Reservation
from booking_engine.utils.logger import get_logger


logger = get_logger(__name__)


class PreemptionNotifier(Protocol):
    def notify_preempted(
        self,
        preempting: Reservation,
        preempted: Sequence[Reservation],
    ) -> None:
        ...


class LoggingPreemptionNotifier:
    """Default notifier: records the hand-off in the log for the delivery collaborator."""

    def notify_preempted(
        self,
        preempting: Reservation,
        preempted: Sequence[Reservation],
    ) -> None:
        for reservation in preempted:
            logger.info(
                "Reservation preempted | reservation_id=%s | code=%s | requester_id=%s | "
                "resource_id=%s | preempted_by=%s",
                reservation.reservation_id,
                reservation.code,
                reservation.requester_id,
                reservation.resource_id,
                preempting.reservation_id,
            )
