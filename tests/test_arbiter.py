from __future__ import annotations

import random
import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from threading import Event

import pytest

from booking_engine.domain.constraints import intervals_overlap
from booking_engine.domain.models import (
    OutcomeStatus,
    PriorityEntry,
    ReasonCode,
    ReservationStatus,
)
from booking_engine.repository.data_repository import DataRepository
from booking_engine.services.arbiter_service import (
    ArbitrationHaltedError,
    ArbitrationTimeoutError,
    CancelStatus,
    ConflictArbiter,
    SubmissionCancelledError,
)
from booking_engine.services.ledger_service import LedgerInvariantError, ReservationLedger


MONDAY = datetime(2026, 3, 2, tzinfo=timezone.utc)


def _at(hour: int, minute: int = 0) -> datetime:
    return MONDAY.replace(hour=hour, minute=minute)


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls = []

    def notify_preempted(self, preempting, preempted) -> None:
        self.calls.append((preempting, list(preempted)))


class BrokenLedger(ReservationLedger):
    """Fails the first batch that confirms a reservation."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.failed = False

    def apply(self, appended=(), transitions=()):
        confirms = any(status is ReservationStatus.CONFIRMED for _, status, _ in transitions)
        if confirms and not self.failed:
            self.failed = True
            raise LedgerInvariantError("simulated overlap on confirm")
        return super().apply(appended, transitions)


class FlakyRepository(DataRepository):
    """Raises a storage error on the Nth status update it writes."""

    def __init__(self, settings) -> None:
        super().__init__(settings)
        self.updates = 0
        self.fail_on_update = None

    def _update_reservation_row(self, cursor, previous, updated) -> None:
        self.updates += 1
        if self.updates == self.fail_on_update:
            raise sqlite3.OperationalError("disk I/O error")
        super()._update_reservation_row(cursor, previous, updated)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def arbiter(repository, settings, notifier) -> ConflictArbiter:
    return ConflictArbiter(repository=repository, settings=settings, notifier=notifier)


def test_free_interval_is_confirmed_with_display_code(arbiter, make_request):
    outcome = arbiter.submit(make_request(_at(9), _at(10)))
    assert outcome.status is OutcomeStatus.CONFIRMED
    reservation = arbiter.ledger.get(outcome.reservation_id)
    assert reservation.status is ReservationStatus.CONFIRMED
    assert reservation.priority_score == 1
    assert reservation.code.startswith("RSV-")
    assert len(reservation.code) == len("RSV-") + 8


def test_policy_denial_writes_nothing(arbiter, repository, make_request):
    outcome = arbiter.submit(make_request(_at(19), _at(20)))
    assert outcome.status is OutcomeStatus.REJECTED
    assert outcome.reservation_id is None
    assert outcome.reasons[0].code is ReasonCode.OUTSIDE_OPERATING_HOURS
    assert repository.count_reservations() == 0


def test_scenario_c_earlier_submission_wins_tie(arbiter, make_request):
    first = arbiter.submit(
        make_request(_at(10), _at(11), requester_id="a", submitted_at=_at(10) - timedelta(days=3))
    )
    second = arbiter.submit(
        make_request(_at(10), _at(11), requester_id="b", submitted_at=_at(10) - timedelta(days=2))
    )
    assert first.status is OutcomeStatus.CONFIRMED
    assert second.status is OutcomeStatus.REJECTED
    assert second.blocking_ids == (first.reservation_id,)
    assert second.reasons[0].code is ReasonCode.CONFLICT
    assert second.reasons[0].reservation_ids == (first.reservation_id,)
    assert arbiter.ledger.get(second.reservation_id).status is ReservationStatus.REJECTED


def test_tie_resolves_to_earlier_submission_in_either_order(arbiter, make_request):
    later = arbiter.submit(
        make_request(_at(10), _at(11), requester_id="b", submitted_at=_at(10) - timedelta(days=2))
    )
    earlier = arbiter.submit(
        make_request(_at(10), _at(11), requester_id="a", submitted_at=_at(10) - timedelta(days=3))
    )
    assert earlier.status is OutcomeStatus.PREEMPTED_OTHERS
    assert earlier.preempted_ids == (later.reservation_id,)
    confirmed = arbiter.ledger.confirmed_intervals_for("R", _at(10), _at(11))
    assert [entry.reservation_id for entry in confirmed] == [earlier.reservation_id]


def test_scenario_d_higher_priority_preempts(arbiter, notifier, make_request):
    student = arbiter.submit(make_request(_at(10), _at(11), requester_id="student"))
    admin = arbiter.submit(
        make_request(_at(10, 30), _at(10, 45), category="ADMIN", requester_id="admin")
    )
    assert admin.status is OutcomeStatus.PREEMPTED_OTHERS
    assert admin.preempted_ids == (student.reservation_id,)

    preempted = arbiter.ledger.get(student.reservation_id)
    assert preempted.status is ReservationStatus.PREEMPTED
    assert preempted.preempted_by == admin.reservation_id
    assert arbiter.ledger.get(admin.reservation_id).status is ReservationStatus.CONFIRMED

    assert len(notifier.calls) == 1
    preempting, victims = notifier.calls[0]
    assert preempting.reservation_id == admin.reservation_id
    assert [item.reservation_id for item in victims] == [student.reservation_id]


def test_preemption_leaves_non_overlapping_reservations_untouched(arbiter, make_request):
    morning = arbiter.submit(make_request(_at(9), _at(10), requester_id="m"))
    overlapped = arbiter.submit(make_request(_at(10), _at(11), requester_id="o"))
    afternoon = arbiter.submit(make_request(_at(14), _at(15), requester_id="p"))
    admin = arbiter.submit(make_request(_at(10), _at(12), category="ADMIN"))

    assert admin.preempted_ids == (overlapped.reservation_id,)
    assert arbiter.ledger.get(morning.reservation_id).status is ReservationStatus.CONFIRMED
    assert arbiter.ledger.get(afternoon.reservation_id).status is ReservationStatus.CONFIRMED


def test_lower_priority_is_rejected_against_higher(arbiter, make_request):
    teacher = arbiter.submit(make_request(_at(10), _at(11), category="TEACHER"))
    student = arbiter.submit(make_request(_at(10), _at(12), category="STUDENT"))
    assert student.status is OutcomeStatus.REJECTED
    assert student.blocking_ids == (teacher.reservation_id,)


def test_captured_priority_is_not_rescored(arbiter, repository, make_request):
    student = arbiter.submit(make_request(_at(10), _at(11)))
    repository.upsert_priority_entry(PriorityEntry("STUDENT", 50))
    admin = arbiter.submit(make_request(_at(10), _at(11), category="ADMIN"))
    assert admin.status is OutcomeStatus.PREEMPTED_OTHERS
    assert admin.preempted_ids == (student.reservation_id,)
    assert arbiter.ledger.get(student.reservation_id).priority_score == 1


def test_scenario_e_cancel_frees_interval(arbiter, make_request):
    original = arbiter.submit(make_request(_at(9), _at(10)))
    result = arbiter.cancel(original.reservation_id)
    assert result.status is CancelStatus.OK
    assert result.reservation.status is ReservationStatus.CANCELLED

    again = arbiter.submit(make_request(_at(9, 30), _at(10, 30), requester_id="user-2"))
    assert again.status is OutcomeStatus.CONFIRMED


def test_cancel_reports_missing_and_terminal(arbiter, make_request):
    assert arbiter.cancel("missing").status is CancelStatus.NOT_FOUND

    outcome = arbiter.submit(make_request(_at(9), _at(10)))
    assert arbiter.cancel(outcome.reservation_id).status is CancelStatus.OK
    second = arbiter.cancel(outcome.reservation_id)
    assert second.status is CancelStatus.ALREADY_TERMINAL
    assert second.reservation.status is ReservationStatus.CANCELLED


def test_cancel_token_stops_submission_before_commit(arbiter, repository, make_request):
    token = Event()
    token.set()
    with pytest.raises(SubmissionCancelledError):
        arbiter.submit(make_request(_at(9), _at(10)), cancel_token=token)
    assert repository.count_reservations() == 0
    assert arbiter.ledger.history("R") == []


def test_lock_timeout_is_reported(arbiter, make_request):
    lock = arbiter._lock_for("R")
    lock.acquire()
    try:
        with pytest.raises(ArbitrationTimeoutError):
            arbiter.submit(make_request(_at(9), _at(10)), timeout=0.05)
    finally:
        lock.release()
    assert arbiter.submit(make_request(_at(9), _at(10))).status is OutcomeStatus.CONFIRMED


def test_invariant_violation_halts_only_that_resource(repository, settings, make_request):
    ledger = BrokenLedger(repository=repository)
    arbiter = ConflictArbiter(repository=repository, settings=settings, ledger=ledger)

    with pytest.raises(LedgerInvariantError):
        arbiter.submit(make_request(_at(9), _at(10)))
    assert arbiter.is_halted("R")
    assert "R" in arbiter.halted_resources()

    with pytest.raises(ArbitrationHaltedError):
        arbiter.submit(make_request(_at(11), _at(12)))
    assert arbiter.submit(make_request(_at(9), _at(10), resource_id="S")).status is (
        OutcomeStatus.CONFIRMED
    )

    arbiter.resume("R")
    assert not arbiter.is_halted("R")
    assert arbiter.submit(make_request(_at(11), _at(12))).status is OutcomeStatus.CONFIRMED


def test_concurrent_equal_priority_requests_confirm_exactly_one(arbiter, make_request):
    requests = [
        make_request(
            _at(10),
            _at(11),
            requester_id=f"user-{index}",
            submitted_at=_at(10) - timedelta(days=2, minutes=index),
        )
        for index in range(8)
    ]
    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(arbiter.submit, requests))

    confirmed = arbiter.ledger.confirmed_intervals_for("R", _at(10), _at(11))
    assert len(confirmed) == 1
    winner = arbiter.ledger.get(confirmed[0].reservation_id)
    # The earliest submission ranks highest regardless of processing order.
    assert winner.requester_id == "user-7"
    assert all(outcome.reservation_id is not None for outcome in outcomes)


def test_random_concurrent_submissions_keep_confirmed_disjoint(arbiter, repository, make_request):
    rng = random.Random(20260302)
    categories = ["STUDENT", "TEACHER", "ADMIN"]
    requests = []
    for index in range(60):
        start = _at(8) + timedelta(minutes=15 * rng.randint(0, 32))
        end = start + timedelta(minutes=15 * rng.randint(1, 8))
        if end > _at(18):
            end = _at(18)
        requests.append(
            make_request(
                start,
                end,
                category=rng.choice(categories),
                requester_id=f"user-{index}",
                resource_id=rng.choice(["R", "S"]),
                submitted_at=start - timedelta(hours=rng.randint(24, 240)),
            )
        )

    with ThreadPoolExecutor(max_workers=12) as pool:
        list(pool.map(arbiter.submit, requests))

    persisted = {item.reservation_id: item for item in repository.list_reservations()}
    for resource_id in ("R", "S"):
        history = arbiter.ledger.history(resource_id)
        assert all(item.status is not ReservationStatus.PENDING for item in history)
        confirmed = [item for item in history if item.status is ReservationStatus.CONFIRMED]
        for index, left in enumerate(confirmed):
            for right in confirmed[index + 1:]:
                assert not intervals_overlap(left.start, left.end, right.start, right.end)
        for item in history:
            assert persisted[item.reservation_id].status is item.status


def test_storage_failure_mid_preemption_rolls_back_and_halts(repository, settings, make_request):
    flaky = FlakyRepository(settings)
    arbiter = ConflictArbiter(repository=flaky, settings=settings)
    first = arbiter.submit(make_request(_at(9), _at(10), requester_id="a"))
    second = arbiter.submit(make_request(_at(10), _at(11), requester_id="b"))

    # The first displaced row is written, the second write fails.
    flaky.fail_on_update = flaky.updates + 2
    with pytest.raises(RuntimeError):
        arbiter.submit(make_request(_at(9), _at(11), category="ADMIN", requester_id="admin"))

    assert arbiter.is_halted("R")
    persisted = {item.reservation_id: item for item in repository.list_reservations("R")}
    assert set(persisted) == {first.reservation_id, second.reservation_id}
    for reservation_id in (first.reservation_id, second.reservation_id):
        assert persisted[reservation_id].status is ReservationStatus.CONFIRMED
        assert arbiter.ledger.get(reservation_id).status is ReservationStatus.CONFIRMED
    assert arbiter.ledger.pending_for("R", _at(0), _at(23)) == []
    assert len(repository.list_reservation_events(first.reservation_id)) == 2

    with pytest.raises(ArbitrationHaltedError):
        arbiter.submit(make_request(_at(9), _at(11), category="TEACHER"))

    arbiter.resume("R")
    later = arbiter.submit(make_request(_at(9), _at(11), category="TEACHER", requester_id="t"))
    assert later.status is OutcomeStatus.PREEMPTED_OTHERS
    assert set(later.preempted_ids) == {first.reservation_id, second.reservation_id}


def test_storage_failure_on_cancel_halts_resource(repository, settings, make_request):
    flaky = FlakyRepository(settings)
    arbiter = ConflictArbiter(repository=flaky, settings=settings)
    outcome = arbiter.submit(make_request(_at(9), _at(10)))

    flaky.fail_on_update = flaky.updates + 1
    with pytest.raises(RuntimeError):
        arbiter.cancel(outcome.reservation_id)

    assert arbiter.is_halted("R")
    assert arbiter.ledger.get(outcome.reservation_id).status is ReservationStatus.CONFIRMED
    assert repository.list_reservations("R")[0].status is ReservationStatus.CONFIRMED
