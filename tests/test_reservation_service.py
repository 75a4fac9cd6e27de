"""
Tests for the reservation protocol, run against every store implementation.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from coachslots.adapters.memory_store import InMemoryBookingStore
from coachslots.domain.exceptions import (
    ConflictError,
    NotFound,
    OperationCancelled,
    StoreUnavailable,
    ValidationError,
)
from coachslots.domain.models import Booking
from coachslots.services.reservation import ReservationService

from conftest import NOW, interval


class TestReserve:
    """Tests for ReservationService.reserve."""

    def test_reserve_then_listed(self, reservations, store):
        """A committed booking shows up in the next overlap query."""
        candidate = interval("2030-01-07 17:30", "2030-01-07 18:00")

        booking = reservations.reserve(candidate, "athlete-1", "first lesson")

        assert booking.interval == candidate
        assert booking.subject == "athlete-1"
        assert booking.note == "first lesson"
        listed = store.list_overlapping(interval("2030-01-07 17:00", "2030-01-07 20:00"))
        assert [b.id for b in listed] == [booking.id]
        assert listed[0].interval == candidate

    def test_second_reservation_conflicts(self, reservations):
        """Reserving the same interval twice in a row fails the second time."""
        candidate = interval("2030-01-07 18:00", "2030-01-07 18:30")
        reservations.reserve(candidate, "athlete-1")

        with pytest.raises(ConflictError) as exc_info:
            reservations.reserve(candidate, "athlete-2")

        assert exc_info.value.conflicts == (candidate,)

    def test_back_to_back_reservations_allowed(self, reservations):
        reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")
        second = reservations.reserve(interval("2030-01-07 17:30", "2030-01-07 18:00"), "athlete-2")

        assert second.subject == "athlete-2"

    def test_partial_overlap_conflicts(self, reservations):
        reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 18:00"), "athlete-1")

        with pytest.raises(ConflictError):
            reservations.reserve(interval("2030-01-07 17:30", "2030-01-07 18:30"), "athlete-2")

    def test_past_interval_rejected(self, reservations, store):
        past = interval("2029-12-31 17:00", "2029-12-31 17:30")

        with pytest.raises(ValidationError, match="future"):
            reservations.reserve(past, "athlete-1")

        assert store.list_bookings() == []

    def test_interval_starting_now_rejected(self, reservations):
        """The start must be strictly after the evaluation instant."""
        with pytest.raises(ValidationError):
            reservations.reserve(interval("2030-01-01 12:00", "2030-01-01 12:30"), "athlete-1")

    @pytest.mark.parametrize("subject", ["", "   ", None])
    def test_missing_subject_rejected(self, reservations, subject):
        with pytest.raises(ValidationError, match="subject"):
            reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), subject)

    def test_blank_note_stored_as_none(self, reservations):
        booking = reservations.reserve(
            interval("2030-01-07 17:00", "2030-01-07 17:30"), " athlete-1 ", "  "
        )

        assert booking.subject == "athlete-1"
        assert booking.note is None

    def test_cancel_token_aborts_without_side_effect(self, reservations, store):
        token = threading.Event()
        token.set()

        with pytest.raises(OperationCancelled):
            reservations.reserve(
                interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1", cancel_token=token
            )

        assert store.list_bookings() == []

    def test_unset_cancel_token_commits(self, reservations):
        booking = reservations.reserve(
            interval("2030-01-07 17:00", "2030-01-07 17:30"),
            "athlete-1",
            cancel_token=threading.Event(),
        )

        assert booking.id

    def test_concurrent_reservations_exactly_one_wins(self, reservations):
        """N concurrent attempts for one interval: one commit, N-1 conflicts."""
        attempts = 8
        candidate = interval("2030-01-07 18:00", "2030-01-07 18:30")
        barrier = threading.Barrier(attempts)

        def attempt(index):
            barrier.wait()
            try:
                return reservations.reserve(candidate, f"athlete-{index}")
            except ConflictError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            outcomes = list(pool.map(attempt, range(attempts)))

        committed = [o for o in outcomes if isinstance(o, Booking)]
        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(committed) == 1
        assert len(conflicts) == attempts - 1

    def test_concurrent_overlapping_reservations(self, reservations, store):
        """Staggered overlapping candidates never both commit."""
        candidates = [
            interval("2030-01-07 17:00", "2030-01-07 18:00"),
            interval("2030-01-07 17:30", "2030-01-07 18:30"),
            interval("2030-01-07 17:45", "2030-01-07 18:15"),
            interval("2030-01-07 17:15", "2030-01-07 17:45"),
        ]
        barrier = threading.Barrier(len(candidates))

        def attempt(candidate):
            barrier.wait()
            try:
                return reservations.reserve(candidate, "athlete")
            except ConflictError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=len(candidates)) as pool:
            outcomes = list(pool.map(attempt, candidates))

        assert sum(isinstance(o, Booking) for o in outcomes) == 1
        assert len(store.list_bookings()) == 1


class StaleReadStore(InMemoryBookingStore):
    """Store whose advisory read never sees anything, like a lagging replica."""

    def list_overlapping(self, time_range, exclude_id=None):
        return []


class FlakyReadStore(InMemoryBookingStore):
    """Store whose reads fail a fixed number of times before answering."""

    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.read_calls = 0
        self.insert_calls = 0

    def list_overlapping(self, time_range, exclude_id=None):
        self.read_calls += 1
        if self.read_calls <= self.failures:
            raise StoreUnavailable("connection reset")
        return super().list_overlapping(time_range, exclude_id)

    def insert_if_no_overlap(self, interval, subject, note=None):
        self.insert_calls += 1
        return super().insert_if_no_overlap(interval, subject, note)


class FailingCommitStore(InMemoryBookingStore):
    def __init__(self):
        super().__init__()
        self.insert_calls = 0

    def insert_if_no_overlap(self, interval, subject, note=None):
        self.insert_calls += 1
        raise StoreUnavailable("commit failed")


class TestStoreBehaviour:
    """Tests for how the protocol relies on the store."""

    def test_commit_step_rejects_even_when_advisory_check_misses(self):
        """Exclusivity comes from the atomic commit, not the advisory read."""
        store = StaleReadStore()
        service = ReservationService(store, clock=lambda: NOW)
        candidate = interval("2030-01-07 18:00", "2030-01-07 18:30")
        service.reserve(candidate, "athlete-1")

        with pytest.raises(ConflictError) as exc_info:
            service.reserve(candidate, "athlete-2")

        assert exc_info.value.conflicts == (candidate,)

    def test_read_step_retried_on_store_unavailable(self):
        store = FlakyReadStore(failures=2)
        delays = []
        service = ReservationService(
            store, clock=lambda: NOW, retry_attempts=3, backoff_seconds=0.5, sleep=delays.append
        )

        booking = service.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")

        assert booking.id
        assert store.read_calls == 3
        assert delays == [0.5, 1.0]

    def test_read_retries_are_bounded(self):
        store = FlakyReadStore(failures=5)
        service = ReservationService(store, clock=lambda: NOW, retry_attempts=3, sleep=lambda _: None)

        with pytest.raises(StoreUnavailable):
            service.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")

        assert store.read_calls == 3
        assert store.insert_calls == 0

    def test_commit_step_is_not_retried(self):
        store = FailingCommitStore()
        service = ReservationService(store, clock=lambda: NOW, sleep=lambda _: None)

        with pytest.raises(StoreUnavailable):
            service.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")

        assert store.insert_calls == 1

    def test_retry_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            ReservationService(InMemoryBookingStore(), retry_attempts=0)


class TestReschedule:
    """Tests for ReservationService.reschedule."""

    def test_reschedule_overlapping_own_interval(self, reservations):
        """Moving a booking onto part of its own old interval is not a conflict."""
        booking = reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 18:00"), "athlete-1")

        moved = reservations.reschedule(booking.id, interval("2030-01-07 17:30", "2030-01-07 18:30"))

        assert moved.id == booking.id
        assert moved.interval == interval("2030-01-07 17:30", "2030-01-07 18:30")
        assert moved.subject == "athlete-1"

    def test_reschedule_into_other_booking_conflicts(self, reservations, store):
        first = reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")
        reservations.reserve(interval("2030-01-07 18:00", "2030-01-07 18:30"), "athlete-2")

        with pytest.raises(ConflictError):
            reservations.reschedule(first.id, interval("2030-01-07 18:15", "2030-01-07 18:45"))

        assert store.get(first.id).interval == interval("2030-01-07 17:00", "2030-01-07 17:30")

    def test_reschedule_frees_old_interval(self, reservations):
        booking = reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")
        reservations.reschedule(booking.id, interval("2030-01-07 19:00", "2030-01-07 19:30"))

        other = reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-2")

        assert other.subject == "athlete-2"

    def test_reschedule_unknown_booking(self, reservations):
        with pytest.raises(NotFound):
            reservations.reschedule("missing", interval("2030-01-07 17:00", "2030-01-07 17:30"))

    def test_reschedule_into_past_rejected(self, reservations):
        booking = reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")

        with pytest.raises(ValidationError):
            reservations.reschedule(booking.id, interval("2029-12-01 17:00", "2029-12-01 17:30"))

    def test_concurrent_reschedules_onto_same_interval(self, reservations, store):
        """Two bookings racing to move onto one interval: exactly one moves."""
        first = reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")
        second = reservations.reserve(interval("2030-01-07 17:30", "2030-01-07 18:00"), "athlete-2")
        target = interval("2030-01-07 19:00", "2030-01-07 19:30")
        barrier = threading.Barrier(2)

        def attempt(booking_id):
            barrier.wait()
            try:
                return reservations.reschedule(booking_id, target)
            except ConflictError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(attempt, [first.id, second.id]))

        moved = [o for o in outcomes if isinstance(o, Booking)]
        assert len(moved) == 1
        assert sum(isinstance(o, ConflictError) for o in outcomes) == 1
        assert [b.interval for b in store.list_overlapping(target)] == [target]
        assert len(store.list_bookings()) == 2


class TestCancelAndQueries:
    """Tests for cancellation, listing and advisory checks."""

    def test_cancel_removes_booking(self, reservations, store):
        booking = reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")

        reservations.cancel(booking.id)

        assert store.list_bookings() == []
        with pytest.raises(NotFound):
            store.get(booking.id)

    def test_cancel_unknown_booking(self, reservations):
        with pytest.raises(NotFound) as exc_info:
            reservations.cancel("missing")

        assert exc_info.value.booking_id == "missing"

    def test_check_conflict_is_advisory(self, reservations, store):
        existing = interval("2030-01-07 18:00", "2030-01-07 18:30")
        reservations.reserve(existing, "athlete-1")

        assert reservations.check_conflict(interval("2030-01-07 18:15", "2030-01-07 18:45")) == [existing]
        assert reservations.check_conflict(interval("2030-01-07 18:30", "2030-01-07 19:00")) == []
        assert len(store.list_bookings()) == 1

    def test_list_bookings_by_range(self, reservations):
        reservations.reserve(interval("2030-01-14 17:00", "2030-01-14 17:30"), "athlete-2")
        reservations.reserve(interval("2030-01-07 17:00", "2030-01-07 17:30"), "athlete-1")

        everything = reservations.list_bookings()
        first_week = reservations.list_bookings(
            interval("2030-01-07 00:00", "2030-01-14 00:00").start,
            interval("2030-01-07 00:00", "2030-01-14 00:00").end,
        )

        assert [b.subject for b in everything] == ["athlete-1", "athlete-2"]
        assert [b.subject for b in first_week] == ["athlete-1"]
