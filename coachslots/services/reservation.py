"""
Reservation protocol: validate, advisory check, atomic commit.

The advisory check only exists to reject obvious conflicts cheaply and with a
helpful message. Exclusivity is guaranteed by the store's atomic
``insert_if_no_overlap`` / ``replace_if_no_overlap`` operations, never by the
advisory check alone.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Protocol

import pendulum
from pendulum import DateTime

from ..domain.exceptions import (
    ConflictError,
    OperationCancelled,
    ValidationError,
)
from ..domain.models import UTC, Booking, Interval
from .booking_store import BookingStoreProtocol
from .retry import ReadRetry

logger = logging.getLogger(__name__)


class CancelToken(Protocol):
    """Anything exposing ``is_set()``, e.g. ``threading.Event``."""

    def is_set(self) -> bool:
        ...


class ReservationService:
    """
    Runs reservation attempts through the states
    validating -> checking -> committing -> committed | rejected.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        *,
        clock: Optional[Callable[[], DateTime]] = None,
        retry_attempts: int = 3,
        backoff_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._clock = clock or (lambda: pendulum.now(UTC))
        self._read_retry = ReadRetry(retry_attempts, backoff_seconds, sleep)

    def reserve(
        self,
        candidate: Interval,
        subject: str,
        note: Optional[str] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Booking:
        """
        Create a booking for the candidate interval.

        Raises:
            ValidationError: If the interval is in the past or subject is empty
            ConflictError: If the interval overlaps a committed booking
            OperationCancelled: If the token fired before committing
            StoreUnavailable: If the store could not be reached
        """
        logger.debug("reserve %s: validating", candidate)
        self._validate_candidate(candidate)
        subject = self._validate_subject(subject)
        note = self._normalize_note(note)

        logger.debug("reserve %s: checking", candidate)
        self._raise_on_advisory_conflict(candidate)

        self._abort_if_cancelled(cancel_token, candidate)

        logger.debug("reserve %s: committing", candidate)
        try:
            booking = self._store.insert_if_no_overlap(candidate, subject, note)
        except ConflictError as exc:
            logger.warning("reserve %s: rejected at commit (%s)", candidate, exc)
            raise

        logger.info("reserve %s: committed as %s", candidate, booking.id)
        return booking

    def reschedule(
        self,
        booking_id: str,
        new_interval: Interval,
        cancel_token: Optional[CancelToken] = None,
    ) -> Booking:
        """
        Move an existing booking to a new interval.

        The booking's own prior interval never counts as a conflict.

        Raises:
            ValidationError, ConflictError, NotFound, OperationCancelled,
            StoreUnavailable
        """
        logger.debug("reschedule %s -> %s: validating", booking_id, new_interval)
        self._validate_candidate(new_interval)
        self._read_retry(lambda: self._store.get(booking_id))

        logger.debug("reschedule %s -> %s: checking", booking_id, new_interval)
        self._raise_on_advisory_conflict(new_interval, exclude_id=booking_id)

        self._abort_if_cancelled(cancel_token, new_interval)

        logger.debug("reschedule %s -> %s: committing", booking_id, new_interval)
        try:
            booking = self._store.replace_if_no_overlap(booking_id, new_interval)
        except ConflictError as exc:
            logger.warning("reschedule %s: rejected at commit (%s)", booking_id, exc)
            raise

        logger.info("reschedule %s: committed at %s", booking_id, booking.interval)
        return booking

    def cancel(self, booking_id: str) -> None:
        """Delete a booking. Raises NotFound if it does not exist."""
        self._store.delete_by_id(booking_id)
        logger.info("cancelled booking %s", booking_id)

    def check_conflict(self, candidate: Interval) -> List[Interval]:
        """
        Advisory check returning the committed intervals overlapping a candidate.

        An empty result does not reserve anything.
        """
        return [booking.interval for booking in self._list_overlapping(candidate)]

    def list_bookings(
        self,
        start: Optional[DateTime] = None,
        end: Optional[DateTime] = None,
    ) -> List[Booking]:
        return self._read_retry(lambda: self._store.list_bookings(start, end))

    def _validate_candidate(self, candidate: Interval) -> None:
        now = self._clock()
        if candidate.start <= now:
            raise ValidationError(
                f"Bookings must start in the future; {candidate.start.to_iso8601_string()} "
                f"is not after {now.in_timezone(UTC).to_iso8601_string()}"
            )

    @staticmethod
    def _validate_subject(subject: Optional[str]) -> str:
        if subject is None or not str(subject).strip():
            raise ValidationError("A subject reference is required")
        return str(subject).strip()

    @staticmethod
    def _normalize_note(note: Optional[str]) -> Optional[str]:
        if note is None:
            return None
        note = note.strip()
        return note or None

    def _raise_on_advisory_conflict(
        self,
        candidate: Interval,
        exclude_id: Optional[str] = None,
    ) -> None:
        existing = self._list_overlapping(candidate, exclude_id=exclude_id)
        if existing:
            conflicts = [booking.interval for booking in existing]
            logger.info("%s: rejected by advisory check, %d overlap(s)", candidate, len(conflicts))
            raise ConflictError(
                f"Interval {candidate} overlaps {len(conflicts)} existing booking(s)",
                conflicts=conflicts,
            )

    @staticmethod
    def _abort_if_cancelled(cancel_token: Optional[CancelToken], candidate: Interval) -> None:
        if cancel_token is not None and cancel_token.is_set():
            logger.info("%s: cancelled before commit", candidate)
            raise OperationCancelled(f"Reservation for {candidate} was cancelled before commit")

    def _list_overlapping(
        self,
        candidate: Interval,
        exclude_id: Optional[str] = None,
    ) -> List[Booking]:
        return self._read_retry(
            lambda: self._store.list_overlapping(candidate, exclude_id=exclude_id)
        )
