"""
Application service for slot availability queries.

The service fetches the committed bookings overlapping the requested range
via the store and delegates the grid calculation to the domain-level
``SlotCalculator``. Nothing is cached between calls, so a slot lost to a
concurrent booking shows up as booked on the very next query. The read is
retried on StoreUnavailable like every other read step.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Callable, List, Optional

import pendulum
from pendulum import DateTime

from ..domain.models import UTC, Interval, Slot
from ..domain.slot_calculator import SlotCalculator
from .booking_store import BookingStoreProtocol
from .retry import ReadRetry


class AvailabilityService:
    """
    Orchestrates committed-booking retrieval and slot calculation.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        slot_calculator: SlotCalculator,
        *,
        clock: Optional[Callable[[], DateTime]] = None,
        retry_attempts: int = 3,
        backoff_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._slot_calculator = slot_calculator
        self._clock = clock or (lambda: pendulum.now(UTC))
        self._read_retry = ReadRetry(retry_attempts, backoff_seconds, sleep)

    @property
    def timezone(self) -> str:
        return self._slot_calculator.template.timezone

    def find_slots(self, time_range: Interval, slot_duration: timedelta) -> List[Slot]:
        """
        Retrieve a committed snapshot for the range and compute the slot grid.
        """
        committed = self.occupied(time_range)

        return self._slot_calculator.compute_slots(
            time_range=time_range,
            slot_duration=slot_duration,
            committed=committed,
            now=self._clock(),
        )

    def occupied(self, time_range: Interval) -> List[Interval]:
        """Return the committed intervals overlapping the range."""
        bookings = self._read_retry(lambda: self._store.list_overlapping(time_range))
        return [booking.interval for booking in bookings]

    def week_slots(self, anchor: DateTime, slot_duration: timedelta) -> List[Slot]:
        """
        Compute slots for the Monday-to-Monday local week containing ``anchor``.
        """
        week_start = anchor.in_timezone(self.timezone).start_of("week")
        week = Interval(start=week_start, end=week_start.add(weeks=1))

        return self.find_slots(week, slot_duration)
