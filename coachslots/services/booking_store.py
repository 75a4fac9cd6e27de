"""
Contract of the durable booking store consumed by the services.

The services only depend on this protocol, which makes it easy to plug in the
SQL adapter or the in-memory implementation in tests.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from pendulum import DateTime

from ..domain.models import Booking, Interval


class BookingStoreProtocol(Protocol):
    """Protocol describing the store behaviour needed by the services."""

    def list_overlapping(
        self,
        time_range: Interval,
        exclude_id: Optional[str] = None,
    ) -> List[Booking]:
        """Return committed bookings whose interval overlaps the range."""

    def insert_if_no_overlap(
        self,
        interval: Interval,
        subject: str,
        note: Optional[str] = None,
    ) -> Booking:
        """
        Atomically insert a booking unless an overlapping one exists.

        Raises ConflictError when an overlap is found at commit time.
        """

    def replace_if_no_overlap(self, booking_id: str, new_interval: Interval) -> Booking:
        """
        Atomically move a booking, ignoring its own prior interval.

        Raises ConflictError or NotFound.
        """

    def delete_by_id(self, booking_id: str) -> None:
        """Delete a booking. Raises NotFound when the id is unknown."""

    def get(self, booking_id: str) -> Booking:
        """Fetch a booking. Raises NotFound when the id is unknown."""

    def list_bookings(
        self,
        start: Optional[DateTime] = None,
        end: Optional[DateTime] = None,
    ) -> List[Booking]:
        """Return bookings starting in ``[start, end)``, ordered by start."""

    def ping(self) -> bool:
        """Return True when the store answers."""
