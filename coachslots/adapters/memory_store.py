"""
In-memory booking store for tests and the ``--seed`` CLI option.
"""

import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import pendulum
from pendulum import DateTime

from ..domain.conflicts import find_conflicts
from ..domain.exceptions import ConflictError, NotFound, ValidationError
from ..domain.models import UTC, Booking, Interval, to_instant

logger = logging.getLogger(__name__)


class InMemoryBookingStore:
    """
    Booking store keeping everything in a dict.

    There is no storage engine to provide atomicity here, so every
    check-then-write runs under one process-wide lock and re-runs the overlap
    check while holding it.
    """

    def __init__(self, bookings: Optional[List[Booking]] = None):
        self._lock = threading.Lock()
        self._bookings: Dict[str, Booking] = {}

        for booking in bookings or []:
            if booking.id in self._bookings:
                raise ValidationError(f"Duplicate booking id: {booking.id}")
            conflicts = find_conflicts(
                booking.interval, [b.interval for b in self._bookings.values()]
            )
            if conflicts:
                raise ValidationError(
                    f"Booking {booking.id} at {booking.interval} overlaps "
                    f"{len(conflicts)} other booking(s)"
                )
            self._bookings[booking.id] = booking

    @classmethod
    def from_json(cls, data_file: Path) -> "InMemoryBookingStore":
        """
        Seed a store from a JSON list of bookings.

        Expected item format:
        {"id": "...", "start": "2030-01-07T18:00:00+00:00",
         "end": "2030-01-07T18:30:00+00:00", "subject": "...", "note": null}

        Raises:
            FileNotFoundError: If the file does not exist
            ValidationError: If the file is malformed or its bookings overlap
        """
        if not data_file.exists():
            raise FileNotFoundError(f"Seed file not found: {data_file}")

        try:
            with open(data_file, "r", encoding="utf-8") as f:
                items = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid JSON in {data_file}: {exc}") from exc

        if not isinstance(items, list):
            raise ValidationError(f"Seed file {data_file} must contain a list of bookings")

        bookings: List[Booking] = []
        for item in items:
            if not isinstance(item, dict):
                raise ValidationError(f"Invalid booking in {data_file}: expected an object, got {item!r}")
            try:
                bookings.append(
                    Booking(
                        id=str(item.get("id") or uuid.uuid4()),
                        interval=Interval.from_iso(item["start"], item["end"]),
                        subject=item["subject"],
                        note=item.get("note"),
                    )
                )
            except (KeyError, ValidationError) as exc:
                raise ValidationError(f"Invalid booking in {data_file}: {exc}") from exc

        return cls(bookings)

    def list_overlapping(
        self,
        time_range: Interval,
        exclude_id: Optional[str] = None,
    ) -> List[Booking]:
        with self._lock:
            return self._overlapping(time_range, exclude_id)

    def insert_if_no_overlap(
        self,
        interval: Interval,
        subject: str,
        note: Optional[str] = None,
    ) -> Booking:
        with self._lock:
            self._raise_if_overlapping(interval)

            booking = Booking(
                id=str(uuid.uuid4()),
                interval=interval,
                subject=subject,
                note=note,
                created_at=to_instant(pendulum.now(UTC)),
            )
            self._bookings[booking.id] = booking
            return booking

    def replace_if_no_overlap(self, booking_id: str, new_interval: Interval) -> Booking:
        with self._lock:
            existing = self._bookings.get(booking_id)
            if existing is None:
                raise NotFound(booking_id)

            self._raise_if_overlapping(new_interval, exclude_id=booking_id)

            moved = Booking(
                id=existing.id,
                interval=new_interval,
                subject=existing.subject,
                note=existing.note,
                created_at=existing.created_at,
            )
            self._bookings[booking_id] = moved
            return moved

    def delete_by_id(self, booking_id: str) -> None:
        with self._lock:
            if self._bookings.pop(booking_id, None) is None:
                raise NotFound(booking_id)

    def get(self, booking_id: str) -> Booking:
        with self._lock:
            booking = self._bookings.get(booking_id)
        if booking is None:
            raise NotFound(booking_id)
        return booking

    def list_bookings(
        self,
        start: Optional[DateTime] = None,
        end: Optional[DateTime] = None,
    ) -> List[Booking]:
        with self._lock:
            bookings = list(self._bookings.values())

        return sorted(
            (
                b for b in bookings
                if (start is None or b.interval.start >= start)
                and (end is None or b.interval.start < end)
            ),
            key=lambda b: b.interval.start,
        )

    def ping(self) -> bool:
        return True

    def _overlapping(self, time_range: Interval, exclude_id: Optional[str] = None) -> List[Booking]:
        return sorted(
            (
                b for b in self._bookings.values()
                if b.id != exclude_id and b.interval.overlaps(time_range)
            ),
            key=lambda b: b.interval.start,
        )

    def _raise_if_overlapping(self, interval: Interval, exclude_id: Optional[str] = None) -> None:
        candidates = [
            b.interval for b in self._bookings.values()
            if b.id != exclude_id
        ]
        conflicts = find_conflicts(interval, candidates)
        if conflicts:
            logger.debug("Commit of %s blocked by %d overlap(s)", interval, len(conflicts))
            raise ConflictError(
                f"Interval {interval} overlaps {len(conflicts)} existing booking(s)",
                conflicts=conflicts,
            )
