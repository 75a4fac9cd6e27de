"""
Domain-specific exception hierarchy for the booking engine.
"""

from __future__ import annotations

from typing import Iterable, Tuple, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .models import Interval


class BookingError(Exception):
    """Base class for all application-level errors."""


class ValidationError(BookingError, ValueError):
    """Raised for malformed or nonsensical intervals, durations or subjects."""


class ConflictError(BookingError):
    """Raised when an interval overlaps an already committed booking."""

    def __init__(self, message: str, conflicts: Iterable["Interval"] = ()):
        super().__init__(message)
        self.conflicts: Tuple["Interval", ...] = tuple(conflicts)


class NotFound(BookingError, LookupError):
    """Raised when an operation targets a booking id that does not exist."""

    def __init__(self, booking_id: str):
        super().__init__(f"Booking not found: {booking_id}")
        self.booking_id = booking_id


class StoreUnavailable(BookingError):
    """Raised when the booking store cannot be reached or fails to answer."""


class OperationCancelled(BookingError):
    """Raised when a caller cancels a reservation before it is committed."""


class ConfigError(BookingError, ValueError):
    """Raised when the configuration file cannot be used."""
