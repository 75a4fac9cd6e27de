"""
Domain layer - Pure business logic without external dependencies.
"""

from .conflicts import conflicts_with_any, find_conflicts, overlaps
from .exceptions import (
    BookingError,
    ConfigError,
    ConflictError,
    NotFound,
    OperationCancelled,
    StoreUnavailable,
    ValidationError,
)
from .models import Booking, Interval, Slot, SlotState, WeeklyTemplate, Window
from .slot_calculator import SlotCalculator

__all__ = [
    "Booking",
    "BookingError",
    "ConfigError",
    "ConflictError",
    "Interval",
    "NotFound",
    "OperationCancelled",
    "Slot",
    "SlotCalculator",
    "SlotState",
    "StoreUnavailable",
    "ValidationError",
    "WeeklyTemplate",
    "Window",
    "conflicts_with_any",
    "find_conflicts",
    "overlaps",
]
