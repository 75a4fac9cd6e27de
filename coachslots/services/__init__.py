"""
Service layer helpers that orchestrate the store and domain logic.
"""

from .availability import AvailabilityService
from .booking_store import BookingStoreProtocol
from .reservation import ReservationService

__all__ = ["AvailabilityService", "BookingStoreProtocol", "ReservationService"]
