"""
Adapters layer - Booking store implementations.
"""

from .memory_store import InMemoryBookingStore
from .sql_store import SqlBookingStore

__all__ = ["InMemoryBookingStore", "SqlBookingStore"]
