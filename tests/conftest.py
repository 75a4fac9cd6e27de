"""
Shared fixtures.
"""

import pendulum
import pytest

from coachslots.adapters.memory_store import InMemoryBookingStore
from coachslots.adapters.sql_store import SqlBookingStore
from coachslots.domain.models import Interval, WeeklyTemplate
from coachslots.domain.slot_calculator import SlotCalculator
from coachslots.services.availability import AvailabilityService
from coachslots.services.reservation import ReservationService

# Tuesday; the Monday used in most tests is 2030-01-07
NOW = pendulum.datetime(2030, 1, 1, 12, 0, tz="UTC")


def utc(text: str) -> pendulum.DateTime:
    return pendulum.parse(text, tz="UTC")


def interval(start: str, end: str) -> Interval:
    return Interval(start=utc(start), end=utc(end))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def monday_template():
    """Monday 17:00-20:00 UTC only."""
    return WeeklyTemplate.from_mapping({0: ["17:00-20:00"]}, timezone="UTC")


@pytest.fixture
def calculator(monday_template):
    return SlotCalculator(template=monday_template)


@pytest.fixture
def memory_store():
    return InMemoryBookingStore()


@pytest.fixture
def sql_store(tmp_path):
    store = SqlBookingStore.from_url(f"sqlite:///{tmp_path / 'bookings.db'}")
    store.create_schema()
    yield store
    store.engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run a test against every store implementation."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def reservations(store, now):
    return ReservationService(store, clock=lambda: now, backoff_seconds=0)


@pytest.fixture
def availability(store, calculator, now):
    return AvailabilityService(store, calculator, clock=lambda: now)
