"""
Request/response surfaces for slot queries and reservations.

Payloads use camelCase keys and ISO-8601 instants with explicit offsets.
Every response is a plain dict: ``{"ok": True, ...}`` on success or
``{"ok": False, "error": {"kind": ..., "detail": ...}}`` on failure.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..domain.exceptions import (
    BookingError,
    ConflictError,
    NotFound,
    OperationCancelled,
    StoreUnavailable,
    ValidationError,
)
from ..domain.models import Booking, Interval, Slot, parse_instant
from .availability import AvailabilityService
from .reservation import CancelToken, ReservationService

MAX_SLOT_MINUTES = 24 * 60


class SlotQuery(BaseModel):
    """Slot query payload."""
    model_config = ConfigDict(populate_by_name=True)

    range_start: str = Field(alias="rangeStart")
    range_end: str = Field(alias="rangeEnd")
    slot_duration_minutes: int = Field(alias="slotDurationMinutes")

    @field_validator("slot_duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Durations must be positive multiples of 5 minutes, at most one day."""
        if value <= 0 or value % 5 or value > MAX_SLOT_MINUTES:
            raise ValueError(
                f"slotDurationMinutes must be a positive multiple of 5 up to {MAX_SLOT_MINUTES}, got {value}"
            )
        return value

    def to_interval(self) -> Interval:
        return Interval(start=parse_instant(self.range_start), end=parse_instant(self.range_end))

    def slot_duration(self) -> timedelta:
        return timedelta(minutes=self.slot_duration_minutes)


class ReservationRequest(BaseModel):
    """Reservation payload."""
    model_config = ConfigDict(populate_by_name=True)

    interval_start: str = Field(alias="intervalStart")
    interval_end: str = Field(alias="intervalEnd")
    subject_ref: str = Field(alias="subjectRef")
    note: Optional[str] = None

    def to_interval(self) -> Interval:
        return Interval(start=parse_instant(self.interval_start), end=parse_instant(self.interval_end))


class CheckRequest(BaseModel):
    """Advisory conflict check payload."""
    model_config = ConfigDict(populate_by_name=True)

    interval_start: str = Field(alias="intervalStart")
    interval_end: str = Field(alias="intervalEnd")

    def to_interval(self) -> Interval:
        return Interval(start=parse_instant(self.interval_start), end=parse_instant(self.interval_end))


def interval_to_dict(interval: Interval) -> Dict[str, str]:
    return {
        "start": interval.start.isoformat(),
        "end": interval.end.isoformat(),
    }


def slot_to_dict(slot: Slot) -> Dict[str, str]:
    return {
        "slotStart": slot.interval.start.isoformat(),
        "slotEnd": slot.interval.end.isoformat(),
        "state": slot.state.value,
    }


def booking_to_dict(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "intervalStart": booking.interval.start.isoformat(),
        "intervalEnd": booking.interval.end.isoformat(),
        "subjectRef": booking.subject,
        "note": booking.note,
        "createdAt": booking.created_at.isoformat(),
    }


def error_to_dict(error: Exception) -> Dict[str, Any]:
    """
    Map an error to a structured, distinguishable response.
    """
    if isinstance(error, pydantic.ValidationError):
        return _error("validation", {"message": "Invalid payload", "errors": _pydantic_errors(error)})
    if isinstance(error, ValidationError):
        return _error("validation", {"message": str(error)})
    if isinstance(error, ConflictError):
        return _error(
            "conflict",
            {
                "message": str(error),
                "conflicts": [interval_to_dict(i) for i in error.conflicts],
            },
        )
    if isinstance(error, NotFound):
        return _error("not_found", {"message": str(error), "id": error.booking_id})
    if isinstance(error, OperationCancelled):
        return _error("cancelled", {"message": str(error)})
    if isinstance(error, StoreUnavailable):
        return _error("unavailable", {"message": str(error)})
    raise error


def _error(kind: str, detail: Dict[str, Any]) -> Dict[str, Any]:
    return {"ok": False, "error": {"kind": kind, "detail": detail}}


def _pydantic_errors(error: pydantic.ValidationError) -> List[Dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in item["loc"]), "message": item["msg"]}
        for item in error.errors()
    ]


def query_slots(payload: Mapping[str, Any], service: AvailabilityService) -> Dict[str, Any]:
    """Slot query surface: ``{rangeStart, rangeEnd, slotDurationMinutes}``."""
    try:
        query = SlotQuery.model_validate(payload)
        slots = service.find_slots(query.to_interval(), query.slot_duration())
    except (pydantic.ValidationError, BookingError) as exc:
        return error_to_dict(exc)

    return {"ok": True, "slots": [slot_to_dict(slot) for slot in slots]}


def submit_reservation(
    payload: Mapping[str, Any],
    service: ReservationService,
    cancel_token: Optional[CancelToken] = None,
) -> Dict[str, Any]:
    """Reservation surface: ``{intervalStart, intervalEnd, subjectRef, note?}``."""
    try:
        request = ReservationRequest.model_validate(payload)
        booking = service.reserve(
            request.to_interval(),
            request.subject_ref,
            request.note,
            cancel_token=cancel_token,
        )
    except (pydantic.ValidationError, BookingError) as exc:
        return error_to_dict(exc)

    return {"ok": True, "booking": booking_to_dict(booking)}


def check_conflict(payload: Mapping[str, Any], service: ReservationService) -> Dict[str, Any]:
    """Advisory conflict surface: ``{intervalStart, intervalEnd}``."""
    try:
        request = CheckRequest.model_validate(payload)
        conflicts = service.check_conflict(request.to_interval())
    except (pydantic.ValidationError, BookingError) as exc:
        return error_to_dict(exc)

    return {
        "ok": True,
        "conflict": bool(conflicts),
        "conflicts": [interval_to_dict(i) for i in conflicts],
    }
