"""
Domain models for intervals, the weekly template, bookings and slots.

Every instant handled by the engine is an absolute, UTC-normalised pendulum
``DateTime``. Local wall-clock values only exist at the edges (config parsing,
CLI input and display formatting).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import pendulum
from pendulum import DateTime

from .exceptions import ValidationError

UTC = "UTC"
DAY = timedelta(hours=24)

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def to_instant(value: datetime) -> DateTime:
    """
    Normalise an aware datetime to a UTC pendulum DateTime.

    Instants are truncated to whole milliseconds, the precision bookings are
    persisted with.

    Raises:
        ValidationError: If the value carries no timezone information
    """
    if not isinstance(value, datetime):
        raise ValidationError(f"Expected a datetime, got {type(value).__name__}")
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValidationError(
            f"Naive datetime {value.isoformat()} is ambiguous; attach a timezone first"
        )
    instant = pendulum.instance(value).in_timezone(UTC)
    return instant.set(microsecond=instant.microsecond // 1000 * 1000)


def parse_instant(text: str) -> DateTime:
    """Parse an ISO-8601 string carrying an explicit offset into an instant."""
    try:
        parsed = pendulum.parse(text, exact=True)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Could not parse instant '{text}': {exc}") from exc

    if not isinstance(parsed, DateTime):
        raise ValidationError(f"'{text}' is not a date and time")

    # pendulum silently assumes UTC when no offset is given
    if not _has_explicit_offset(text):
        raise ValidationError(f"Instant '{text}' must include an explicit UTC offset")

    return to_instant(parsed)


def _has_explicit_offset(text: str) -> bool:
    tail = text.strip()[10:]
    return tail.endswith("Z") or "+" in tail or "-" in tail


def instant_to_epoch_ms(value: DateTime) -> int:
    """Encode an instant as integer milliseconds since the Unix epoch."""
    return value.int_timestamp * 1000 + value.microsecond // 1000


def epoch_ms_to_instant(value: int) -> DateTime:
    """Decode integer epoch milliseconds into a UTC instant."""
    seconds, millis = divmod(int(value), 1000)
    return pendulum.from_timestamp(seconds, tz=UTC).add(microseconds=millis * 1000)


@dataclass(frozen=True)
class Interval:
    """
    Immutable half-open time range ``[start, end)``.

    Invariant: start must be before end. Both bounds are stored in UTC.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        object.__setattr__(self, "start", to_instant(self.start))
        object.__setattr__(self, "end", to_instant(self.end))
        if self.start >= self.end:
            raise ValidationError(
                f"Start time {self.start.to_iso8601_string()} must be before "
                f"end time {self.end.to_iso8601_string()}"
            )

    @classmethod
    def from_iso(cls, start: str, end: str) -> "Interval":
        return cls(start=parse_instant(start), end=parse_instant(end))

    def duration(self) -> timedelta:
        return self.end - self.start

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int(self.duration().total_seconds() // 60)

    def overlaps(self, other: "Interval") -> bool:
        """
        Check if this range shares at least one instant with another.

        Ranges that merely touch (``self.end == other.start``) do not overlap.
        """
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        """Check if the other range lies entirely inside this one."""
        return self.start <= other.start and other.end <= self.end

    def in_timezone(self, timezone: str) -> Tuple[DateTime, DateTime]:
        """Return both bounds converted to a display timezone."""
        return self.start.in_timezone(timezone), self.end.in_timezone(timezone)

    def __str__(self) -> str:
        return f"{self.start.to_iso8601_string()} - {self.end.to_iso8601_string()}"


@dataclass(frozen=True)
class Window:
    """
    An open window within one day, as offsets from local midnight.

    Invariant: 0 <= offset_start < offset_end <= 24h.
    """
    offset_start: timedelta
    offset_end: timedelta

    def __post_init__(self):
        if self.offset_start < timedelta(0) or self.offset_end > DAY:
            raise ValidationError(
                f"Window offsets must lie within one day, got {self.offset_start} - {self.offset_end}"
            )
        if self.offset_start >= self.offset_end:
            raise ValidationError(
                f"Window start {self.offset_start} must be before end {self.offset_end}"
            )

    @classmethod
    def parse(cls, text: str) -> "Window":
        """
        Parse a window written as ``HH:MM-HH:MM`` (``24:00`` closes the day).
        """
        try:
            start_text, end_text = (part.strip() for part in text.split("-"))
        except ValueError as exc:
            raise ValidationError(f"Window must look like 'HH:MM-HH:MM', got '{text}'") from exc

        return cls(offset_start=_parse_clock(start_text), offset_end=_parse_clock(end_text))

    def format(self) -> str:
        return f"{_format_clock(self.offset_start)}-{_format_clock(self.offset_end)}"


def _parse_clock(text: str) -> timedelta:
    try:
        hours_text, minutes_text = text.split(":")
        hours, minutes = int(hours_text), int(minutes_text)
    except ValueError as exc:
        raise ValidationError(f"Time must look like 'HH:MM', got '{text}'") from exc

    if not 0 <= minutes <= 59 or not 0 <= hours <= 24 or (hours == 24 and minutes):
        raise ValidationError(f"Time out of range: '{text}'")

    return timedelta(hours=hours, minutes=minutes)


def _format_clock(offset: timedelta) -> str:
    total_minutes = int(offset.total_seconds() // 60)
    return f"{total_minutes // 60:02d}:{total_minutes % 60:02d}"


@dataclass(frozen=True)
class WeeklyTemplate:
    """
    Open windows per weekday (0=Monday, 6=Sunday), repeating every week.

    Offsets are wall-clock offsets in ``timezone``. Windows of one weekday are
    kept sorted and must not overlap; touching windows are allowed.
    """
    windows: Mapping[int, Tuple[Window, ...]]
    timezone: str = UTC

    def __post_init__(self):
        normalized: Dict[int, Tuple[Window, ...]] = {}

        for weekday, day_windows in self.windows.items():
            if weekday not in range(7):
                raise ValidationError(f"Weekday must be between 0 and 6, got {weekday}")

            ordered = tuple(sorted(day_windows, key=lambda w: w.offset_start))
            for previous, current in zip(ordered, ordered[1:]):
                if current.offset_start < previous.offset_end:
                    raise ValidationError(
                        f"Windows {previous.format()} and {current.format()} on "
                        f"{WEEKDAY_NAMES[weekday]} overlap"
                    )
            if ordered:
                normalized[weekday] = ordered

        object.__setattr__(self, "windows", normalized)

    @classmethod
    def from_mapping(
        cls,
        schedule: Mapping[int, Iterable[str]],
        timezone: str = UTC,
    ) -> "WeeklyTemplate":
        """Build a template from weekday numbers mapped to ``HH:MM-HH:MM`` strings."""
        return cls(
            windows={
                weekday: tuple(Window.parse(text) for text in texts)
                for weekday, texts in schedule.items()
            },
            timezone=timezone,
        )

    def windows_for(self, weekday: int) -> Tuple[Window, ...]:
        return self.windows.get(weekday, ())

    def is_empty(self) -> bool:
        return not self.windows


@dataclass(frozen=True)
class Booking:
    """A committed booking. ``subject`` is an opaque reference to the athlete."""
    id: str
    interval: Interval
    subject: str
    note: Optional[str] = None
    created_at: DateTime = field(default_factory=lambda: to_instant(pendulum.now(UTC)))


class SlotState(str, Enum):
    OPEN = "open"
    BOOKED = "booked"


@dataclass(frozen=True)
class Slot:
    """
    A candidate booking interval derived from the template. Never persisted.
    """
    interval: Interval
    state: SlotState

    @property
    def is_open(self) -> bool:
        return self.state is SlotState.OPEN

    def format_display(self, timezone: str = UTC) -> str:
        """
        Format the slot for display.
        Format: Weekday, MM/DD/YYYY | HH:mm - HH:mm (state)
        """
        start, end = self.interval.in_timezone(timezone)
        weekday = WEEKDAY_NAMES[start.weekday()].capitalize()
        return (
            f"{weekday}, {start.format('MM/DD/YYYY')} | "
            f"{start.format('HH:mm')} - {end.format('HH:mm')} ({self.state.value})"
        )


def sort_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    return sorted(intervals, key=lambda i: (i.start, i.end))
