"""
Tests for domain models.
"""

from datetime import datetime, timedelta, timezone

import pendulum
import pytest

from coachslots.domain.exceptions import ValidationError
from coachslots.domain.models import (
    Booking,
    Interval,
    Slot,
    SlotState,
    WeeklyTemplate,
    Window,
    epoch_ms_to_instant,
    instant_to_epoch_ms,
    parse_instant,
)


class TestInterval:
    """Tests for Interval model."""

    def test_create_valid_interval(self):
        """Test creating a valid interval."""
        start = pendulum.parse("2030-01-07 17:00", tz="UTC")
        end = pendulum.parse("2030-01-07 17:30", tz="UTC")

        iv = Interval(start=start, end=end)

        assert iv.start == start
        assert iv.end == end
        assert iv.duration_minutes() == 30

    def test_inverted_interval_raises_error(self):
        """Test that an inverted interval raises ValidationError."""
        start = pendulum.parse("2030-01-07 18:00", tz="UTC")
        end = pendulum.parse("2030-01-07 17:00", tz="UTC")

        with pytest.raises(ValidationError, match="Start time .* must be before end time"):
            Interval(start=start, end=end)

    def test_zero_length_interval_raises_error(self):
        """Zero-length intervals are rejected at construction."""
        instant = pendulum.parse("2030-01-07 17:00", tz="UTC")

        with pytest.raises(ValidationError):
            Interval(start=instant, end=instant)

    def test_validation_error_is_value_error(self):
        """Callers catching ValueError still see interval errors."""
        instant = pendulum.parse("2030-01-07 17:00", tz="UTC")

        with pytest.raises(ValueError):
            Interval(start=instant, end=instant)

    def test_naive_datetime_rejected(self):
        """Local wall-clock values without a timezone never enter the core."""
        with pytest.raises(ValidationError, match="Naive datetime"):
            Interval(start=datetime(2030, 1, 7, 17, 0), end=datetime(2030, 1, 7, 17, 30))

    def test_bounds_normalised_to_utc(self):
        """Aware datetimes in any zone are stored as UTC instants."""
        start = pendulum.datetime(2030, 1, 7, 12, 0, tz="America/New_York")
        iv = Interval(start=start, end=start.add(minutes=30))

        assert iv.start.timezone_name == "UTC"
        assert iv.start.hour == 17
        assert iv.start == start

    def test_stdlib_aware_datetime_accepted(self):
        """Standard library aware datetimes are converted too."""
        iv = Interval(
            start=datetime(2030, 1, 7, 17, 0, tzinfo=timezone.utc),
            end=datetime(2030, 1, 7, 17, 30, tzinfo=timezone.utc),
        )

        assert iv.start == pendulum.datetime(2030, 1, 7, 17, 0, tz="UTC")

    def test_equal_intervals_from_different_zones(self):
        """The same instants compare equal regardless of the input zone."""
        berlin = pendulum.datetime(2030, 1, 7, 18, 0, tz="Europe/Berlin")
        a = Interval(start=berlin, end=berlin.add(hours=1))
        b = Interval(
            start=pendulum.datetime(2030, 1, 7, 17, 0, tz="UTC"),
            end=pendulum.datetime(2030, 1, 7, 18, 0, tz="UTC"),
        )

        assert a == b

    def test_overlaps(self):
        """Test overlap detection."""
        iv1 = Interval.from_iso("2030-01-07T17:00:00+00:00", "2030-01-07T18:00:00+00:00")
        iv2 = Interval.from_iso("2030-01-07T17:30:00+00:00", "2030-01-07T18:30:00+00:00")
        iv3 = Interval.from_iso("2030-01-07T18:00:00+00:00", "2030-01-07T19:00:00+00:00")

        assert iv1.overlaps(iv2)
        assert iv2.overlaps(iv1)
        assert not iv1.overlaps(iv3)
        assert not iv3.overlaps(iv1)

    def test_contains(self):
        outer = Interval.from_iso("2030-01-07T17:00:00Z", "2030-01-07T20:00:00Z")
        inner = Interval.from_iso("2030-01-07T17:00:00Z", "2030-01-07T17:30:00Z")

        assert outer.contains(inner)
        assert not inner.contains(outer)


class TestInstantEncoding:
    """Tests for the absolute-instant encodings."""

    def test_parse_instant_with_offset(self):
        instant = parse_instant("2030-01-07T12:00:00-05:00")

        assert instant == pendulum.datetime(2030, 1, 7, 17, 0, tz="UTC")

    def test_parse_instant_with_zulu(self):
        assert parse_instant("2030-01-07T17:00:00Z").hour == 17

    def test_parse_instant_requires_offset(self):
        """A bare local date and time is ambiguous and rejected."""
        with pytest.raises(ValidationError, match="explicit UTC offset"):
            parse_instant("2030-01-07T17:00:00")

    def test_parse_instant_rejects_garbage(self):
        with pytest.raises(ValidationError):
            parse_instant("next monday")

    def test_parse_instant_rejects_date_only(self):
        with pytest.raises(ValidationError):
            parse_instant("2030-01-07")

    def test_epoch_milliseconds(self):
        """Epoch encoding keeps millisecond precision and the UTC zone."""
        instant = pendulum.datetime(2030, 1, 7, 17, 0, 0, 123000, tz="UTC")

        encoded = instant_to_epoch_ms(instant)

        assert encoded == 1894035600123
        assert epoch_ms_to_instant(encoded) == instant

    def test_instants_truncated_to_milliseconds(self):
        """Sub-millisecond digits are dropped as soon as an instant enters the domain."""
        iv = Interval(
            start=pendulum.datetime(2030, 1, 7, 17, 0, 0, 123999, tz="UTC"),
            end=pendulum.datetime(2030, 1, 7, 17, 30, tz="UTC"),
        )

        assert iv.start.microsecond == 123000
        assert epoch_ms_to_instant(instant_to_epoch_ms(iv.start)) == iv.start

    def test_parse_instant_truncates_microseconds(self):
        assert parse_instant("2030-01-07T17:00:00.000999+00:00") == pendulum.datetime(
            2030, 1, 7, 17, 0, tz="UTC"
        )


class TestWindow:
    """Tests for template windows."""

    def test_parse(self):
        window = Window.parse("17:00-20:00")

        assert window.offset_start == timedelta(hours=17)
        assert window.offset_end == timedelta(hours=20)
        assert window.format() == "17:00-20:00"

    def test_parse_end_of_day(self):
        assert Window.parse("22:00-24:00").offset_end == timedelta(hours=24)

    def test_reject_inverted(self):
        with pytest.raises(ValidationError, match="must be before end"):
            Window.parse("20:00-17:00")

    @pytest.mark.parametrize("text", ["17:00", "17-20", "25:00-26:00", "17:60-18:00", "24:30-24:45"])
    def test_reject_malformed(self, text):
        with pytest.raises(ValidationError):
            Window.parse(text)

    def test_reject_offsets_beyond_one_day(self):
        with pytest.raises(ValidationError, match="within one day"):
            Window(offset_start=timedelta(hours=23), offset_end=timedelta(hours=25))


class TestWeeklyTemplate:
    """Tests for WeeklyTemplate model."""

    def test_windows_sorted_per_weekday(self):
        template = WeeklyTemplate.from_mapping({0: ["18:00-19:00", "09:00-10:00"]})

        assert [w.format() for w in template.windows_for(0)] == ["09:00-10:00", "18:00-19:00"]

    def test_overlapping_windows_rejected(self):
        with pytest.raises(ValidationError, match="overlap"):
            WeeklyTemplate.from_mapping({0: ["17:00-19:00", "18:00-20:00"]})

    def test_touching_windows_allowed(self):
        template = WeeklyTemplate.from_mapping({0: ["17:00-18:00", "18:00-19:00"]})

        assert len(template.windows_for(0)) == 2

    def test_invalid_weekday_rejected(self):
        with pytest.raises(ValidationError, match="Weekday"):
            WeeklyTemplate.from_mapping({7: ["17:00-18:00"]})

    def test_missing_weekday_has_no_windows(self):
        template = WeeklyTemplate.from_mapping({0: ["17:00-18:00"]})

        assert template.windows_for(3) == ()
        assert not template.is_empty()

    def test_empty_days_dropped(self):
        template = WeeklyTemplate.from_mapping({0: []})

        assert template.is_empty()


class TestSlotAndBooking:
    """Tests for derived view objects."""

    def test_slot_format_display(self):
        slot = Slot(
            interval=Interval.from_iso("2030-01-07T22:00:00Z", "2030-01-07T22:30:00Z"),
            state=SlotState.OPEN,
        )

        assert slot.is_open
        assert slot.format_display("America/New_York") == "Monday, 01/07/2030 | 17:00 - 17:30 (open)"

    def test_booking_defaults(self):
        booking = Booking(
            id="b1",
            interval=Interval.from_iso("2030-01-07T17:00:00Z", "2030-01-07T17:30:00Z"),
            subject="athlete-1",
        )

        assert booking.note is None
        assert booking.created_at.timezone_name == "UTC"
