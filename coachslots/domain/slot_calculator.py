"""
Core business logic for calculating bookable time slots.

This is the heart of the application - pure domain logic without any
external dependencies (no database, no I/O). The calculator holds no state
besides the read-only weekly template, so one instance can serve concurrent
requests.
"""

from datetime import timedelta
from typing import Iterable, List, Optional

import pendulum
from pendulum import DateTime

from .conflicts import conflicts_with_any
from .exceptions import ValidationError
from .models import DAY, UTC, Interval, Slot, SlotState, WeeklyTemplate, Window, sort_intervals


class SlotCalculator:
    """
    Expands a weekly template into discrete slots and marks them open or booked.

    Algorithm:
    1. Walk every local day touched by the requested range
    2. Translate that weekday's template windows into absolute instants
    3. Cut each window into steps of the slot duration
    4. Drop slots outside the range or not in the future
    5. Mark each remaining slot booked if it overlaps a committed interval
    """

    def __init__(self, template: WeeklyTemplate):
        self.template = template

    def compute_slots(
        self,
        time_range: Interval,
        slot_duration: timedelta,
        committed: Iterable[Interval],
        now: Optional[DateTime] = None,
    ) -> List[Slot]:
        """
        Compute the slot grid for a range.

        Args:
            time_range: Range to expand the template over
            slot_duration: Length of every slot
            committed: Snapshot of committed booking intervals
            now: Evaluation instant; slots starting at or before it are skipped

        Returns:
            Slots ordered by start time

        Raises:
            ValidationError: If the slot duration is not positive
        """
        if slot_duration <= timedelta(0):
            raise ValidationError(f"Slot duration must be positive, got {slot_duration}")

        evaluation_instant = now if now is not None else pendulum.now(UTC)
        committed_snapshot = sort_intervals(committed)

        slots: List[Slot] = []
        for window_block in self._get_window_blocks(time_range):
            for candidate in self._split_block(window_block, slot_duration):
                if not time_range.contains(candidate):
                    continue
                if candidate.start <= evaluation_instant:
                    continue

                state = (
                    SlotState.BOOKED
                    if conflicts_with_any(candidate, committed_snapshot)
                    else SlotState.OPEN
                )
                slots.append(Slot(interval=candidate, state=state))

        slots.sort(key=lambda s: s.interval.start)
        return slots

    def open_slots(
        self,
        time_range: Interval,
        slot_duration: timedelta,
        committed: Iterable[Interval],
        now: Optional[DateTime] = None,
    ) -> List[Slot]:
        """Convenience filter returning only the open slots."""
        return [
            slot for slot in self.compute_slots(time_range, slot_duration, committed, now)
            if slot.is_open
        ]

    def _get_window_blocks(self, time_range: Interval) -> List[Interval]:
        """
        Generate the absolute template windows for every local day in the range.
        """
        blocks: List[Interval] = []
        tz = self.template.timezone

        current = time_range.start.in_timezone(tz).start_of("day")
        range_end = time_range.end.in_timezone(tz)

        while current < range_end:
            for window in self.template.windows_for(current.weekday()):
                block = self._window_on_day(current, window)
                if block is not None and block.overlaps(time_range):
                    blocks.append(block)

            current = current.add(days=1)

        return blocks

    def _window_on_day(self, day: DateTime, window: Window) -> Optional[Interval]:
        """
        Anchor a window's wall-clock offsets to a specific local day.

        Returns None for a window lying entirely inside a spring-forward gap.
        """
        start = self._local_instant(day, window.offset_start, later=True)
        end = self._local_instant(day, window.offset_end, later=False)
        if end <= start:
            end = self._local_instant(day, window.offset_end, later=True)
        if start >= end:
            return None

        return Interval(start=start, end=end)

    def _local_instant(self, day: DateTime, offset: timedelta, *, later: bool) -> DateTime:
        """
        Resolve a wall-clock offset on a local day to an instant.

        A time repeated by a fall-back transition resolves to its later or
        earlier occurrence. A time skipped by a spring-forward transition
        resolves to the first instant after the gap.
        """
        if offset == DAY:
            day, offset = day.add(days=1), timedelta(0)

        total_seconds = int(offset.total_seconds())
        fields = (total_seconds // 3600, (total_seconds % 3600) // 60, total_seconds % 60)
        tz = self.template.timezone

        first = pendulum.datetime(day.year, day.month, day.day, *fields, tz=tz, fold=0)
        second = pendulum.datetime(day.year, day.month, day.day, *fields, tz=tz, fold=1)
        if (second.hour, second.minute, second.second) != fields:
            return self._end_of_gap(first, second)

        return second if later else first

    @staticmethod
    def _end_of_gap(first: DateTime, second: DateTime) -> DateTime:
        # Bisect for the offset change between the two resolutions of a skipped time
        tz = first.timezone
        before, after = sorted((first, second))
        offset = before.utcoffset()
        low, high = before.int_timestamp, after.int_timestamp

        while high - low > 1:
            middle = (low + high) // 2
            if pendulum.from_timestamp(middle, tz=tz).utcoffset() == offset:
                low = middle
            else:
                high = middle

        return pendulum.from_timestamp(high, tz=tz)

    @staticmethod
    def _split_block(block: Interval, slot_duration: timedelta) -> List[Interval]:
        """
        Cut a window into consecutive slots; a trailing remainder is dropped.

        Example:
        Window: 17:00 - 18:45, duration 30 min
        Result: [17:00-17:30, 17:30-18:00, 18:00-18:30]
        """
        pieces: List[Interval] = []
        slot_start = block.start

        while slot_start + slot_duration <= block.end:
            pieces.append(Interval(start=slot_start, end=slot_start + slot_duration))
            slot_start = slot_start + slot_duration

        return pieces
