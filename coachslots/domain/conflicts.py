"""
Interval conflict detection.

All checks use half-open semantics: ``[a.start, a.end)`` and
``[b.start, b.end)`` conflict iff ``a.start < b.end and b.start < a.end``.
Back-to-back bookings (``a.end == b.start``) never conflict.
"""

from typing import Iterable, List

from .models import Interval


def overlaps(a: Interval, b: Interval) -> bool:
    """Check if two intervals share at least one instant."""
    return a.overlaps(b)


def conflicts_with_any(candidate: Interval, committed: Iterable[Interval]) -> bool:
    """Return True on the first committed interval overlapping the candidate."""
    return any(overlaps(candidate, existing) for existing in committed)


def find_conflicts(candidate: Interval, committed: Iterable[Interval]) -> List[Interval]:
    """Return every committed interval overlapping the candidate, in start order."""
    return sorted(
        (existing for existing in committed if overlaps(candidate, existing)),
        key=lambda i: (i.start, i.end),
    )
