"""Time parsing and interval arithmetic on wall-clock minutes.

All ranges are half-open ``[start, end)`` and measured in whole minutes since
midnight, so a booking that ends at 10:00 never collides with one starting at
10:00.
"""

from dataclasses import dataclass
from datetime import time
from typing import Iterable, Optional, Sequence

MINUTES_PER_DAY = 24 * 60


def to_minutes(value: time) -> int:
    """Minutes since midnight; seconds are dropped"""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes is outside a single day")
    hours, mins = divmod(minutes, 60)
    return time(hours, mins)


def add_minutes(value: time, minutes: int) -> time:
    """Shift a time of day, refusing to wrap past midnight"""
    return from_minutes(to_minutes(value) + minutes)


def minutes_between(start: time, end: time) -> int:
    if end <= start:
        return 0
    return to_minutes(end) - to_minutes(start)


@dataclass(frozen=True)
class TimeRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("TimeRange end must be after start")

    @classmethod
    def from_times(cls, start: time, end: time) -> "TimeRange":
        return cls(to_minutes(start), to_minutes(end))

    @property
    def minutes(self) -> int:
        return self.end - self.start

    @property
    def start_time(self) -> time:
        return from_minutes(self.start)

    @property
    def end_time(self) -> time:
        return from_minutes(self.end)

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and self.end > other.start

    def touches(self, other: "TimeRange") -> bool:
        return self.end == other.start or self.start == other.end

    def merge(self, other: "TimeRange") -> "TimeRange":
        if not (self.overlaps(other) or self.touches(other)):
            raise ValueError("Ranges must overlap or touch to merge")
        return TimeRange(min(self.start, other.start), max(self.end, other.end))

    def intersect(self, other: "TimeRange") -> Optional["TimeRange"]:
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        if end <= start:
            return None
        return TimeRange(start, end)


def ranges_overlap(a: TimeRange, b: TimeRange) -> bool:
    return a.overlaps(b)


def merge_ranges(ranges: Iterable[TimeRange]) -> list[TimeRange]:
    """Coalesce overlapping and adjacent ranges into a sorted disjoint list"""
    ordered = sorted(ranges, key=lambda rng: (rng.start, rng.end))
    if not ordered:
        return []

    merged: list[TimeRange] = [ordered[0]]
    for current in ordered[1:]:
        last = merged[-1]
        if last.overlaps(current) or last.touches(current):
            merged[-1] = last.merge(current)
        else:
            merged.append(current)
    return merged


def clip_ranges(window: TimeRange, ranges: Iterable[TimeRange]) -> list[TimeRange]:
    clipped = []
    for rng in ranges:
        intersection = window.intersect(rng)
        if intersection is not None:
            clipped.append(intersection)
    return clipped


def free_gaps(window: TimeRange, busy: Sequence[TimeRange]) -> list[TimeRange]:
    """Complement of ``busy`` inside ``window``, ascending by start"""
    merged = merge_ranges(clip_ranges(window, busy))
    gaps: list[TimeRange] = []
    cursor = window.start

    for rng in merged:
        if rng.start > cursor:
            gaps.append(TimeRange(cursor, rng.start))
        cursor = max(cursor, rng.end)

    if cursor < window.end:
        gaps.append(TimeRange(cursor, window.end))

    return gaps


def booked_minutes(window: TimeRange, busy: Sequence[TimeRange]) -> int:
    return sum(rng.minutes for rng in merge_ranges(clip_ranges(window, busy)))


def first_fitting_gap(gaps: Sequence[TimeRange], minutes: int) -> Optional[TimeRange]:
    """Earliest gap able to hold ``minutes`` contiguous minutes"""
    for gap in sorted(gaps, key=lambda rng: rng.start):
        if gap.minutes >= minutes:
            return gap
    return None
