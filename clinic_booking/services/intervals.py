"""
Interval arithmetic over clinic-local datetimes.

Intervals are half-open ``[start, end)``. All functions are pure and return
new lists.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List


@dataclass(frozen=True, order=True)
class Interval:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Merge overlapping or touching intervals.

    Returns a sorted list of disjoint intervals. Empty intervals are dropped.
    """
    merged: List[Interval] = []

    for interval in sorted(i for i in intervals if not i.is_empty):
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = Interval(last.start, interval.end)
        else:
            merged.append(interval)

    return merged


def _cut(segment: Interval, cut: Interval) -> List[Interval]:
    if not segment.overlaps(cut):
        return [segment]

    pieces = []
    if segment.start < cut.start:
        pieces.append(Interval(segment.start, cut.start))
    if cut.end < segment.end:
        pieces.append(Interval(cut.end, segment.end))
    return pieces


def subtract_intervals(base: Iterable[Interval], cuts: Iterable[Interval]) -> List[Interval]:
    """
    Remove every cut from the base intervals.

    Each cut is applied to the result of the previous one; a cut can split a
    segment in two, trim it, or remove it. Zero-length leftovers are dropped.
    The result is sorted, and the same whatever order the cuts come in.
    """
    remaining = sorted(i for i in base if not i.is_empty)

    for cut in cuts:
        if cut.is_empty:
            continue
        remaining = [piece for segment in remaining for piece in _cut(segment, cut)]

    return [piece for piece in remaining if not piece.is_empty]
