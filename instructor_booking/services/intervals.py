from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open UTC interval ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("Interval bounds must be timezone-aware.")
        if self.start >= self.end:
            raise ValueError("Interval start must be before end.")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: Interval) -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: Interval) -> bool:
        return self.start <= other.start and other.end <= self.end

    def clip(self, window: Interval) -> Interval | None:
        start = max(self.start, window.start)
        end = min(self.end, window.end)
        if start >= end:
            return None
        return Interval(start, end)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    ordered = sorted(intervals)
    merged: list[Interval] = []
    for interval in ordered:
        if merged and interval.start <= merged[-1].end:
            last = merged[-1]
            if interval.end > last.end:
                merged[-1] = Interval(last.start, interval.end)
            continue
        merged.append(interval)
    return merged


def subtract_intervals(available: Iterable[Interval], busy: Iterable[Interval]) -> list[Interval]:
    """Remove every busy range from the available ranges.

    Both inputs are normalized first, so callers may pass overlapping or
    unsorted intervals.
    """
    busy_merged = merge_intervals(busy)
    free: list[Interval] = []
    for window in merge_intervals(available):
        cursor = window.start
        for blocked in busy_merged:
            if blocked.end <= cursor:
                continue
            if blocked.start >= window.end:
                break
            if blocked.start > cursor:
                free.append(Interval(cursor, blocked.start))
            cursor = max(cursor, blocked.end)
            if cursor >= window.end:
                break
        if cursor < window.end:
            free.append(Interval(cursor, window.end))
    return free


def slice_intervals(free: Iterable[Interval], step: timedelta) -> list[Interval]:
    if step <= timedelta(0):
        raise ValueError("Slice step must be positive.")
    slices: list[Interval] = []
    for window in merge_intervals(free):
        slot_start = window.start
        while slot_start + step <= window.end:
            slices.append(Interval(slot_start, slot_start + step))
            slot_start += step
    return slices


def covered_minutes(interval: Interval) -> list[datetime]:
    """Minute marks touched by the interval, used as storage-level claim keys."""
    first = interval.start.replace(second=0, microsecond=0)
    marks: list[datetime] = []
    cursor = first
    while cursor < interval.end:
        marks.append(cursor)
        cursor += timedelta(minutes=1)
    return marks


def is_minute_aligned(value: datetime) -> bool:
    return value.second == 0 and value.microsecond == 0


def widen_to_minutes(interval: Interval) -> Interval:
    """Round the start down and the end up to whole minutes."""
    start = interval.start.replace(second=0, microsecond=0)
    end = interval.end.replace(second=0, microsecond=0)
    if end < interval.end:
        end += timedelta(minutes=1)
    return Interval(start, end)
