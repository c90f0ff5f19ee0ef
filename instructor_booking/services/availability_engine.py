"""
Free-slot computation.

``compute_free_slots`` is the pure merge of the four availability sources;
``AvailabilityService`` loads those sources for one instructor and day and
hands plain intervals to it. Nothing here is cached: every call re-reads the
stores so a booking decision never relies on an earlier answer.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

from instructor_booking.core.config import Settings, get_settings
from instructor_booking.core.errors import NotFoundError, ValidationError
from instructor_booking.services.calendar_bridge import ExternalCalendarBridge
from instructor_booking.services.intervals import (
    Interval,
    ensure_utc,
    merge_intervals,
    slice_intervals,
    subtract_intervals,
    widen_to_minutes,
)
from instructor_booking.services.scheduling_stores import SchedulingStores, create_scheduling_stores
from instructor_booking.services.user_store import UserStore, create_user_store
from instructor_booking.services.weekly_template_store import parse_time_of_day


@dataclass(frozen=True)
class Slot:
    start_time: datetime
    end_time: datetime
    duration_minutes: int

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


def weekday_index(day: date) -> int:
    """Day of week counted from Sunday (0) to Saturday (6)."""
    return (day.weekday() + 1) % 7


def day_window(day: date) -> Interval:
    start = datetime.combine(day, time.min, tzinfo=UTC)
    return Interval(start, start + timedelta(days=1))


def template_windows(day: date, templates: Iterable[Mapping[str, Any]]) -> list[Interval]:
    """Union of the active templates that apply to ``day``, as UTC intervals."""
    windows: list[Interval] = []
    target_weekday = weekday_index(day)
    for template in templates:
        if not template.get("is_active", True) or template.get("day_of_week") != target_weekday:
            continue
        start = datetime.combine(day, parse_time_of_day(str(template["start_time"])), tzinfo=UTC)
        end = datetime.combine(day, parse_time_of_day(str(template["end_time"])), tzinfo=UTC)
        if start < end:
            windows.append(Interval(start, end))
    return merge_intervals(windows)


def compute_free_slots(
    *,
    day: date,
    templates: Iterable[Mapping[str, Any]],
    busy: Iterable[Interval],
    duration_minutes: int,
) -> list[Slot]:
    if duration_minutes <= 0:
        raise ValidationError("Slot duration must be positive", code="invalid_duration")

    available = template_windows(day, templates)
    if not available:
        return []

    window = day_window(day)
    clipped_busy = [widen_to_minutes(clipped) for interval in busy if (clipped := interval.clip(window))]
    free = subtract_intervals(available, clipped_busy)
    return [
        Slot(
            start_time=interval.start,
            end_time=interval.end,
            duration_minutes=duration_minutes,
        )
        for interval in slice_intervals(free, timedelta(minutes=duration_minutes))
    ]


class AvailabilityService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        stores: SchedulingStores | None = None,
        user_store: UserStore | None = None,
        calendar_bridge: ExternalCalendarBridge | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.stores = stores or create_scheduling_stores(self.settings)
        self.user_store = user_store or create_user_store(self.settings)
        self.calendar_bridge = calendar_bridge or ExternalCalendarBridge(self.settings, stores=self.stores)

    def free_slots(self, instructor_id: str, day: date, duration_minutes: int) -> list[Slot]:
        if not self.user_store.get_user_by_id(instructor_id):
            raise NotFoundError("Instructor not found", code="instructor_not_found")

        templates = self.stores.templates.list_for_instructor(
            instructor_id,
            active_only=True,
            day_of_week=weekday_index(day),
        )
        if not templates:
            return []

        window = day_window(day)
        return compute_free_slots(
            day=day,
            templates=templates,
            busy=self.busy_intervals(instructor_id, window),
            duration_minutes=duration_minutes,
        )

    def busy_intervals(self, instructor_id: str, window: Interval) -> list[Interval]:
        busy: list[Interval] = []
        for block in self.stores.blocks.list_overlapping(instructor_id, window.start, window.end):
            busy.append(Interval(ensure_utc(block["start_time"]), ensure_utc(block["end_time"])))
        for booking in self.stores.ledger.list_active_overlapping(instructor_id, window.start, window.end):
            busy.append(Interval(ensure_utc(booking["start_time"]), ensure_utc(booking["end_time"])))

        busy.extend(self.calendar_bridge.get_busy_intervals(instructor_id, window))
        return busy
