from datetime import UTC, date, datetime, timedelta

import pytest

from instructor_booking.core.config import Settings
from instructor_booking.core.errors import NotFoundError, ValidationError
from instructor_booking.services.availability_engine import (
    AvailabilityService,
    compute_free_slots,
    day_window,
    weekday_index,
)
from instructor_booking.services.booking_ledger import (
    BOOKING_STATUS_CANCELLED,
    BOOKING_STATUS_CONFIRMED,
    BOOKING_STATUS_PENDING,
)
from instructor_booking.services.calendar_bridge import ExternalCalendarBridge
from instructor_booking.services.calendar_link_store import SYNC_STATUS_ACTIVE
from instructor_booking.services.intervals import Interval
from instructor_booking.services.scheduling_stores import create_in_memory_scheduling_stores
from instructor_booking.services.user_store import InMemoryUserStore

MONDAY = date(2030, 1, 7)


def _at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def _template(day_of_week: int, start: str, end: str, *, is_active: bool = True) -> dict[str, object]:
    return {"day_of_week": day_of_week, "start_time": start, "end_time": end, "is_active": is_active}


@pytest.fixture
def service_setup():  # type: ignore[no-untyped-def]
    settings = Settings(scheduling_store="memory", user_data_store="memory")
    stores = create_in_memory_scheduling_stores()
    user_store = InMemoryUserStore()
    instructor = user_store.create_user(
        email="coach@example.com",
        full_name="Coach Example",
        password_hash="not-used",
    )
    bridge = ExternalCalendarBridge(settings, stores=stores, sleep=lambda _: None)
    service = AvailabilityService(
        settings,
        stores=stores,
        user_store=user_store,
        calendar_bridge=bridge,
    )
    return service, stores, instructor["_id"]


def test_weekday_index_counts_from_sunday() -> None:
    assert weekday_index(date(2030, 1, 6)) == 0
    assert weekday_index(MONDAY) == 1
    assert weekday_index(date(2030, 1, 12)) == 6


def test_day_window_is_utc_midnight_to_midnight() -> None:
    window = day_window(MONDAY)

    assert window.start == _at(0)
    assert window.end == _at(0, day=date(2030, 1, 8))


def test_monday_template_with_lunch_block_yields_slots_on_both_sides() -> None:
    slots = compute_free_slots(
        day=MONDAY,
        templates=[_template(1, "09:00:00", "17:00:00")],
        busy=[Interval(_at(12), _at(13))],
        duration_minutes=30,
    )

    starts = [slot.start_time for slot in slots]
    assert starts[0] == _at(9)
    assert slots[5].end_time == _at(12)
    assert slots[6].start_time == _at(13)
    assert slots[-1].end_time == _at(17)
    assert len(slots) == 14
    assert all(not slot.interval.overlaps(Interval(_at(12), _at(13))) for slot in slots)


def test_free_slots_never_touch_busy_intervals() -> None:
    busy = [
        Interval(_at(9, 10), _at(9, 50)),
        Interval(_at(14, 5), _at(14, 20)),
        Interval(_at(16, 0), _at(18, 0)),
    ]

    slots = compute_free_slots(
        day=MONDAY,
        templates=[_template(1, "08:00:00", "12:00:00"), _template(1, "13:00:00", "17:00:00")],
        busy=busy,
        duration_minutes=45,
    )

    assert slots
    for slot in slots:
        assert slot.end_time - slot.start_time == timedelta(minutes=45)
        assert all(not slot.interval.overlaps(interval) for interval in busy)
    assert [slot.start_time for slot in slots] == sorted(slot.start_time for slot in slots)


def test_overlapping_templates_on_the_same_day_are_unioned() -> None:
    slots = compute_free_slots(
        day=MONDAY,
        templates=[_template(1, "09:00", "10:00"), _template(1, "09:30", "11:00")],
        busy=[],
        duration_minutes=60,
    )

    assert [(slot.start_time, slot.end_time) for slot in slots] == [(_at(9), _at(10)), (_at(10), _at(11))]


def test_no_templates_for_weekday_gives_empty_result() -> None:
    slots = compute_free_slots(
        day=MONDAY,
        templates=[_template(2, "09:00", "17:00"), _template(1, "09:00", "17:00", is_active=False)],
        busy=[],
        duration_minutes=30,
    )

    assert slots == []


def test_window_shorter_than_duration_yields_nothing() -> None:
    slots = compute_free_slots(
        day=MONDAY,
        templates=[_template(1, "09:00", "09:45")],
        busy=[],
        duration_minutes=60,
    )

    assert slots == []


def test_non_positive_duration_is_rejected() -> None:
    with pytest.raises(ValidationError):
        compute_free_slots(day=MONDAY, templates=[], busy=[], duration_minutes=0)


def test_service_raises_not_found_for_unknown_instructor(service_setup) -> None:  # type: ignore[no-untyped-def]
    service, _, _ = service_setup

    with pytest.raises(NotFoundError):
        service.free_slots("missing-instructor", MONDAY, 30)


def test_service_subtracts_blocks_and_active_bookings_only(service_setup) -> None:  # type: ignore[no-untyped-def]
    service, stores, instructor_id = service_setup
    stores.templates.create(
        instructor_id=instructor_id,
        day_of_week=1,
        start_time="09:00",
        end_time="12:00",
    )
    stores.blocks.create(instructor_id=instructor_id, start_time=_at(9), end_time=_at(10))
    stores.ledger.insert(
        instructor_id=instructor_id,
        appointment_type_id="type-1",
        start_time=_at(10),
        end_time=_at(10, 30),
        status=BOOKING_STATUS_PENDING,
        student_info={"name": "Sam", "email": "sam@example.com"},
    )
    cancelled = stores.ledger.insert(
        instructor_id=instructor_id,
        appointment_type_id="type-1",
        start_time=_at(11),
        end_time=_at(11, 30),
        status=BOOKING_STATUS_CONFIRMED,
        student_info={"name": "Alex", "email": "alex@example.com"},
    )
    stores.ledger.transition_status(
        cancelled["_id"],
        from_statuses=(BOOKING_STATUS_CONFIRMED,),
        to_status=BOOKING_STATUS_CANCELLED,
    )

    slots = service.free_slots(instructor_id, MONDAY, 30)

    assert [slot.start_time for slot in slots] == [_at(10, 30), _at(11), _at(11, 30)]


def test_service_includes_cached_external_busy_intervals(service_setup) -> None:  # type: ignore[no-untyped-def]
    service, stores, instructor_id = service_setup
    stores.templates.create(
        instructor_id=instructor_id,
        day_of_week=1,
        start_time="09:00",
        end_time="11:00",
    )
    stores.calendar_links.save(
        instructor_id,
        {
            "calendar_id": "coach@example.com",
            "access_token": "token",
            "refresh_token": "refresh",
            "webhook_channel_id": "channel-1",
            "webhook_resource_id": "resource-1",
            "channel_expiry": _at(0) + timedelta(days=7),
            "sync_status": SYNC_STATUS_ACTIVE,
        },
    )
    stores.calendar_links.replace_busy_cache(
        instructor_id,
        window_start=_at(0),
        window_end=_at(0) + timedelta(days=30),
        intervals=[Interval(_at(9, 30), _at(10, 15))],
    )

    slots = service.free_slots(instructor_id, MONDAY, 30)

    assert [slot.start_time for slot in slots] == [_at(9), _at(10, 15)]


def _cache_external_busy(stores, instructor_id: str, intervals: list[Interval]) -> None:  # type: ignore[no-untyped-def]
    stores.calendar_links.save(
        instructor_id,
        {
            "calendar_id": "coach@example.com",
            "access_token": "token",
            "refresh_token": "refresh",
            "webhook_channel_id": "channel-1",
            "webhook_resource_id": "resource-1",
            "channel_expiry": _at(0) + timedelta(days=7),
            "sync_status": SYNC_STATUS_ACTIVE,
        },
    )
    stores.calendar_links.replace_busy_cache(
        instructor_id,
        window_start=_at(0),
        window_end=_at(0) + timedelta(days=30),
        intervals=intervals,
    )


def test_external_busy_with_seconds_is_widened_to_whole_minutes(service_setup) -> None:  # type: ignore[no-untyped-def]
    service, stores, instructor_id = service_setup
    stores.templates.create(
        instructor_id=instructor_id,
        day_of_week=1,
        start_time="09:00",
        end_time="11:00",
    )
    _cache_external_busy(
        stores,
        instructor_id,
        [Interval(_at(9, 30) + timedelta(seconds=20), _at(10, 14) + timedelta(seconds=10))],
    )

    slots = service.free_slots(instructor_id, MONDAY, 30)

    assert [slot.start_time for slot in slots] == [_at(9), _at(10, 15)]


def test_free_slots_is_stable_without_intervening_writes(service_setup) -> None:  # type: ignore[no-untyped-def]
    service, stores, instructor_id = service_setup
    stores.templates.create(
        instructor_id=instructor_id,
        day_of_week=1,
        start_time="08:00",
        end_time="17:00",
    )
    stores.blocks.create(instructor_id=instructor_id, start_time=_at(12), end_time=_at(13))
    stores.ledger.insert(
        instructor_id=instructor_id,
        appointment_type_id="type-1",
        start_time=_at(9),
        end_time=_at(9, 45),
        status=BOOKING_STATUS_CONFIRMED,
        student_info={"name": "Sam", "email": "sam@example.com"},
    )
    _cache_external_busy(stores, instructor_id, [Interval(_at(15), _at(16, 20))])

    first = service.free_slots(instructor_id, MONDAY, 45)
    second = service.free_slots(instructor_id, MONDAY, 45)

    assert first
    assert first == second
