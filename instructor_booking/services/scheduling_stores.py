from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from instructor_booking.core.config import Settings
from instructor_booking.services.appointment_type_store import (
    AppointmentTypeStore,
    InMemoryAppointmentTypeStore,
    MongoAppointmentTypeStore,
)
from instructor_booking.services.booking_ledger import (
    BookingLedger,
    InMemoryBookingLedger,
    MongoBookingLedger,
)
from instructor_booking.services.calendar_link_store import (
    CalendarLinkStore,
    InMemoryCalendarLinkStore,
    MongoCalendarLinkStore,
)
from instructor_booking.services.manual_block_store import (
    InMemoryManualBlockStore,
    ManualBlockStore,
    MongoManualBlockStore,
)
from instructor_booking.services.weekly_template_store import (
    InMemoryWeeklyTemplateStore,
    MongoWeeklyTemplateStore,
    WeeklyTemplateStore,
)


@dataclass(frozen=True)
class SchedulingStores:
    templates: WeeklyTemplateStore
    blocks: ManualBlockStore
    appointment_types: AppointmentTypeStore
    ledger: BookingLedger
    calendar_links: CalendarLinkStore


def create_in_memory_scheduling_stores() -> SchedulingStores:
    return SchedulingStores(
        templates=InMemoryWeeklyTemplateStore(),
        blocks=InMemoryManualBlockStore(),
        appointment_types=InMemoryAppointmentTypeStore(),
        ledger=InMemoryBookingLedger(),
        calendar_links=InMemoryCalendarLinkStore(),
    )


def create_scheduling_stores(settings: Settings) -> SchedulingStores:
    return _create_scheduling_stores_cached(
        scheduling_store=settings.scheduling_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        weekly_templates_collection=settings.mongodb_weekly_templates_collection,
        manual_blocks_collection=settings.mongodb_manual_blocks_collection,
        appointment_types_collection=settings.mongodb_appointment_types_collection,
        bookings_collection=settings.mongodb_bookings_collection,
        booking_claims_collection=settings.mongodb_booking_claims_collection,
        calendar_links_collection=settings.mongodb_calendar_links_collection,
        busy_cache_collection=settings.mongodb_busy_cache_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_scheduling_stores_cached(
    *,
    scheduling_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    weekly_templates_collection: str,
    manual_blocks_collection: str,
    appointment_types_collection: str,
    bookings_collection: str,
    booking_claims_collection: str,
    calendar_links_collection: str,
    busy_cache_collection: str,
    mongodb_connect_timeout_ms: int,
) -> SchedulingStores:
    if scheduling_store != "mongodb":
        return create_in_memory_scheduling_stores()

    from pymongo import MongoClient

    client = MongoClient(
        mongodb_uri,
        serverSelectionTimeoutMS=mongodb_connect_timeout_ms,
        connectTimeoutMS=mongodb_connect_timeout_ms,
        tz_aware=True,
    )
    database = client[mongodb_db_name]
    return SchedulingStores(
        templates=MongoWeeklyTemplateStore(
            database=database,
            collection_name=weekly_templates_collection,
        ),
        blocks=MongoManualBlockStore(
            database=database,
            collection_name=manual_blocks_collection,
        ),
        appointment_types=MongoAppointmentTypeStore(
            database=database,
            collection_name=appointment_types_collection,
        ),
        ledger=MongoBookingLedger(
            database=database,
            bookings_collection_name=bookings_collection,
            claims_collection_name=booking_claims_collection,
        ),
        calendar_links=MongoCalendarLinkStore(
            database=database,
            links_collection_name=calendar_links_collection,
            busy_cache_collection_name=busy_cache_collection,
        ),
    )


def clear_scheduling_stores_cache() -> None:
    _create_scheduling_stores_cached.cache_clear()
