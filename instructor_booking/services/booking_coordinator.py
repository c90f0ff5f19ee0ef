"""
Sole writer of booking records.

``book`` re-derives availability against live state immediately before the
ledger insert, and the ledger's own overlap guard settles any race that slips
between the two. Mirroring the booking onto the instructor's Google Calendar is
best-effort: it runs on a shared worker pool with a bounded wait and never
undoes a committed booking.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import UTC, datetime, timedelta
from typing import Any

from instructor_booking.core.config import Settings, get_settings
from instructor_booking.core.errors import (
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from instructor_booking.services.availability_engine import AvailabilityService
from instructor_booking.services.booking_ledger import (
    BOOKING_STATUS_CANCELLED,
    BOOKING_STATUS_CONFIRMED,
    BOOKING_STATUS_PENDING,
    BookingOverlapError,
)
from instructor_booking.services.calendar_bridge import ExternalCalendarBridge
from instructor_booking.services.intervals import ensure_utc, is_minute_aligned
from instructor_booking.services.scheduling_stores import SchedulingStores, create_scheduling_stores

logger = logging.getLogger(__name__)

_MIRROR_EXECUTOR = ThreadPoolExecutor(max_workers=4, thread_name_prefix="booking-mirror")


class BookingCoordinator:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        stores: SchedulingStores | None = None,
        availability: AvailabilityService | None = None,
        calendar_bridge: ExternalCalendarBridge | None = None,
        mirror_executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.stores = stores or create_scheduling_stores(self.settings)
        self.calendar_bridge = calendar_bridge or ExternalCalendarBridge(self.settings, stores=self.stores)
        self.availability = availability or AvailabilityService(
            self.settings,
            stores=self.stores,
            calendar_bridge=self.calendar_bridge,
        )
        self._mirror_executor = mirror_executor or _MIRROR_EXECUTOR

    def book(
        self,
        *,
        instructor_id: str,
        appointment_type_id: str,
        start_time: datetime,
        end_time: datetime,
        student_info: Mapping[str, Any],
        student_notes: str | None = None,
        party_size: int = 1,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        start = ensure_utc(start_time)
        end = ensure_utc(end_time)
        appointment_type = self._load_bookable_type(instructor_id, appointment_type_id)

        if start >= end:
            raise ValidationError("Start time must be before end time", code="inverted_time_range")
        if not (is_minute_aligned(start) and is_minute_aligned(end)):
            raise ValidationError("Times must fall on a whole minute", code="unaligned_time")
        if start < ensure_utc(now or datetime.now(UTC)):
            raise ValidationError("Cannot book a slot in the past", code="slot_in_past")
        duration_minutes = int(appointment_type["duration_minutes"])
        if end - start != timedelta(minutes=duration_minutes):
            raise ValidationError(
                f"Booking length must be {duration_minutes} minutes for this appointment type",
                code="duration_mismatch",
            )
        if party_size < 1 or party_size > int(appointment_type.get("max_party_size") or 1):
            raise ValidationError(
                "Party size exceeds the maximum for this appointment type",
                code="party_size_exceeded",
            )

        slots = self.availability.free_slots(instructor_id, start.date(), duration_minutes)
        if not any(slot.start_time == start and slot.end_time == end for slot in slots):
            logger.info(
                "Booking rejected reason=slot_unavailable instructor_id=%s start=%s",
                instructor_id,
                start.isoformat(),
            )
            raise ConflictError("The requested time slot is no longer available", code="slot_unavailable")

        status = BOOKING_STATUS_PENDING if appointment_type.get("requires_approval") else BOOKING_STATUS_CONFIRMED
        try:
            booking = self.stores.ledger.insert(
                instructor_id=instructor_id,
                appointment_type_id=appointment_type_id,
                start_time=start,
                end_time=end,
                status=status,
                student_info=student_info,
                student_notes=student_notes,
                party_size=party_size,
            )
        except BookingOverlapError as exc:
            logger.info(
                "Booking rejected reason=overlap instructor_id=%s start=%s",
                instructor_id,
                start.isoformat(),
            )
            raise ConflictError(
                "The requested time slot is no longer available",
                code="slot_unavailable",
            ) from exc

        logger.info(
            "Booking created booking_id=%s instructor_id=%s status=%s start=%s",
            booking["_id"],
            instructor_id,
            status,
            start.isoformat(),
        )
        self._mirror_with_timeout(booking, title=str(appointment_type["title"]))
        return self.stores.ledger.get(booking["_id"]) or booking

    def list_bookings(self, instructor_id: str, *, status: str | None = None) -> list[dict[str, Any]]:
        return self.stores.ledger.list_for_instructor(instructor_id, status=status)

    def approve(self, instructor_id: str, booking_id: str) -> dict[str, Any]:
        self._get_owned_booking(instructor_id, booking_id)
        updated = self.stores.ledger.transition_status(
            booking_id,
            from_statuses=(BOOKING_STATUS_PENDING,),
            to_status=BOOKING_STATUS_CONFIRMED,
            updates={"confirmed_at": datetime.now(UTC)},
        )
        if not updated:
            raise _invalid_transition(BOOKING_STATUS_CONFIRMED)
        logger.info("Booking approved booking_id=%s instructor_id=%s", booking_id, instructor_id)
        return updated

    def reject(self, instructor_id: str, booking_id: str, reason: str | None = None) -> dict[str, Any]:
        return self._cancel(
            instructor_id,
            booking_id,
            from_statuses=(BOOKING_STATUS_PENDING,),
            reason=reason or "Rejected by instructor",
        )

    def cancel(self, instructor_id: str, booking_id: str, reason: str | None = None) -> dict[str, Any]:
        return self._cancel(
            instructor_id,
            booking_id,
            from_statuses=(BOOKING_STATUS_PENDING, BOOKING_STATUS_CONFIRMED),
            reason=reason or "Cancelled by instructor",
        )

    def _cancel(
        self,
        instructor_id: str,
        booking_id: str,
        *,
        from_statuses: tuple[str, ...],
        reason: str,
    ) -> dict[str, Any]:
        self._get_owned_booking(instructor_id, booking_id)
        updated = self.stores.ledger.transition_status(
            booking_id,
            from_statuses=from_statuses,
            to_status=BOOKING_STATUS_CANCELLED,
            updates={"cancelled_at": datetime.now(UTC), "cancellation_reason": reason},
        )
        if not updated:
            raise _invalid_transition(BOOKING_STATUS_CANCELLED)
        logger.info("Booking cancelled booking_id=%s instructor_id=%s", booking_id, instructor_id)
        if updated.get("external_event_id"):
            self.calendar_bridge.release_booking_interval(updated)
            self._mirror_executor.submit(self._remove_mirror, dict(updated))
        return updated

    def _load_bookable_type(self, instructor_id: str, appointment_type_id: str) -> dict[str, Any]:
        appointment_type = self.stores.appointment_types.get(appointment_type_id)
        if not appointment_type or not appointment_type.get("is_active"):
            raise NotFoundError("Appointment type not found", code="appointment_type_not_found")
        if appointment_type["instructor_id"] != instructor_id:
            raise ValidationError(
                "Appointment type does not belong to this instructor",
                code="appointment_type_mismatch",
            )
        return appointment_type

    def _get_owned_booking(self, instructor_id: str, booking_id: str) -> dict[str, Any]:
        booking = self.stores.ledger.get(booking_id)
        if not booking or booking["instructor_id"] != instructor_id:
            raise NotFoundError("Booking not found", code="booking_not_found")
        return booking

    def _mirror_with_timeout(self, booking: dict[str, Any], *, title: str) -> None:
        future = self._mirror_executor.submit(self._mirror, booking, title)
        try:
            future.result(timeout=self.settings.booking_mirror_timeout_seconds)
        except FutureTimeoutError:
            logger.warning(
                "Calendar mirror still running after %ss booking_id=%s",
                self.settings.booking_mirror_timeout_seconds,
                booking["_id"],
            )

    def _mirror(self, booking: dict[str, Any], title: str) -> None:
        try:
            mirrored = self.calendar_bridge.mirror_booking(booking, title=title)
        except UpstreamError as exc:
            logger.warning(
                "Calendar mirror failed booking_id=%s reason=%s",
                booking["_id"],
                exc.code,
            )
            return
        except Exception:
            logger.exception("Unexpected calendar mirror failure booking_id=%s", booking["_id"])
            return
        if not mirrored:
            return
        event_id, meet_link = mirrored
        self.stores.ledger.set_external_event(
            booking["_id"],
            external_event_id=event_id,
            meet_link=meet_link,
        )
        logger.info("Booking mirrored booking_id=%s event_id=%s", booking["_id"], event_id)

        # A cancel that ran before the event id was stored could not remove it.
        current = self.stores.ledger.get(booking["_id"])
        if current and current.get("status") == BOOKING_STATUS_CANCELLED:
            logger.info(
                "Removing mirror of booking cancelled mid-flight booking_id=%s event_id=%s",
                booking["_id"],
                event_id,
            )
            self.calendar_bridge.release_booking_interval(current)
            self._remove_mirror(current)

    def _remove_mirror(self, booking: dict[str, Any]) -> None:
        try:
            self.calendar_bridge.remove_booking_event(booking)
        except Exception:
            logger.exception("Unexpected calendar event removal failure booking_id=%s", booking["_id"])


def _invalid_transition(target_status: str) -> ConflictError:
    return ConflictError(
        f"Booking cannot move to {target_status} from its current status",
        code="invalid_status_transition",
    )
