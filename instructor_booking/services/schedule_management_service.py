from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from instructor_booking.core.config import Settings, get_settings
from instructor_booking.core.errors import NotFoundError, ValidationError
from instructor_booking.services.intervals import ensure_utc, is_minute_aligned
from instructor_booking.services.scheduling_stores import SchedulingStores, create_scheduling_stores

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_LISTING_DAYS = 30


class ScheduleManagementService:
    """Instructor-scoped CRUD over weekly hours, manual blocks and appointment types.

    Records owned by another instructor are reported as missing.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        stores: SchedulingStores | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.stores = stores or create_scheduling_stores(self.settings)

    def list_weekly_hours(self, instructor_id: str) -> list[dict[str, Any]]:
        return self.stores.templates.list_for_instructor(instructor_id)

    def create_weekly_hours(
        self,
        instructor_id: str,
        *,
        day_of_week: int,
        start_time: str,
        end_time: str,
        is_active: bool = True,
    ) -> dict[str, Any]:
        template = self.stores.templates.create(
            instructor_id=instructor_id,
            day_of_week=day_of_week,
            start_time=start_time,
            end_time=end_time,
            is_active=is_active,
        )
        logger.info(
            "Weekly hours created template_id=%s instructor_id=%s day_of_week=%s",
            template["_id"],
            instructor_id,
            day_of_week,
        )
        return template

    def update_weekly_hours(
        self,
        instructor_id: str,
        template_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any]:
        self._require_owned(self.stores.templates.get(template_id), instructor_id, "Weekly hours")
        updated = self.stores.templates.update(template_id, updates)
        if not updated:
            raise NotFoundError("Weekly hours not found", code="weekly_hours_not_found")
        return updated

    def delete_weekly_hours(self, instructor_id: str, template_id: str) -> None:
        self._require_owned(self.stores.templates.get(template_id), instructor_id, "Weekly hours")
        self.stores.templates.delete(template_id)

    def list_blocks(
        self,
        instructor_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, Any]]:
        window_start = ensure_utc(start) if start else datetime.now(UTC)
        window_end = ensure_utc(end) if end else window_start + timedelta(days=DEFAULT_BLOCK_LISTING_DAYS)
        if window_start >= window_end:
            raise ValidationError("startDate must be before endDate", code="inverted_time_range")
        return self.stores.blocks.list_overlapping(instructor_id, window_start, window_end)

    def create_block(
        self,
        instructor_id: str,
        *,
        start_time: datetime,
        end_time: datetime,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        start = ensure_utc(start_time)
        end = ensure_utc(end_time)
        if start >= end:
            raise ValidationError("Start time must be before end time", code="inverted_time_range")
        if not (is_minute_aligned(start) and is_minute_aligned(end)):
            raise ValidationError("Times must fall on a whole minute", code="unaligned_time")
        if start < ensure_utc(now or datetime.now(UTC)):
            raise ValidationError("Cannot block time in the past", code="block_in_past")
        block = self.stores.blocks.create(
            instructor_id=instructor_id,
            start_time=start,
            end_time=end,
            reason=reason,
        )
        logger.info(
            "Manual block created block_id=%s instructor_id=%s start=%s end=%s",
            block["_id"],
            instructor_id,
            start.isoformat(),
            end.isoformat(),
        )
        return block

    def delete_block(self, instructor_id: str, block_id: str) -> None:
        self._require_owned(self.stores.blocks.get(block_id), instructor_id, "Manual block")
        self.stores.blocks.delete(block_id)

    def list_public_appointment_types(self, instructor_id: str) -> list[dict[str, Any]]:
        return self.stores.appointment_types.list_for_instructor(instructor_id, active_only=True)

    def list_appointment_types(self, instructor_id: str) -> list[dict[str, Any]]:
        return self.stores.appointment_types.list_for_instructor(instructor_id)

    def create_appointment_type(self, instructor_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        return self.stores.appointment_types.create(instructor_id=instructor_id, **values)

    def update_appointment_type(
        self,
        instructor_id: str,
        appointment_type_id: str,
        updates: Mapping[str, Any],
    ) -> dict[str, Any]:
        self._require_owned(
            self.stores.appointment_types.get(appointment_type_id),
            instructor_id,
            "Appointment type",
        )
        updated = self.stores.appointment_types.update(appointment_type_id, updates)
        if not updated:
            raise NotFoundError("Appointment type not found", code="appointment_type_not_found")
        return updated

    def delete_appointment_type(self, instructor_id: str, appointment_type_id: str) -> None:
        self._require_owned(
            self.stores.appointment_types.get(appointment_type_id),
            instructor_id,
            "Appointment type",
        )
        self.stores.appointment_types.delete(appointment_type_id)

    def _require_owned(
        self,
        record: Mapping[str, Any] | None,
        instructor_id: str,
        label: str,
    ) -> Mapping[str, Any]:
        if not record or record.get("instructor_id") != instructor_id:
            raise NotFoundError(
                f"{label} not found",
                code=f"{label.lower().replace(' ', '_')}_not_found",
            )
        return record
