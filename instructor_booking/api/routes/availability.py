from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status

from instructor_booking.core.errors import ValidationError
from instructor_booking.schemas.auth import CurrentUserResponse
from instructor_booking.schemas.availability import (
    AppointmentTypeCreateRequest,
    AppointmentTypeResponse,
    AppointmentTypeUpdateRequest,
    AvailabilityResponse,
    ManualBlockCreateRequest,
    ManualBlockResponse,
    SlotResponse,
    WeeklyHoursCreateRequest,
    WeeklyHoursResponse,
    WeeklyHoursUpdateRequest,
)
from instructor_booking.services.auth_service import require_current_user
from instructor_booking.services.availability_engine import AvailabilityService
from instructor_booking.services.schedule_management_service import ScheduleManagementService

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/instructor/weekly-hours", response_model=list[WeeklyHoursResponse])
def list_weekly_hours(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[WeeklyHoursResponse]:
    templates = ScheduleManagementService().list_weekly_hours(current_user.id)
    return [_to_weekly_hours(template) for template in templates]


@router.post(
    "/instructor/weekly-hours",
    response_model=WeeklyHoursResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_weekly_hours(
    payload: WeeklyHoursCreateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> WeeklyHoursResponse:
    template = ScheduleManagementService().create_weekly_hours(
        current_user.id,
        day_of_week=payload.day_of_week,
        start_time=payload.start_time,
        end_time=payload.end_time,
        is_active=payload.is_active,
    )
    return _to_weekly_hours(template)


@router.put("/instructor/weekly-hours/{template_id}", response_model=WeeklyHoursResponse)
def update_weekly_hours(
    template_id: str,
    payload: WeeklyHoursUpdateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> WeeklyHoursResponse:
    template = ScheduleManagementService().update_weekly_hours(
        current_user.id,
        template_id,
        payload.model_dump(exclude_none=True),
    )
    return _to_weekly_hours(template)


@router.delete("/instructor/weekly-hours/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_weekly_hours(
    template_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> Response:
    ScheduleManagementService().delete_weekly_hours(current_user.id, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/manual-block",
    response_model=ManualBlockResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_manual_block(
    payload: ManualBlockCreateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> ManualBlockResponse:
    block = ScheduleManagementService().create_block(
        current_user.id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        reason=payload.reason,
    )
    return _to_manual_block(block)


@router.delete("/manual-block/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_manual_block(
    block_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> Response:
    ScheduleManagementService().delete_block(current_user.id, block_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/instructor/blocks", response_model=list[ManualBlockResponse])
def list_manual_blocks(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[ManualBlockResponse]:
    blocks = ScheduleManagementService().list_blocks(
        current_user.id,
        start=start_date,
        end=end_date,
    )
    return [_to_manual_block(block) for block in blocks]


@router.get("/instructor/appointment-types", response_model=list[AppointmentTypeResponse])
def list_own_appointment_types(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[AppointmentTypeResponse]:
    records = ScheduleManagementService().list_appointment_types(current_user.id)
    return [_to_appointment_type(record) for record in records]


@router.post(
    "/instructor/appointment-types",
    response_model=AppointmentTypeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_appointment_type(
    payload: AppointmentTypeCreateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> AppointmentTypeResponse:
    record = ScheduleManagementService().create_appointment_type(
        current_user.id,
        payload.model_dump(),
    )
    return _to_appointment_type(record)


@router.patch(
    "/instructor/appointment-types/{appointment_type_id}",
    response_model=AppointmentTypeResponse,
)
def update_appointment_type(
    appointment_type_id: str,
    payload: AppointmentTypeUpdateRequest,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> AppointmentTypeResponse:
    record = ScheduleManagementService().update_appointment_type(
        current_user.id,
        appointment_type_id,
        payload.model_dump(exclude_none=True),
    )
    return _to_appointment_type(record)


@router.delete(
    "/instructor/appointment-types/{appointment_type_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_appointment_type(
    appointment_type_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> Response:
    ScheduleManagementService().delete_appointment_type(current_user.id, appointment_type_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/appointment-types", response_model=list[AppointmentTypeResponse])
def list_public_appointment_types(
    instructor_id: str = Query(..., alias="instructorId", min_length=1),
) -> list[AppointmentTypeResponse]:
    records = ScheduleManagementService().list_public_appointment_types(instructor_id)
    return [_to_appointment_type(record) for record in records]


# Must stay last: this path matches any single segment under /availability.
@router.get("/{day}", response_model=AvailabilityResponse)
def get_available_slots(
    day: str,
    instructor_id: str = Query(..., alias="instructorId", min_length=1),
    slot_duration: int = Query(default=30, alias="slotDuration", ge=15, le=240),
) -> AvailabilityResponse:
    try:
        requested_day = date.fromisoformat(day)
    except ValueError as exc:
        raise ValidationError("Date must be in YYYY-MM-DD format", code="invalid_date") from exc

    slots = AvailabilityService().free_slots(instructor_id, requested_day, slot_duration)
    return AvailabilityResponse(
        date=requested_day.isoformat(),
        instructor_id=instructor_id,
        slot_duration_minutes=slot_duration,
        slots=[
            SlotResponse(
                start_time=slot.start_time,
                end_time=slot.end_time,
                duration_minutes=slot.duration_minutes,
            )
            for slot in slots
        ],
    )


def _to_weekly_hours(record: Mapping[str, Any]) -> WeeklyHoursResponse:
    return WeeklyHoursResponse(
        id=str(record["_id"]),
        instructor_id=str(record["instructor_id"]),
        day_of_week=int(record["day_of_week"]),
        start_time=str(record["start_time"]),
        end_time=str(record["end_time"]),
        is_active=bool(record["is_active"]),
    )


def _to_manual_block(record: Mapping[str, Any]) -> ManualBlockResponse:
    return ManualBlockResponse(
        id=str(record["_id"]),
        instructor_id=str(record["instructor_id"]),
        start_time=record["start_time"],
        end_time=record["end_time"],
        reason=str(record["reason"]),
        created_at=record["created_at"],
    )


def _to_appointment_type(record: Mapping[str, Any]) -> AppointmentTypeResponse:
    return AppointmentTypeResponse(
        id=str(record["_id"]),
        instructor_id=str(record["instructor_id"]),
        title=str(record["title"]),
        description=record.get("description"),
        duration_minutes=int(record["duration_minutes"]),
        requires_approval=bool(record["requires_approval"]),
        max_party_size=int(record["max_party_size"]),
        is_active=bool(record["is_active"]),
    )
