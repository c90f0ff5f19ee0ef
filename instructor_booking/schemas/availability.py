from datetime import datetime

from pydantic import Field

from instructor_booking.schemas.common import CamelModel


class SlotResponse(CamelModel):
    start_time: datetime
    end_time: datetime
    duration_minutes: int


class AvailabilityResponse(CamelModel):
    date: str
    instructor_id: str
    slot_duration_minutes: int
    slots: list[SlotResponse]


class ManualBlockCreateRequest(CamelModel):
    start_time: datetime
    end_time: datetime
    reason: str | None = Field(default=None, max_length=500)


class ManualBlockResponse(CamelModel):
    id: str
    instructor_id: str
    start_time: datetime
    end_time: datetime
    reason: str
    created_at: datetime


class WeeklyHoursCreateRequest(CamelModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    is_active: bool = True


class WeeklyHoursUpdateRequest(CamelModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: str | None = None
    end_time: str | None = None
    is_active: bool | None = None


class WeeklyHoursResponse(CamelModel):
    id: str
    instructor_id: str
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool


class AppointmentTypeCreateRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    duration_minutes: int = Field(ge=5, le=480)
    requires_approval: bool = False
    max_party_size: int = Field(default=1, ge=1, le=20)
    is_active: bool = True


class AppointmentTypeUpdateRequest(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    duration_minutes: int | None = Field(default=None, ge=5, le=480)
    requires_approval: bool | None = None
    max_party_size: int | None = Field(default=None, ge=1, le=20)
    is_active: bool | None = None


class AppointmentTypeResponse(CamelModel):
    id: str
    instructor_id: str
    title: str
    description: str | None = None
    duration_minutes: int
    requires_approval: bool
    max_party_size: int
    is_active: bool
