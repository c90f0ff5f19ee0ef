from datetime import datetime

from pydantic import Field, field_validator

from instructor_booking.schemas.common import CamelModel


class BookingRequest(CamelModel):
    instructor_id: str = Field(min_length=1)
    appointment_type_id: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    student_name: str = Field(min_length=1, max_length=200)
    student_email: str = Field(min_length=3, max_length=254)
    student_phone: str | None = Field(default=None, max_length=40)
    student_notes: str | None = Field(default=None, max_length=2000)
    party_size: int = Field(default=1, ge=1)

    @field_validator("student_email")
    @classmethod
    def validate_student_email(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if "@" not in cleaned:
            raise ValueError("studentEmail must be a valid email address")
        return cleaned


class BookingSummary(CamelModel):
    id: str
    instructor_id: str
    appointment_type_id: str
    appointment_type: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    student_name: str
    external_event_id: str | None = None
    meet_link: str | None = None


class BookingResponse(CamelModel):
    success: bool = True
    booking: BookingSummary


class InstructorBookingResponse(BookingSummary):
    student_email: str
    student_phone: str | None = None
    student_notes: str | None = None
    party_size: int
    booked_at: datetime
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None


class BookingActionRequest(CamelModel):
    reason: str | None = Field(default=None, max_length=500)
