from collections.abc import Mapping
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Query, status

from instructor_booking.schemas.auth import CurrentUserResponse
from instructor_booking.schemas.booking import (
    BookingActionRequest,
    BookingRequest,
    BookingResponse,
    BookingSummary,
    InstructorBookingResponse,
)
from instructor_booking.services.auth_service import require_current_user
from instructor_booking.services.booking_coordinator import BookingCoordinator

router = APIRouter(prefix="/availability", tags=["bookings"])

BookingStatusFilter = Literal["pending", "confirmed", "cancelled"]


@router.post("/book", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def book_slot(payload: BookingRequest) -> BookingResponse:
    coordinator = BookingCoordinator()
    booking = coordinator.book(
        instructor_id=payload.instructor_id,
        appointment_type_id=payload.appointment_type_id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        student_info={
            "name": payload.student_name.strip(),
            "email": payload.student_email,
            "phone": (payload.student_phone or "").strip() or None,
        },
        student_notes=payload.student_notes,
        party_size=payload.party_size,
    )
    summary = _to_summary(booking, _appointment_type_titles(coordinator, [booking]))
    return BookingResponse(success=True, booking=summary)


@router.get("/instructor/bookings", response_model=list[InstructorBookingResponse])
def list_instructor_bookings(
    booking_status: BookingStatusFilter | None = Query(default=None, alias="status"),
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> list[InstructorBookingResponse]:
    coordinator = BookingCoordinator()
    bookings = coordinator.list_bookings(current_user.id, status=booking_status)
    titles = _appointment_type_titles(coordinator, bookings)
    return [_to_instructor_booking(booking, titles) for booking in bookings]


@router.post("/instructor/bookings/{booking_id}/approve", response_model=InstructorBookingResponse)
def approve_booking(
    booking_id: str,
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> InstructorBookingResponse:
    coordinator = BookingCoordinator()
    booking = coordinator.approve(current_user.id, booking_id)
    return _to_instructor_booking(booking, _appointment_type_titles(coordinator, [booking]))


@router.post("/instructor/bookings/{booking_id}/reject", response_model=InstructorBookingResponse)
def reject_booking(
    booking_id: str,
    payload: BookingActionRequest | None = Body(default=None),
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> InstructorBookingResponse:
    coordinator = BookingCoordinator()
    booking = coordinator.reject(current_user.id, booking_id, reason=payload.reason if payload else None)
    return _to_instructor_booking(booking, _appointment_type_titles(coordinator, [booking]))


@router.post("/instructor/bookings/{booking_id}/cancel", response_model=InstructorBookingResponse)
def cancel_booking(
    booking_id: str,
    payload: BookingActionRequest | None = Body(default=None),
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> InstructorBookingResponse:
    coordinator = BookingCoordinator()
    booking = coordinator.cancel(current_user.id, booking_id, reason=payload.reason if payload else None)
    return _to_instructor_booking(booking, _appointment_type_titles(coordinator, [booking]))


def _appointment_type_titles(
    coordinator: BookingCoordinator,
    bookings: list[dict[str, Any]],
) -> dict[str, str]:
    titles: dict[str, str] = {}
    for booking in bookings:
        type_id = str(booking["appointment_type_id"])
        if type_id in titles:
            continue
        appointment_type = coordinator.stores.appointment_types.get(type_id)
        if appointment_type:
            titles[type_id] = str(appointment_type["title"])
    return titles


def _to_summary(booking: Mapping[str, Any], titles: Mapping[str, str]) -> BookingSummary:
    student = booking.get("student_info") or {}
    return BookingSummary(
        id=str(booking["_id"]),
        instructor_id=str(booking["instructor_id"]),
        appointment_type_id=str(booking["appointment_type_id"]),
        appointment_type=titles.get(str(booking["appointment_type_id"])),
        start_time=booking["start_time"],
        end_time=booking["end_time"],
        status=str(booking["status"]),
        student_name=str(student.get("name", "")),
        external_event_id=booking.get("external_event_id"),
        meet_link=booking.get("meet_link"),
    )


def _to_instructor_booking(
    booking: Mapping[str, Any],
    titles: Mapping[str, str],
) -> InstructorBookingResponse:
    student = booking.get("student_info") or {}
    return InstructorBookingResponse(
        **_to_summary(booking, titles).model_dump(),
        student_email=str(student.get("email", "")),
        student_phone=student.get("phone"),
        student_notes=booking.get("student_notes"),
        party_size=int(booking.get("party_size") or 1),
        booked_at=booking["booked_at"],
        confirmed_at=booking.get("confirmed_at"),
        cancelled_at=booking.get("cancelled_at"),
        cancellation_reason=booking.get("cancellation_reason"),
    )
