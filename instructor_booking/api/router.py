from fastapi import APIRouter

from instructor_booking.api.routes.auth import router as auth_router
from instructor_booking.api.routes.availability import router as availability_router
from instructor_booking.api.routes.bookings import router as bookings_router
from instructor_booking.api.routes.calendar import router as calendar_router
from instructor_booking.api.routes.health import router as health_router

api_router = APIRouter()
v1_router = APIRouter(prefix="/v1")

api_router.include_router(health_router)

# Availability last: its /{date} route matches any single segment.
for route_group in (auth_router, bookings_router, calendar_router, availability_router):
    api_router.include_router(route_group)
    v1_router.include_router(route_group)

api_router.include_router(v1_router)
