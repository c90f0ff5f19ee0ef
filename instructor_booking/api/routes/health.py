from fastapi import APIRouter

from instructor_booking.core.config import get_settings
from instructor_booking.schemas.health import HealthResponse
from instructor_booking.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def healthcheck() -> HealthResponse:
    return HealthService(get_settings()).get_status()
