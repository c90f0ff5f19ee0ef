from datetime import datetime

from instructor_booking.schemas.common import CamelModel


class HealthResponse(CamelModel):
    status: str = "ok"
    service: str
    version: str
    environment: str
    scheduling_store: str
    timestamp: datetime
