from datetime import UTC, datetime

from instructor_booking.core.config import Settings
from instructor_booking.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            service=self.settings.app_name,
            version=self.settings.app_version,
            environment=self.settings.app_env,
            scheduling_store="mongodb" if self.settings.scheduling_store == "mongodb" else "memory",
            timestamp=datetime.now(UTC),
        )
