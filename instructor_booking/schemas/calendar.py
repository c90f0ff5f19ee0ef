from datetime import datetime

from instructor_booking.schemas.common import CamelModel


class WebhookAckResponse(CamelModel):
    status: str


class CalendarStatusResponse(CamelModel):
    connected: bool
    sync_status: str | None = None
    calendar_id: str | None = None
    channel_expiry: datetime | None = None
    last_synced_at: datetime | None = None
    last_error: str | None = None


class CalendarDisconnectResponse(CamelModel):
    disconnected: bool = True
