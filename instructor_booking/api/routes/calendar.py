from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from fastapi.responses import RedirectResponse

from instructor_booking.core.config import get_settings
from instructor_booking.core.errors import SchedulingError, ValidationError
from instructor_booking.schemas.auth import CurrentUserResponse
from instructor_booking.schemas.calendar import (
    CalendarDisconnectResponse,
    CalendarStatusResponse,
    WebhookAckResponse,
)
from instructor_booking.services.auth_service import require_current_user
from instructor_booking.services.calendar_bridge import ExternalCalendarBridge

router = APIRouter(prefix="/availability", tags=["calendar"])


@router.post("/webhook/calendar", response_model=WebhookAckResponse)
def receive_calendar_notification(
    background_tasks: BackgroundTasks,
    resource_id: str | None = Header(default=None, alias="X-Goog-Resource-Id"),
    channel_id: str | None = Header(default=None, alias="X-Goog-Channel-Id"),
    resource_state: str | None = Header(default=None, alias="X-Goog-Resource-State"),
) -> WebhookAckResponse:
    if not resource_id or not channel_id or not resource_state:
        raise ValidationError("Missing notification headers", code="missing_webhook_headers")

    bridge = ExternalCalendarBridge()
    outcome = bridge.on_notification(
        resource_id=resource_id,
        channel_id=channel_id,
        state=resource_state,
    )
    if not outcome.refresh_required:
        return WebhookAckResponse(status="acknowledged")

    background_tasks.add_task(bridge.refresh_in_background, outcome.instructor_id)
    return WebhookAckResponse(status="accepted")


@router.get("/instructor/google-connect")
def start_google_connect(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> RedirectResponse:
    url = ExternalCalendarBridge().build_connect_url(current_user.id)
    return RedirectResponse(url=url, status_code=302)


@router.get("/instructor/google-callback")
def handle_google_callback(
    code: str = Query(..., min_length=1),
    state: str = Query(..., min_length=1),
) -> RedirectResponse:
    bridge = ExternalCalendarBridge()
    frontend_base_url = get_settings().frontend_base_url.rstrip("/")
    try:
        instructor_id = bridge.instructor_for_state(state)
        bridge.connect(instructor_id, code)
    except SchedulingError as exc:
        query = urlencode({"calendar": "error", "reason": exc.code})
    else:
        query = urlencode({"calendar": "connected"})
    return RedirectResponse(url=f"{frontend_base_url}/instructor/availability?{query}", status_code=302)


@router.get("/instructor/google-status", response_model=CalendarStatusResponse)
def get_google_status(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CalendarStatusResponse:
    return CalendarStatusResponse(**ExternalCalendarBridge().status(current_user.id))


@router.post("/instructor/google-disconnect", response_model=CalendarDisconnectResponse)
def disconnect_google(
    current_user: CurrentUserResponse = Depends(require_current_user),
) -> CalendarDisconnectResponse:
    ExternalCalendarBridge().disconnect(current_user.id)
    return CalendarDisconnectResponse(disconnected=True)
