"""
Link between an instructor and their Google Calendar.

The bridge owns the ExternalCalendarLink lifecycle (connect, channel renewal,
disconnect) and the busy-interval cache that availability reads. Provider
failures never leak as GoogleCalendarError: they become ``UpstreamError`` or,
for a revoked grant, ``CalendarAccessRevokedError`` after the link has been
flipped to ``disconnected``.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar
from uuid import uuid4

from instructor_booking.core.config import Settings, get_settings
from instructor_booking.core.errors import (
    AuthError,
    CalendarAccessRevokedError,
    NotFoundError,
    UpstreamError,
    WebhookIdentityError,
)
from instructor_booking.services.calendar_link_store import (
    SYNC_STATUS_ACTIVE,
    SYNC_STATUS_DEGRADED,
    SYNC_STATUS_DISCONNECTED,
)
from instructor_booking.services.google_calendar_client import (
    GoogleCalendarAuthError,
    GoogleCalendarClient,
    GoogleCalendarError,
    build_authorization_url,
)
from instructor_booking.services.intervals import Interval, ensure_utc, subtract_intervals
from instructor_booking.services.scheduling_stores import SchedulingStores, create_scheduling_stores
from instructor_booking.services.security_utils import (
    TOKEN_PURPOSE_CALENDAR_STATE,
    sign_token,
    verify_token,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYNC_STATE = "sync"
_OAUTH_STATE_TTL = timedelta(minutes=10)

ClientFactory = Callable[[Mapping[str, Any] | None], GoogleCalendarClient]


@dataclass(frozen=True)
class NotificationOutcome:
    instructor_id: str
    refresh_required: bool


class ExternalCalendarBridge:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        stores: SchedulingStores | None = None,
        client_factory: ClientFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.stores = stores or create_scheduling_stores(self.settings)
        self.links = self.stores.calendar_links
        self._client_factory = client_factory or self._default_client
        self._sleep = sleep

    def build_connect_url(self, instructor_id: str) -> str:
        self._assert_configured()
        state, _ = sign_token(
            purpose=TOKEN_PURPOSE_CALENDAR_STATE,
            claims={"sub": instructor_id, "nonce": secrets.token_urlsafe(16)},
            secret_key=self.settings.auth_secret_key,
            ttl=_OAUTH_STATE_TTL,
        )
        return build_authorization_url(
            client_id=self.settings.google_calendar_client_id,
            redirect_uri=self.settings.google_calendar_redirect_uri,
            state=state,
        )

    def instructor_for_state(self, state: str) -> str:
        claims = verify_token(
            state,
            purpose=TOKEN_PURPOSE_CALENDAR_STATE,
            secret_key=self.settings.auth_secret_key,
        )
        subject = claims.get("sub") if claims else None
        if not isinstance(subject, str) or not subject:
            raise AuthError("Invalid OAuth state.", code="invalid_oauth_state")
        return subject

    def connect(self, instructor_id: str, auth_code: str) -> dict[str, Any]:
        self._assert_configured()
        client = self._client_factory(None)
        try:
            tokens = client.exchange_code(
                code=auth_code,
                redirect_uri=self.settings.google_calendar_redirect_uri,
            )
            calendar = client.get_primary_calendar()
            channel = client.watch_events(
                calendar_id=calendar["id"],
                channel_id=uuid4().hex,
                webhook_url=self.settings.google_calendar_webhook_url,
                ttl=timedelta(hours=self.settings.google_calendar_channel_ttl_hours),
            )
        except GoogleCalendarError as exc:
            logger.warning(
                "Calendar connect failed instructor_id=%s error=%s",
                instructor_id,
                exc,
            )
            raise UpstreamError(
                "Unable to connect Google Calendar.",
                code="calendar_connect_failed",
            ) from exc

        previous = self.links.get_by_instructor(instructor_id)
        if previous:
            self._stop_channel_quietly(previous)

        link = self.links.save(
            instructor_id,
            {
                "provider": "google",
                "provider_account_id": calendar["id"],
                "calendar_id": calendar["id"],
                "access_token": tokens["access_token"],
                "refresh_token": tokens["refresh_token"] or (previous or {}).get("refresh_token", ""),
                "token_expiry": tokens["token_expiry"],
                "webhook_channel_id": channel["channel_id"],
                "webhook_resource_id": channel["resource_id"],
                "channel_expiry": channel["expiration"],
                "sync_status": SYNC_STATUS_ACTIVE,
                "last_error": None,
                "last_synced_at": None,
            },
        )
        self.links.clear_busy_cache(instructor_id)
        logger.info(
            "Calendar connected instructor_id=%s calendar_id=%s channel_id=%s",
            instructor_id,
            link["calendar_id"],
            link["webhook_channel_id"],
        )

        try:
            self.refresh_busy_intervals(instructor_id)
        except UpstreamError as exc:
            logger.warning(
                "Initial busy pull failed instructor_id=%s reason=%s",
                instructor_id,
                exc.code,
            )
        return self.links.get_by_instructor(instructor_id) or link

    def on_notification(
        self,
        *,
        resource_id: str,
        channel_id: str,
        state: str,
    ) -> NotificationOutcome:
        link = self.links.get_by_resource_id(resource_id)
        if not link:
            logger.warning(
                "Webhook rejected reason=unknown_resource resource_id=%s channel_id=%s",
                resource_id,
                channel_id,
            )
            raise NotFoundError("Unknown resource", code="unknown_resource")

        instructor_id = str(link["instructor_id"])
        if link.get("webhook_channel_id") != channel_id:
            logger.warning(
                "Webhook rejected reason=channel_mismatch resource_id=%s channel_id=%s "
                "instructor_id=%s",
                resource_id,
                channel_id,
                instructor_id,
            )
            raise WebhookIdentityError("Channel mismatch")

        if state == SYNC_STATE:
            logger.info("Webhook sync handshake instructor_id=%s", instructor_id)
            return NotificationOutcome(instructor_id=instructor_id, refresh_required=False)

        logger.info(
            "Webhook accepted instructor_id=%s state=%s",
            instructor_id,
            state,
        )
        return NotificationOutcome(instructor_id=instructor_id, refresh_required=True)

    def refresh_busy_intervals(self, instructor_id: str) -> list[Interval]:
        link = self.links.get_by_instructor(instructor_id)
        if not link or link.get("sync_status") != SYNC_STATUS_ACTIVE:
            return []

        window = self.sync_window()
        intervals = self._pull_busy(link, window)
        self.links.replace_busy_cache(
            instructor_id,
            window_start=window.start,
            window_end=window.end,
            intervals=intervals,
        )
        self.links.update(
            instructor_id,
            {"last_synced_at": datetime.now(UTC), "last_error": None},
        )
        logger.info(
            "Busy cache refreshed instructor_id=%s intervals=%s",
            instructor_id,
            len(intervals),
        )
        return intervals

    def refresh_in_background(self, instructor_id: str) -> None:
        """Entry point for post-response webhook work; failures are logged only."""
        try:
            self.refresh_busy_intervals(instructor_id)
        except UpstreamError as exc:
            logger.warning(
                "Background busy pull failed instructor_id=%s reason=%s",
                instructor_id,
                exc.code,
            )
        except Exception:
            logger.exception("Unexpected error in background busy pull instructor_id=%s", instructor_id)

    def get_busy_intervals(
        self,
        instructor_id: str,
        window: Interval,
        *,
        now: datetime | None = None,
    ) -> list[Interval]:
        link = self.links.get_by_instructor(instructor_id)
        if not link or link.get("sync_status") != SYNC_STATUS_ACTIVE:
            return []

        channel_expiry = link.get("channel_expiry")
        if channel_expiry and ensure_utc(channel_expiry) <= ensure_utc(now or datetime.now(UTC)):
            self._mark_channel_expired(link)
            return []

        cache = self.links.get_busy_cache(instructor_id)
        if cache and cache["window_start"] <= window.start and window.end <= cache["window_end"]:
            return [interval for interval in cache["intervals"] if interval.overlaps(window)]

        try:
            return self._pull_busy(link, window)
        except UpstreamError as exc:
            logger.warning(
                "External busy data unavailable instructor_id=%s reason=%s",
                instructor_id,
                exc.code,
            )
            return []

    def renew_expiring_links(self, now: datetime | None = None) -> int:
        current_time = ensure_utc(now or datetime.now(UTC))
        cutoff = current_time + timedelta(minutes=self.settings.calendar_channel_renewal_lead_minutes)
        renewed = 0
        for link in self.links.list_expiring_before(
            cutoff,
            statuses=(SYNC_STATUS_ACTIVE, SYNC_STATUS_DEGRADED),
        ):
            if self._renew_link(link):
                renewed += 1
        return renewed

    def disconnect(self, instructor_id: str) -> None:
        link = self.links.get_by_instructor(instructor_id)
        if not link:
            raise NotFoundError("No calendar connected", code="calendar_not_connected")

        self._stop_channel_quietly(link)
        client = self._client_factory(link)
        try:
            client.revoke_token()
        except GoogleCalendarError as exc:
            logger.warning(
                "Token revoke failed instructor_id=%s error=%s",
                instructor_id,
                exc,
            )
        self.links.delete(instructor_id)
        logger.info("Calendar disconnected instructor_id=%s", instructor_id)

    def mirror_booking(self, booking: Mapping[str, Any], *, title: str) -> tuple[str, str | None] | None:
        """Create the calendar event for a booking; ``None`` when no active link exists."""
        instructor_id = str(booking["instructor_id"])
        link = self.links.get_by_instructor(instructor_id)
        if not link or link.get("sync_status") != SYNC_STATUS_ACTIVE:
            return None

        student = booking.get("student_info") or {}
        student_name = str(student.get("name") or student.get("email") or "Student")
        description_lines = [
            f"Appointment Type: {title}",
            f"Student: {student_name}",
        ]
        if student.get("email"):
            description_lines.append(f"Email: {student['email']}")
        if student.get("phone"):
            description_lines.append(f"Phone: {student['phone']}")
        if booking.get("student_notes"):
            description_lines.append(f"Notes: {booking['student_notes']}")
        if int(booking.get("party_size") or 1) > 1:
            description_lines.append(f"Party Size: {booking['party_size']}")

        client = self._client_factory(link)
        try:
            event = client.create_booking_event(
                calendar_id=str(link["calendar_id"]),
                summary=f"{title} - {student_name}",
                description="\n".join(description_lines),
                start_time=booking["start_time"],
                end_time=booking["end_time"],
                attendee_emails=[str(student.get("email", ""))],
            )
        except GoogleCalendarAuthError as exc:
            self._mark_disconnected(link, exc)
            raise CalendarAccessRevokedError("Calendar access was revoked.") from exc
        except GoogleCalendarError as exc:
            raise UpstreamError("Unable to create calendar event.", code="calendar_event_failed") from exc
        finally:
            self._persist_tokens(link, client)
        return str(event["event_id"]), event["meet_link"]

    def release_booking_interval(self, booking: Mapping[str, Any]) -> None:
        """Drop a cancelled booking's own mirrored event from the cached busy time."""
        instructor_id = str(booking["instructor_id"])
        cache = self.links.get_busy_cache(instructor_id)
        if not cache:
            return
        released = Interval(ensure_utc(booking["start_time"]), ensure_utc(booking["end_time"]))
        self.links.replace_busy_cache(
            instructor_id,
            window_start=cache["window_start"],
            window_end=cache["window_end"],
            intervals=subtract_intervals(cache["intervals"], [released]),
        )

    def remove_booking_event(self, booking: Mapping[str, Any]) -> None:
        event_id = booking.get("external_event_id")
        if not event_id:
            return
        link = self.links.get_by_instructor(str(booking["instructor_id"]))
        if not link or link.get("sync_status") == SYNC_STATUS_DISCONNECTED:
            return
        client = self._client_factory(link)
        try:
            client.delete_event(calendar_id=str(link["calendar_id"]), event_id=str(event_id))
        except GoogleCalendarError as exc:
            logger.warning(
                "Calendar event removal failed booking_id=%s event_id=%s error=%s",
                booking.get("_id"),
                event_id,
                exc,
            )
        finally:
            self._persist_tokens(link, client)

    def status(self, instructor_id: str) -> dict[str, Any]:
        link = self.links.get_by_instructor(instructor_id)
        if not link:
            return {"connected": False, "sync_status": None}
        return {
            "connected": link.get("sync_status") != SYNC_STATUS_DISCONNECTED,
            "sync_status": link.get("sync_status"),
            "calendar_id": link.get("calendar_id"),
            "channel_expiry": link.get("channel_expiry"),
            "last_synced_at": link.get("last_synced_at"),
            "last_error": link.get("last_error"),
        }

    def sync_window(self) -> Interval:
        today = datetime.now(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        return Interval(today, today + timedelta(days=self.settings.calendar_sync_horizon_days))

    def _renew_link(self, link: Mapping[str, Any]) -> bool:
        instructor_id = str(link["instructor_id"])
        client = self._client_factory(link)
        try:
            channel = self._with_retries(
                lambda: client.watch_events(
                    calendar_id=str(link["calendar_id"]),
                    channel_id=uuid4().hex,
                    webhook_url=self.settings.google_calendar_webhook_url,
                    ttl=timedelta(hours=self.settings.google_calendar_channel_ttl_hours),
                ),
            )
        except GoogleCalendarAuthError as exc:
            self._mark_disconnected(link, exc)
            return False
        except GoogleCalendarError as exc:
            self.links.update(
                instructor_id,
                {"sync_status": SYNC_STATUS_DEGRADED, "last_error": str(exc)},
            )
            self.links.clear_busy_cache(instructor_id)
            logger.warning(
                "Channel renewal failed instructor_id=%s channel_id=%s error=%s",
                instructor_id,
                link.get("webhook_channel_id"),
                exc,
            )
            return False
        finally:
            self._persist_tokens(link, client)

        self._stop_channel_quietly(link)
        self.links.update(
            instructor_id,
            {
                "webhook_channel_id": channel["channel_id"],
                "webhook_resource_id": channel["resource_id"],
                "channel_expiry": channel["expiration"],
                "sync_status": SYNC_STATUS_ACTIVE,
                "last_error": None,
            },
        )
        logger.info(
            "Channel renewed instructor_id=%s channel_id=%s expires_at=%s",
            instructor_id,
            channel["channel_id"],
            channel["expiration"].isoformat(),
        )

        if link.get("sync_status") == SYNC_STATUS_DEGRADED:
            try:
                self.refresh_busy_intervals(instructor_id)
            except UpstreamError as exc:
                logger.warning(
                    "Busy pull after recovery failed instructor_id=%s reason=%s",
                    instructor_id,
                    exc.code,
                )
        return True

    def _pull_busy(self, link: Mapping[str, Any], window: Interval) -> list[Interval]:
        instructor_id = str(link["instructor_id"])
        client = self._client_factory(link)
        try:
            return self._with_retries(
                lambda: client.query_busy(
                    calendar_id=str(link["calendar_id"]),
                    time_min=window.start,
                    time_max=window.end,
                ),
            )
        except GoogleCalendarAuthError as exc:
            self._mark_disconnected(link, exc)
            raise CalendarAccessRevokedError("Calendar access was revoked.") from exc
        except GoogleCalendarError as exc:
            self.links.update(instructor_id, {"last_error": str(exc)})
            raise UpstreamError("Calendar provider unavailable.") from exc
        finally:
            self._persist_tokens(link, client)

    def _with_retries(self, operation: Callable[[], T]) -> T:
        max_attempts = self.settings.calendar_sync_max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return operation()
            except GoogleCalendarAuthError:
                raise
            except GoogleCalendarError as exc:
                if not exc.transient or attempt >= max_attempts:
                    raise
                logger.info("Retrying calendar call attempt=%s error=%s", attempt, exc)
            self._sleep(self.settings.calendar_sync_backoff_seconds * attempt)
        raise GoogleCalendarError("Google Calendar request failed after multiple attempts.")

    def _mark_disconnected(self, link: Mapping[str, Any], exc: Exception) -> None:
        instructor_id = str(link["instructor_id"])
        self.links.update(
            instructor_id,
            {"sync_status": SYNC_STATUS_DISCONNECTED, "last_error": str(exc)},
        )
        self.links.clear_busy_cache(instructor_id)
        logger.error(
            "Calendar access revoked instructor_id=%s calendar_id=%s error=%s",
            instructor_id,
            link.get("calendar_id"),
            exc,
        )

    def _mark_channel_expired(self, link: Mapping[str, Any]) -> None:
        instructor_id = str(link["instructor_id"])
        self.links.update(
            instructor_id,
            {"sync_status": SYNC_STATUS_DEGRADED, "last_error": "Notification channel expired"},
        )
        self.links.clear_busy_cache(instructor_id)
        logger.warning(
            "Notification channel expired instructor_id=%s channel_id=%s expired_at=%s",
            instructor_id,
            link.get("webhook_channel_id"),
            link.get("channel_expiry"),
        )

    def _stop_channel_quietly(self, link: Mapping[str, Any]) -> None:
        channel_id = link.get("webhook_channel_id")
        resource_id = link.get("webhook_resource_id")
        if not channel_id or not resource_id:
            return
        client = self._client_factory(link)
        try:
            client.stop_channel(channel_id=str(channel_id), resource_id=str(resource_id))
        except GoogleCalendarError as exc:
            logger.warning(
                "Channel stop failed instructor_id=%s channel_id=%s error=%s",
                link.get("instructor_id"),
                channel_id,
                exc,
            )

    def _persist_tokens(self, link: Mapping[str, Any], client: GoogleCalendarClient) -> None:
        if client.access_token == link.get("access_token") and client.refresh_token == link.get(
            "refresh_token",
        ):
            return
        self.links.update(
            str(link["instructor_id"]),
            {
                "access_token": client.access_token,
                "refresh_token": client.refresh_token,
                "token_expiry": client.token_expiry,
            },
        )

    def _default_client(self, link: Mapping[str, Any] | None) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            access_token=str((link or {}).get("access_token") or ""),
            refresh_token=str((link or {}).get("refresh_token") or ""),
            client_id=self.settings.google_calendar_client_id,
            client_secret=self.settings.google_calendar_client_secret,
            timeout_seconds=self.settings.google_calendar_api_timeout_seconds,
        )

    def _assert_configured(self) -> None:
        if (
            not self.settings.google_calendar_client_id.strip()
            or not self.settings.google_calendar_client_secret.strip()
            or not self.settings.google_calendar_redirect_uri.strip()
        ):
            raise UpstreamError(
                "Google Calendar integration is not configured.",
                code="calendar_not_configured",
            )
