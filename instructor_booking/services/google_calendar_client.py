import json
from datetime import UTC, datetime, timedelta
from http.client import RemoteDisconnected
from typing import Any
from urllib import error, parse, request
from uuid import uuid4

from instructor_booking.services.intervals import Interval, ensure_utc

GOOGLE_OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_OAUTH_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
)

_TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class GoogleCalendarError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class GoogleCalendarAuthError(GoogleCalendarError):
    """The grant was revoked or the credentials can no longer be refreshed."""


def build_authorization_url(*, client_id: str, redirect_uri: str, state: str) -> str:
    query = parse.urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        },
    )
    return f"{GOOGLE_OAUTH_AUTHORIZE_URL}?{query}"


class GoogleCalendarClient:
    def __init__(
        self,
        *,
        access_token: str = "",
        refresh_token: str = "",
        client_id: str = "",
        client_secret: str = "",
        timeout_seconds: float = 10.0,
        api_base_url: str = "https://www.googleapis.com/calendar/v3",
        oauth_token_url: str = GOOGLE_OAUTH_TOKEN_URL,
        oauth_revoke_url: str = GOOGLE_OAUTH_REVOKE_URL,
    ) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout_seconds = timeout_seconds
        self.api_base_url = api_base_url.rstrip("/")
        self.oauth_token_url = oauth_token_url
        self.oauth_revoke_url = oauth_revoke_url
        self.token_expiry: datetime | None = None

    def exchange_code(self, *, code: str, redirect_uri: str) -> dict[str, Any]:
        payload = self._post_form(
            self.oauth_token_url,
            {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            label="Google OAuth code exchange",
        )
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise GoogleCalendarAuthError("Google OAuth code exchange did not include access_token.")
        self._apply_token_payload(payload)
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_expiry": self.token_expiry,
        }

    def get_primary_calendar(self) -> dict[str, Any]:
        payload = self._request_json("GET", "/calendars/primary")
        calendar_id = payload.get("id")
        if not isinstance(calendar_id, str) or not calendar_id.strip():
            raise GoogleCalendarError("Google Calendar primary calendar response missing id.")
        return {"id": calendar_id.strip(), "time_zone": payload.get("timeZone") or "UTC"}

    def watch_events(
        self,
        *,
        calendar_id: str,
        channel_id: str,
        webhook_url: str,
        ttl: timedelta,
    ) -> dict[str, Any]:
        payload = self._request_json(
            "POST",
            f"/calendars/{parse.quote(calendar_id, safe='')}/events/watch",
            payload={
                "id": channel_id,
                "type": "web_hook",
                "address": webhook_url,
                "params": {"ttl": str(int(ttl.total_seconds()))},
            },
        )
        resource_id = payload.get("resourceId")
        if not isinstance(resource_id, str) or not resource_id.strip():
            raise GoogleCalendarError("Google Calendar watch response missing resourceId.")
        return {
            "channel_id": str(payload.get("id") or channel_id),
            "resource_id": resource_id.strip(),
            "expiration": _parse_expiration(payload.get("expiration"), ttl),
        }

    def stop_channel(self, *, channel_id: str, resource_id: str) -> None:
        self._request_json(
            "POST",
            "/channels/stop",
            payload={"id": channel_id, "resourceId": resource_id},
        )

    def query_busy(
        self,
        *,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[Interval]:
        payload = self._request_json(
            "POST",
            "/freeBusy",
            payload={
                "timeMin": _to_rfc3339(time_min),
                "timeMax": _to_rfc3339(time_max),
                "timeZone": "UTC",
                "items": [{"id": calendar_id}],
            },
        )
        calendars = payload.get("calendars")
        calendar_payload = calendars.get(calendar_id) if isinstance(calendars, dict) else None
        if not isinstance(calendar_payload, dict):
            raise GoogleCalendarError("Google Calendar freeBusy response missing calendar.")

        errors = calendar_payload.get("errors")
        if isinstance(errors, list) and errors:
            reasons = ", ".join(
                str(item.get("reason", "unknown")) for item in errors if isinstance(item, dict)
            )
            raise GoogleCalendarError(f"Google Calendar freeBusy error: {reasons or 'unknown'}")

        intervals: list[Interval] = []
        for raw_busy in calendar_payload.get("busy") or []:
            if not isinstance(raw_busy, dict):
                continue
            try:
                start = _parse_rfc3339(str(raw_busy["start"]))
                end = _parse_rfc3339(str(raw_busy["end"]))
            except (KeyError, ValueError):
                continue
            if start < end:
                intervals.append(Interval(start, end))
        return sorted(intervals)

    def create_booking_event(
        self,
        *,
        calendar_id: str,
        summary: str,
        description: str,
        start_time: datetime,
        end_time: datetime,
        attendee_emails: list[str] | None = None,
    ) -> dict[str, str | None]:
        payload: dict[str, Any] = {
            "summary": summary[:500],
            "description": description[:8000],
            "start": {"dateTime": _to_rfc3339(start_time), "timeZone": "UTC"},
            "end": {"dateTime": _to_rfc3339(end_time), "timeZone": "UTC"},
            "conferenceData": {
                "createRequest": {
                    "requestId": f"booking-{uuid4().hex}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                },
            },
        }
        query_params = [("conferenceDataVersion", "1")]
        attendees = sorted({email.strip().lower() for email in attendee_emails or [] if "@" in email})
        if attendees:
            payload["attendees"] = [{"email": email} for email in attendees]
            query_params.append(("sendUpdates", "all"))

        response_payload = self._request_json(
            "POST",
            f"/calendars/{parse.quote(calendar_id, safe='')}/events?{parse.urlencode(query_params)}",
            payload=payload,
        )
        event_id = response_payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise GoogleCalendarError("Google Calendar create event response missing id.")
        return {
            "event_id": event_id,
            "meet_link": _extract_meet_link(response_payload),
        }

    def delete_event(self, *, calendar_id: str, event_id: str) -> None:
        try:
            self._request_json(
                "DELETE",
                f"/calendars/{parse.quote(calendar_id, safe='')}/events/{parse.quote(event_id, safe='')}",
            )
        except GoogleCalendarError as exc:
            if exc.status_code in {404, 410}:
                return
            raise

    def revoke_token(self) -> None:
        token = self.refresh_token or self.access_token
        if not token:
            return
        self._post_form(self.oauth_revoke_url, {"token": token}, label="Google OAuth revoke")

    def _request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        *,
        allow_refresh: bool = True,
    ) -> dict[str, Any]:
        if not self.access_token and self._can_refresh_access_token():
            self._refresh_access_token()

        req = request.Request(
            f"{self.api_base_url}{path}",
            data=json.dumps(payload).encode("utf-8") if payload is not None else None,
            method=method,
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            },
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise GoogleCalendarError("Google Calendar API request timed out.", transient=True) from exc
        except RemoteDisconnected as exc:
            raise GoogleCalendarError(
                "Google Calendar API connection was closed before sending a response.",
                transient=True,
            ) from exc
        except error.HTTPError as exc:
            if exc.code == 401 and allow_refresh and self._can_refresh_access_token():
                self._refresh_access_token()
                return self._request_json(method, path, payload, allow_refresh=False)
            body = exc.read().decode("utf-8", errors="ignore")
            error_class = GoogleCalendarAuthError if exc.code == 401 else GoogleCalendarError
            raise error_class(
                f"Google Calendar API HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
                transient=exc.code in _TRANSIENT_STATUS_CODES,
            ) from exc
        except error.URLError as exc:
            raise GoogleCalendarError(
                f"Google Calendar API connection error: {exc.reason}",
                transient=True,
            ) from exc

        return _decode_json_object(response_body, "Google Calendar API")

    def _post_form(self, url: str, fields: dict[str, str], *, label: str) -> dict[str, Any]:
        req = request.Request(
            url,
            data=parse.urlencode(fields).encode("utf-8"),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise GoogleCalendarError(f"{label} request timed out.", transient=True) from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            error_class = GoogleCalendarAuthError if _is_auth_failure(exc.code, body) else GoogleCalendarError
            raise error_class(
                f"{label} HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
                transient=exc.code in _TRANSIENT_STATUS_CODES,
            ) from exc
        except error.URLError as exc:
            raise GoogleCalendarError(f"{label} connection error: {exc.reason}", transient=True) from exc

        return _decode_json_object(response_body, label)

    def _can_refresh_access_token(self) -> bool:
        return bool(
            self.refresh_token.strip()
            and self.client_id.strip()
            and self.client_secret.strip()
        )

    def _refresh_access_token(self) -> None:
        payload = self._post_form(
            self.oauth_token_url,
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
            label="Google OAuth refresh",
        )
        new_access_token = payload.get("access_token")
        if not isinstance(new_access_token, str) or not new_access_token.strip():
            raise GoogleCalendarAuthError("Google OAuth refresh did not include access_token.")
        self._apply_token_payload(payload)

    def _apply_token_payload(self, payload: dict[str, Any]) -> None:
        self.access_token = str(payload["access_token"]).strip()
        refresh_token = payload.get("refresh_token")
        if isinstance(refresh_token, str) and refresh_token.strip():
            self.refresh_token = refresh_token.strip()
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            self.token_expiry = datetime.now(UTC) + timedelta(seconds=int(expires_in))


def _is_auth_failure(status_code: int, body: str) -> bool:
    if status_code == 401:
        return True
    return status_code == 400 and ("invalid_grant" in body or "invalid_token" in body)


def _decode_json_object(raw_body: bytes, label: str) -> dict[str, Any]:
    if not raw_body.strip():
        return {}
    try:
        parsed_body = json.loads(raw_body.decode("utf-8"))
    except json.JSONDecodeError as exc:
        raise GoogleCalendarError(f"{label} returned invalid JSON.") from exc
    if not isinstance(parsed_body, dict):
        raise GoogleCalendarError(f"{label} response is not a JSON object.")
    return parsed_body


def _extract_meet_link(payload: dict[str, Any]) -> str | None:
    hangout_link = payload.get("hangoutLink")
    if isinstance(hangout_link, str) and hangout_link.strip():
        return hangout_link.strip()
    conference_data = payload.get("conferenceData")
    if not isinstance(conference_data, dict):
        return None
    for entry in conference_data.get("entryPoints") or []:
        if isinstance(entry, dict) and entry.get("entryPointType", "video") == "video":
            uri = entry.get("uri")
            if isinstance(uri, str) and uri.strip():
                return uri.strip()
    return None


def _parse_expiration(raw_value: Any, ttl: timedelta) -> datetime:
    # Google reports channel expiration as milliseconds since the epoch.
    try:
        return datetime.fromtimestamp(int(raw_value) / 1000, tz=UTC)
    except (TypeError, ValueError):
        return datetime.now(UTC) + ttl


def _to_rfc3339(value: datetime) -> str:
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def _parse_rfc3339(raw_value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(raw_value.strip().replace("Z", "+00:00")))
