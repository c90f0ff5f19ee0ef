import io
import json
from datetime import UTC, datetime, timedelta
from urllib import error

import pytest

from instructor_booking.services.google_calendar_client import (
    GoogleCalendarAuthError,
    GoogleCalendarClient,
    GoogleCalendarError,
    build_authorization_url,
)
from instructor_booking.services.intervals import Interval


class _MockResponse:
    def __init__(self, payload: dict[str, object] | None) -> None:
        self._payload = json.dumps(payload).encode("utf-8") if payload is not None else b""

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


def _http_error(status_code: int, payload: dict[str, object]) -> error.HTTPError:
    return error.HTTPError(
        url="https://www.googleapis.com/calendar/v3/freeBusy",
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(json.dumps(payload).encode("utf-8")),
    )


def _patch_urlopen(monkeypatch: pytest.MonkeyPatch, fake_urlopen) -> None:  # type: ignore[no-untyped-def]
    monkeypatch.setattr("instructor_booking.services.google_calendar_client.request.urlopen", fake_urlopen)


def test_authorization_url_requests_offline_consent() -> None:
    url = build_authorization_url(
        client_id="client-id",
        redirect_uri="http://localhost:8000/callback",
        state="signed-state",
    )

    assert url.startswith("https://accounts.google.com/")
    assert "access_type=offline" in url
    assert "prompt=consent" in url
    assert "state=signed-state" in url


def test_google_calendar_client_refreshes_token_after_401(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls: list[str] = []

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        target = req.full_url
        if "oauth2.googleapis.com/token" in target:
            calls.append("refresh")
            return _MockResponse({"access_token": "new-access-token", "expires_in": 3600})

        auth_header = req.headers.get("Authorization", "")
        if auth_header == "Bearer old-access-token":
            calls.append("calendar-old")
            raise _http_error(401, {"error": {"message": "Invalid Credentials"}})
        if auth_header == "Bearer new-access-token":
            calls.append("calendar-new")
            return _MockResponse({"id": "coach@example.com", "timeZone": "America/Bogota"})
        raise AssertionError(f"Unexpected Authorization header: {auth_header}")

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(
        access_token="old-access-token",
        refresh_token="refresh-token",
        client_id="google-client-id",
        client_secret="google-client-secret",
    )
    calendar = client.get_primary_calendar()

    assert calendar == {"id": "coach@example.com", "time_zone": "America/Bogota"}
    assert calls == ["calendar-old", "refresh", "calendar-new"]
    assert client.access_token == "new-access-token"
    assert client.token_expiry is not None


def test_google_calendar_client_raises_auth_error_when_401_and_no_refresh_config(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(401, {"error": {"message": "Invalid Credentials"}})

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(access_token="expired-token")
    with pytest.raises(GoogleCalendarAuthError, match="HTTP 401"):
        client.get_primary_calendar()


def test_google_calendar_client_treats_invalid_grant_as_revoked(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        if "oauth2.googleapis.com/token" in req.full_url:
            raise _http_error(400, {"error": "invalid_grant"})
        raise _http_error(401, {"error": {"message": "Invalid Credentials"}})

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(
        access_token="old-access-token",
        refresh_token="revoked-refresh-token",
        client_id="google-client-id",
        client_secret="google-client-secret",
    )
    with pytest.raises(GoogleCalendarAuthError):
        client.query_busy(
            calendar_id="primary",
            time_min=datetime(2030, 1, 7, tzinfo=UTC),
            time_max=datetime(2030, 1, 8, tzinfo=UTC),
        )


def test_google_calendar_client_marks_server_errors_transient(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(503, {"error": {"message": "Backend Error"}})

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(access_token="token")
    with pytest.raises(GoogleCalendarError) as exc_info:
        client.get_primary_calendar()

    assert exc_info.value.status_code == 503
    assert exc_info.value.transient is True
    assert not isinstance(exc_info.value, GoogleCalendarAuthError)


def test_query_busy_parses_and_sorts_intervals(monkeypatch: pytest.MonkeyPatch) -> None:
    captured_payload: dict[str, object] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured_payload.update(json.loads(req.data.decode("utf-8")))
        return _MockResponse(
            {
                "calendars": {
                    "coach@example.com": {
                        "busy": [
                            {"start": "2030-01-07T15:00:00Z", "end": "2030-01-07T16:00:00Z"},
                            {"start": "2030-01-07T09:00:00-05:00", "end": "2030-01-07T10:00:00-05:00"},
                            {"start": "not-a-date", "end": "2030-01-07T10:00:00Z"},
                        ],
                    },
                },
            },
        )

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(access_token="token")
    intervals = client.query_busy(
        calendar_id="coach@example.com",
        time_min=datetime(2030, 1, 7, tzinfo=UTC),
        time_max=datetime(2030, 1, 8, tzinfo=UTC),
    )

    assert captured_payload["timeMin"] == "2030-01-07T00:00:00Z"
    assert captured_payload["items"] == [{"id": "coach@example.com"}]
    assert intervals == [
        Interval(datetime(2030, 1, 7, 14, tzinfo=UTC), datetime(2030, 1, 7, 15, tzinfo=UTC)),
        Interval(datetime(2030, 1, 7, 15, tzinfo=UTC), datetime(2030, 1, 7, 16, tzinfo=UTC)),
    ]


def test_query_busy_surfaces_calendar_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        return _MockResponse({"calendars": {"primary": {"errors": [{"reason": "notFound"}]}}})

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(access_token="token")
    with pytest.raises(GoogleCalendarError, match="notFound"):
        client.query_busy(
            calendar_id="primary",
            time_min=datetime(2030, 1, 7, tzinfo=UTC),
            time_max=datetime(2030, 1, 8, tzinfo=UTC),
        )


def test_create_booking_event_requests_meet_and_invites_student(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured_url = {"value": ""}
    captured_payload: dict[str, object] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured_url["value"] = req.full_url
        captured_payload.update(json.loads(req.data.decode("utf-8")))
        return _MockResponse(
            {
                "id": "event-456",
                "conferenceData": {
                    "entryPoints": [
                        {"entryPointType": "phone", "uri": "tel:+1-555-0100"},
                        {"entryPointType": "video", "uri": "https://meet.google.com/abc-defg-hij"},
                    ],
                },
            },
        )

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(access_token="token")
    event = client.create_booking_event(
        calendar_id="coach@example.com",
        summary="Private Lesson - Sam Student",
        description="Appointment Type: Private Lesson",
        start_time=datetime(2030, 1, 7, 9, tzinfo=UTC),
        end_time=datetime(2030, 1, 7, 9, 30, tzinfo=UTC),
        attendee_emails=["Sam@Example.com"],
    )

    assert event == {"event_id": "event-456", "meet_link": "https://meet.google.com/abc-defg-hij"}
    assert "conferenceDataVersion=1" in captured_url["value"]
    assert "sendUpdates=all" in captured_url["value"]
    assert captured_payload["start"] == {"dateTime": "2030-01-07T09:00:00Z", "timeZone": "UTC"}
    assert captured_payload["attendees"] == [{"email": "sam@example.com"}]
    conference_data = captured_payload["conferenceData"]
    assert isinstance(conference_data, dict)
    assert conference_data["createRequest"]["conferenceSolutionKey"] == {"type": "hangoutsMeet"}


def test_watch_events_parses_millisecond_expiration(monkeypatch: pytest.MonkeyPatch) -> None:
    expiration = datetime(2030, 1, 14, tzinfo=UTC)

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        body = json.loads(req.data.decode("utf-8"))
        assert body["type"] == "web_hook"
        assert body["params"] == {"ttl": "604800"}
        return _MockResponse(
            {
                "id": body["id"],
                "resourceId": "resource-1",
                "expiration": str(int(expiration.timestamp() * 1000)),
            },
        )

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(access_token="token")
    channel = client.watch_events(
        calendar_id="coach@example.com",
        channel_id="channel-1",
        webhook_url="https://example.com/api/availability/webhook/calendar",
        ttl=timedelta(days=7),
    )

    assert channel == {"channel_id": "channel-1", "resource_id": "resource-1", "expiration": expiration}


def test_delete_event_ignores_missing_events(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        assert req.get_method() == "DELETE"
        raise _http_error(410, {"error": {"message": "Resource has been deleted"}})

    _patch_urlopen(monkeypatch, fake_urlopen)

    GoogleCalendarClient(access_token="token").delete_event(calendar_id="primary", event_id="event-1")


def test_exchange_code_keeps_refresh_token(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        assert b"grant_type=authorization_code" in req.data
        return _MockResponse(
            {"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3599},
        )

    _patch_urlopen(monkeypatch, fake_urlopen)

    client = GoogleCalendarClient(client_id="client-id", client_secret="client-secret")
    tokens = client.exchange_code(code="auth-code", redirect_uri="http://localhost:8000/callback")

    assert tokens["access_token"] == "access-1"
    assert tokens["refresh_token"] == "refresh-1"
    assert isinstance(tokens["token_expiry"], datetime)
