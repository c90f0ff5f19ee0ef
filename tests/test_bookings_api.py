import pytest
from fastapi.testclient import TestClient

from instructor_booking.core.config import get_settings
from instructor_booking.main import app
from instructor_booking.services.scheduling_stores import clear_scheduling_stores_cache
from instructor_booking.services.user_store import clear_user_store_cache

MONDAY = "2030-01-07"


@pytest.fixture(autouse=True)
def reset_booking_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USER_DATA_STORE", "memory")
    monkeypatch.setenv("SCHEDULING_STORE", "memory")
    monkeypatch.setenv("CALENDAR_CHANNEL_RENEWAL_ENABLED", "false")

    clear_user_store_cache()
    clear_scheduling_stores_cache()
    get_settings.cache_clear()
    yield
    clear_user_store_cache()
    clear_scheduling_stores_cache()
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def instructor(client: TestClient) -> dict[str, object]:
    response = client.post(
        "/api/auth/register",
        json={"fullName": "Coach Example", "email": "coach@example.com", "password": "password123"},
    )
    payload = response.json()
    headers = {"Authorization": f"Bearer {payload['accessToken']}"}
    client.post(
        "/api/availability/instructor/weekly-hours",
        json={"dayOfWeek": 1, "startTime": "09:00", "endTime": "12:00"},
        headers=headers,
    )
    instant = client.post(
        "/api/availability/instructor/appointment-types",
        json={"title": "Private Lesson", "durationMinutes": 30},
        headers=headers,
    ).json()
    approval = client.post(
        "/api/availability/instructor/appointment-types",
        json={"title": "Trial Lesson", "durationMinutes": 30, "requiresApproval": True},
        headers=headers,
    ).json()
    return {
        "id": payload["user"]["id"],
        "headers": headers,
        "instant_type_id": instant["id"],
        "approval_type_id": approval["id"],
    }


def _booking_payload(instructor: dict[str, object], type_key: str, start: str, end: str) -> dict[str, object]:
    return {
        "instructorId": instructor["id"],
        "appointmentTypeId": instructor[type_key],
        "startTime": start,
        "endTime": end,
        "studentName": "Sam Student",
        "studentEmail": "Sam@Example.com",
        "studentNotes": "Working on backhand",
    }


def test_public_availability_lists_slots_from_weekly_hours(client: TestClient, instructor) -> None:  # type: ignore[no-untyped-def]
    response = client.get(f"/api/availability/{MONDAY}", params={"instructorId": instructor["id"]})

    assert response.status_code == 200
    payload = response.json()
    assert payload["date"] == MONDAY
    assert payload["slotDurationMinutes"] == 30
    assert len(payload["slots"]) == 6
    assert payload["slots"][0]["startTime"].startswith("2030-01-07T09:00:00")
    assert payload["slots"][0]["durationMinutes"] == 30


def test_public_availability_validates_inputs(client: TestClient, instructor) -> None:  # type: ignore[no-untyped-def]
    bad_date = client.get("/api/availability/07-01-2030", params={"instructorId": instructor["id"]})
    bad_duration = client.get(
        f"/api/availability/{MONDAY}",
        params={"instructorId": instructor["id"], "slotDuration": 10},
    )
    unknown = client.get(f"/api/availability/{MONDAY}", params={"instructorId": "missing"})

    assert bad_date.status_code == 400
    assert bad_date.json()["code"] == "invalid_date"
    assert bad_duration.status_code == 400
    assert unknown.status_code == 404


def test_booking_removes_slot_and_second_attempt_conflicts(client: TestClient, instructor) -> None:  # type: ignore[no-untyped-def]
    payload = _booking_payload(instructor, "instant_type_id", "2030-01-07T10:00:00Z", "2030-01-07T10:30:00Z")

    first = client.post("/api/availability/book", json=payload)
    second = client.post("/api/availability/book", json=payload)

    assert first.status_code == 201
    body = first.json()
    assert body["success"] is True
    assert body["booking"]["status"] == "confirmed"
    assert body["booking"]["appointmentType"] == "Private Lesson"
    assert body["booking"]["studentName"] == "Sam Student"
    assert second.status_code == 409
    assert second.json()["code"] == "slot_unavailable"

    slots = client.get(f"/api/availability/{MONDAY}", params={"instructorId": instructor["id"]}).json()["slots"]
    assert len(slots) == 5
    assert all(not slot["startTime"].startswith("2030-01-07T10:00:00") for slot in slots)


def test_booking_rejects_wrong_duration_and_bad_email(client: TestClient, instructor) -> None:  # type: ignore[no-untyped-def]
    wrong_length = client.post(
        "/api/availability/book",
        json=_booking_payload(instructor, "instant_type_id", "2030-01-07T10:00:00Z", "2030-01-07T11:00:00Z"),
    )
    bad_email = _booking_payload(instructor, "instant_type_id", "2030-01-07T10:00:00Z", "2030-01-07T10:30:00Z")
    bad_email["studentEmail"] = "not-an-email"

    assert wrong_length.status_code == 400
    assert wrong_length.json()["code"] == "duration_mismatch"
    assert client.post("/api/availability/book", json=bad_email).status_code == 400


def test_instructor_approves_and_cancels_pending_booking(client: TestClient, instructor) -> None:  # type: ignore[no-untyped-def]
    headers = instructor["headers"]
    created = client.post(
        "/api/availability/book",
        json=_booking_payload(instructor, "approval_type_id", "2030-01-07T09:00:00Z", "2030-01-07T09:30:00Z"),
    ).json()["booking"]
    assert created["status"] == "pending"

    pending = client.get("/api/availability/instructor/bookings", params={"status": "pending"}, headers=headers)
    assert [item["id"] for item in pending.json()] == [created["id"]]
    assert pending.json()[0]["studentEmail"] == "sam@example.com"
    assert pending.json()[0]["studentNotes"] == "Working on backhand"

    approved = client.post(f"/api/availability/instructor/bookings/{created['id']}/approve", headers=headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "confirmed"
    assert approved.json()["confirmedAt"] is not None

    rejected = client.post(f"/api/availability/instructor/bookings/{created['id']}/reject", headers=headers)
    assert rejected.status_code == 409
    assert rejected.json()["code"] == "invalid_status_transition"

    cancelled = client.post(
        f"/api/availability/instructor/bookings/{created['id']}/cancel",
        json={"reason": "Court closed"},
        headers=headers,
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["cancellationReason"] == "Court closed"

    slots = client.get(f"/api/availability/{MONDAY}", params={"instructorId": instructor["id"]}).json()["slots"]
    assert len(slots) == 6


def test_booking_actions_require_owner(client: TestClient, instructor) -> None:  # type: ignore[no-untyped-def]
    created = client.post(
        "/api/availability/book",
        json=_booking_payload(instructor, "instant_type_id", "2030-01-07T11:00:00Z", "2030-01-07T11:30:00Z"),
    ).json()["booking"]
    other = client.post(
        "/api/auth/register",
        json={"fullName": "Other Coach", "email": "other@example.com", "password": "password123"},
    ).json()
    other_headers = {"Authorization": f"Bearer {other['accessToken']}"}

    anonymous = client.post(f"/api/availability/instructor/bookings/{created['id']}/cancel")
    foreign = client.post(
        f"/api/availability/instructor/bookings/{created['id']}/cancel",
        headers=other_headers,
    )

    assert anonymous.status_code == 401
    assert foreign.status_code == 404
    assert client.get("/api/availability/instructor/bookings", headers=other_headers).json() == []


def test_versioned_prefix_serves_the_same_routes(client: TestClient, instructor) -> None:  # type: ignore[no-untyped-def]
    response = client.get(f"/api/v1/availability/{MONDAY}", params={"instructorId": instructor["id"]})

    assert response.status_code == 200
    assert len(response.json()["slots"]) == 6
