import pytest
from fastapi.testclient import TestClient

from instructor_booking.core.config import get_settings
from instructor_booking.main import app
from instructor_booking.services.user_store import clear_user_store_cache


@pytest.fixture(autouse=True)
def reset_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("USER_DATA_STORE", "memory")
    monkeypatch.setenv("SCHEDULING_STORE", "memory")
    monkeypatch.setenv("CALENDAR_CHANNEL_RENEWAL_ENABLED", "false")

    clear_user_store_cache()
    get_settings.cache_clear()
    yield
    clear_user_store_cache()
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def test_register_login_and_me_flow(client: TestClient) -> None:
    register_response = client.post(
        "/api/auth/register",
        json={
            "fullName": "Test Instructor",
            "email": "Coach@Example.com",
            "password": "password123",
            "timezone": "America/Bogota",
        },
    )

    assert register_response.status_code == 201
    register_payload = register_response.json()
    assert register_payload["accessToken"]
    assert register_payload["tokenType"] == "bearer"
    assert register_payload["expiresInSeconds"] > 0
    assert register_payload["user"]["email"] == "coach@example.com"
    assert register_payload["user"]["role"] == "instructor"

    login_response = client.post(
        "/api/auth/login",
        json={"email": "coach@example.com", "password": "password123"},
    )
    assert login_response.status_code == 200
    token = login_response.json()["accessToken"]

    me_response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me_response.status_code == 200
    me_payload = me_response.json()
    assert me_payload["email"] == "coach@example.com"
    assert me_payload["fullName"] == "Test Instructor"
    assert me_payload["timezone"] == "America/Bogota"


def test_register_rejects_duplicate_email(client: TestClient) -> None:
    payload = {"fullName": "Test Instructor", "email": "coach@example.com", "password": "password123"}
    assert client.post("/api/auth/register", json=payload).status_code == 201

    response = client.post("/api/auth/register", json=payload)

    assert response.status_code == 409
    assert response.json()["code"] == "email_already_registered"


def test_register_rejects_short_password(client: TestClient) -> None:
    response = client.post(
        "/api/auth/register",
        json={"fullName": "Test Instructor", "email": "coach@example.com", "password": "short"},
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_login_fails_with_invalid_credentials(client: TestClient) -> None:
    response = client.post(
        "/api/auth/login",
        json={"email": "nobody@example.com", "password": "wrong-password"},
    )

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_credentials"


def test_me_requires_authentication(client: TestClient) -> None:
    response = client.get("/api/auth/me")
    assert response.status_code == 401


def test_me_rejects_tampered_token(client: TestClient) -> None:
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-real-token"})

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"
