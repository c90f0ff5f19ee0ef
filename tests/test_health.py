import pytest
from fastapi.testclient import TestClient

from instructor_booking.core.config import get_settings
from instructor_booking.main import app
from instructor_booking.services import channel_renewal


@pytest.fixture(autouse=True)
def memory_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SCHEDULING_STORE", "memory")
    monkeypatch.setenv("CALENDAR_CHANNEL_RENEWAL_ENABLED", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_health_endpoint_returns_expected_shape() -> None:
    client = TestClient(app)

    response = client.get("/api/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "service" in data
    assert "version" in data
    assert data["schedulingStore"] == "memory"
    assert "timestamp" in data


def test_lifespan_starts_and_stops_channel_renewal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CALENDAR_CHANNEL_RENEWAL_ENABLED", "true")
    get_settings.cache_clear()

    with TestClient(app) as client:
        assert client.get("/api/health").status_code == 200
        scheduler = channel_renewal._scheduler
        assert scheduler is not None
        assert scheduler.get_job(channel_renewal.RENEWAL_JOB_ID) is not None

    assert channel_renewal._scheduler is None
