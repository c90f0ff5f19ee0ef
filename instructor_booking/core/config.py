from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "frontend_base_url",
        "scheduling_store",
        "user_data_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_users_collection",
        "mongodb_weekly_templates_collection",
        "mongodb_manual_blocks_collection",
        "mongodb_appointment_types_collection",
        "mongodb_bookings_collection",
        "mongodb_booking_claims_collection",
        "mongodb_calendar_links_collection",
        "mongodb_busy_cache_collection",
        "mongodb_connect_timeout_ms",
        "auth_secret_key",
        "auth_token_ttl_minutes",
        "google_calendar_client_id",
        "google_calendar_client_secret",
        "google_calendar_redirect_uri",
        "google_calendar_webhook_url",
        "google_calendar_api_timeout_seconds",
        "google_calendar_channel_ttl_hours",
        "calendar_sync_horizon_days",
        "calendar_sync_max_attempts",
        "calendar_sync_backoff_seconds",
        "calendar_channel_renewal_enabled",
        "calendar_channel_renewal_interval_minutes",
        "calendar_channel_renewal_lead_minutes",
        "booking_mirror_timeout_seconds",
    },
)


class Settings(BaseSettings):
    app_name: str = "Instructor Booking API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    frontend_base_url: str = "http://localhost:3000"
    scheduling_store: str = "mongodb"
    user_data_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "instructor_booking"
    mongodb_users_collection: str = "users"
    mongodb_weekly_templates_collection: str = "weekly_templates"
    mongodb_manual_blocks_collection: str = "manual_blocks"
    mongodb_appointment_types_collection: str = "appointment_types"
    mongodb_bookings_collection: str = "bookings"
    mongodb_booking_claims_collection: str = "booking_claims"
    mongodb_calendar_links_collection: str = "calendar_links"
    mongodb_busy_cache_collection: str = "calendar_busy_cache"
    mongodb_connect_timeout_ms: int = 2000
    auth_secret_key: str = "change-me-in-production"
    auth_token_ttl_minutes: int = 60 * 12
    google_calendar_client_id: str = ""
    google_calendar_client_secret: str = ""
    google_calendar_redirect_uri: str = (
        "http://localhost:8000/api/availability/instructor/google-callback"
    )
    google_calendar_webhook_url: str = "http://localhost:8000/api/availability/webhook/calendar"
    google_calendar_api_timeout_seconds: float = 10.0
    google_calendar_channel_ttl_hours: int = 24 * 7
    calendar_sync_horizon_days: int = 60
    calendar_sync_max_attempts: int = 3
    calendar_sync_backoff_seconds: float = 0.5
    calendar_channel_renewal_enabled: bool = True
    calendar_channel_renewal_interval_minutes: int = 30
    calendar_channel_renewal_lead_minutes: int = 12 * 60
    booking_mirror_timeout_seconds: float = 5.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("scheduling_store", "user_data_store", mode="before")
    @classmethod
    def normalize_store_name(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("google_calendar_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_google_calendar_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("booking_mirror_timeout_seconds", mode="before")
    @classmethod
    def normalize_mirror_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 5.0
        return parsed_value

    @field_validator("calendar_sync_backoff_seconds", mode="before")
    @classmethod
    def normalize_sync_backoff(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value < 0:
            return 0.5
        return parsed_value

    @field_validator("calendar_sync_max_attempts", mode="before")
    @classmethod
    def normalize_sync_attempts(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 3
        return parsed_value

    @field_validator("calendar_sync_horizon_days", mode="before")
    @classmethod
    def normalize_sync_horizon(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60
        return parsed_value

    @field_validator("google_calendar_channel_ttl_hours", mode="before")
    @classmethod
    def normalize_channel_ttl(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 24 * 7
        return parsed_value

    @field_validator(
        "calendar_channel_renewal_interval_minutes",
        "calendar_channel_renewal_lead_minutes",
        mode="before",
    )
    @classmethod
    def normalize_renewal_minutes(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 30
        return parsed_value

    @field_validator("auth_token_ttl_minutes", mode="before")
    @classmethod
    def normalize_auth_token_ttl(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60 * 12
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
