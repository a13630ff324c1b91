from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./perftrack.db"
    redis_url: str = "redis://localhost:6379/0"

    # Read API security; empty disables the check
    api_key: str = ""

    # Metrics cache
    cache_backend: Literal["memory", "redis", "database"] = "memory"
    cache_namespace: str = "perftrack"
    cache_duration_seconds: int = 300

    # Tracking toggles
    tracking_enabled: bool = True
    track_anonymous: bool = True
    track_admin_users: bool = False
    excluded_user_roles: Annotated[list[str], NoDecode] = Field(default_factory=list)
    anonymize_ip: bool = False

    # Retention housekeeping
    data_retention_days: int = 90
    auto_cleanup: bool = True
    retention_scheduler_enabled: bool = False
    retention_schedule_path: str = "config/schedules.toml"

    # Product lookup (WooCommerce REST API)
    woocommerce_url: str | None = None
    woocommerce_consumer_key: str = ""
    woocommerce_consumer_secret: str = ""
    woocommerce_api_version: str = "wc/v3"
    product_lookup_timeout_seconds: float = 5.0

    tracing_enabled: bool = True

    @field_validator("cache_duration_seconds", mode="before")
    @classmethod
    def _clamp_cache_duration(cls, value: object) -> int:
        seconds = int(value) if value not in (None, "") else 300
        return max(60, min(3600, seconds))

    @field_validator("data_retention_days", mode="before")
    @classmethod
    def _clamp_retention_days(cls, value: object) -> int:
        days = int(value) if value not in (None, "") else 90
        return max(1, min(365, days))

    @field_validator("excluded_user_roles", mode="before")
    @classmethod
    def _parse_role_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip().lower() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip().lower() for item in value if str(item).strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
