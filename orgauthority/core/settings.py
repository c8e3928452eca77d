from functools import lru_cache
from pathlib import Path
from typing import Any, List, Literal

from pydantic import AnyHttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[2] / ".env",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Organization Authority"
    environment: str = "development"
    debug: bool = False

    database_dsn: str = "postgresql+asyncpg://postgres:postgres@db:5432/orgauthority"
    redis_url: str = "redis://redis:6379/0"

    session_backend: Literal["redis", "memory"] = "redis"
    session_ttl_hours: int = 24

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expires_hours: int = 24

    invitation_ttl_days: int = 7
    invitation_sweep_minutes: int = 15

    storage_retry_attempts: int = 3
    storage_retry_backoff_seconds: float = 0.1

    accept_rate_limit: int = 20
    accept_rate_window_seconds: int = 60

    default_locale: str = "en"

    sentry_dsn: AnyHttpUrl | None = None
    log_level: str = "INFO"

    cors_allow_origins: List[AnyHttpUrl] = []

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def split_origins(cls, value: Any) -> List[AnyHttpUrl]:
        if not value:
            return []
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> AppSettings:
    return AppSettings()  # type: ignore[arg-type]


settings = get_settings()
