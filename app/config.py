"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="BingeBoard", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )

    ai_api_key: str | None = Field(default=None, alias="AI_API_KEY")
    ai_model: str = Field(default="gpt-4o-mini", alias="AI_MODEL")
    ai_api_url: HttpUrl = Field(
        default="https://api.openai.com/v1", alias="AI_API_URL"
    )

    recommendation_window_ms: int = Field(
        default=60_000, alias="RECOMMENDATION_WINDOW_MS", ge=1_000
    )
    recommendation_max_requests: int = Field(
        default=6, alias="RECOMMENDATION_MAX_REQUESTS", ge=1, le=1_000
    )
    recommendation_cache_ttl_ms: int = Field(
        default=300_000, alias="RECOMMENDATION_CACHE_TTL_MS", ge=1_000
    )
    recommendation_state_max_entries: int = Field(
        default=10_000, alias="RECOMMENDATION_STATE_MAX_ENTRIES", ge=1
    )

    session_ttl_seconds: int = Field(
        default=604_800, alias="SESSION_TTL_SECONDS", ge=60
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./bingeboard.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", "ai_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        """Treat blank credentials as missing."""

        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
