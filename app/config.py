"""Application configuration models."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Hero Pool", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./heropool.db", alias="DATABASE_URL"
    )

    tmdb_access_token: str | None = Field(default=None, alias="TMDB_ACCESS_TOKEN")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_cache_ttl_seconds: int = Field(
        default=43_200, alias="TMDB_CACHE_TTL", ge=0
    )
    tmdb_max_cache_entries: int = Field(
        default=200, alias="TMDB_MAX_CACHE_ENTRIES", ge=1, le=1_000
    )

    hero_policy_path: Path | None = Field(default=None, alias="HERO_POLICY_PATH")
    hero_fallback_language: str = Field(
        default="en-US", alias="HERO_FALLBACK_LANGUAGE"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_access_token", mode="before")
    @classmethod
    def _strip_blank_token(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @field_validator("hero_policy_path", mode="before")
    @classmethod
    def _blank_policy_path(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("hero_fallback_language", mode="before")
    @classmethod
    def _default_fallback_language(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "en-US"
        return value.strip() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        """Accept stdlib level names in any case."""

        if value is None:
            return "INFO"
        level = str(value).strip().upper()
        if not level:
            return "INFO"
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def tmdb_enabled(self) -> bool:
        """Return whether TMDB enrichment can be attempted at all."""

        return bool(self.tmdb_access_token)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
