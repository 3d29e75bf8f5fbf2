"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="TMDB Discover+", alias="APP_NAME")
    addon_id: str = Field(default="community.tmdb.discover.plus", alias="ADDON_ID")
    addon_version: str = Field(default="2.1.0", alias="ADDON_VERSION")
    addon_description: str = Field(
        default="Create custom movie and TV catalogs with powerful TMDB filters",
        alias="ADDON_DESCRIPTION",
    )
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=7000, alias="PORT")
    base_url: str | None = Field(default=None, alias="BASE_URL")

    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_website_url: HttpUrl = Field(
        default="https://www.themoviedb.org", alias="TMDB_WEBSITE_URL"
    )
    tmdb_image_url: str = Field(
        default="https://image.tmdb.org/t/p", alias="TMDB_IMAGE_BASE"
    )
    tmdb_timeout_seconds: float = Field(
        default=15.0, alias="TMDB_TIMEOUT", gt=0, le=120
    )
    tmdb_max_retries: int = Field(default=3, alias="TMDB_MAX_RETRIES", ge=0, le=10)
    tmdb_retry_delay: float = Field(
        default=0.3, alias="TMDB_RETRY_DELAY", ge=0, le=10
    )
    debug_tmdb: bool = Field(default=False, alias="DEBUG_TMDB")

    rpdb_api_url: HttpUrl = Field(
        default="https://api.ratingposterdb.com", alias="RPDB_API_URL"
    )
    top_posters_api_url: HttpUrl = Field(
        default="https://api.top-streaming.stream", alias="TOP_POSTERS_API_URL"
    )
    rpdb_api_key: str | None = Field(default="t0-free-rpdb", alias="RPDB_API_KEY")
    metadata_addon_url: HttpUrl | None = Field(
        default="https://v3-cinemeta.strem.io",
        alias="METADATA_ADDON_URL",
        validation_alias=AliasChoices("METADATA_ADDON_URL", "CINEMETA_URL"),
    )

    api_key_secret: str = Field(
        default="change-me-in-production", alias="API_KEY_SECRET", min_length=8
    )

    cache_ttl_seconds: int = Field(default=3_600, alias="CACHE_TTL", ge=0)
    reference_cache_ttl_seconds: int = Field(
        default=86_400, alias="REFERENCE_CACHE_TTL", ge=0
    )
    external_ids_cache_ttl_seconds: int = Field(
        default=604_800, alias="EXTERNAL_IDS_CACHE_TTL", ge=0
    )
    cache_max_entries: int = Field(
        default=5_000, alias="CACHE_MAX_ENTRIES", ge=1, le=1_000_000
    )
    catalog_cache_max_age: int = Field(
        default=300, alias="CATALOG_CACHE_MAX_AGE", ge=0
    )
    catalog_stale_revalidate: int = Field(
        default=600, alias="CATALOG_STALE_REVALIDATE", ge=0
    )
    certification_country: str = Field(default="US", alias="CERTIFICATION_COUNTRY")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./discoverplus.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("base_url", mode="before")
    @classmethod
    def _normalise_base_url(cls, value: object) -> str | None:
        """Strip whitespace and trailing slashes from the public base URL."""

        if value is None:
            return None
        text = str(value).strip().rstrip("/")
        return text or None

    @field_validator("certification_country", mode="before")
    @classmethod
    def _normalise_country(cls, value: object) -> str:
        text = str(value or "").strip().upper()
        if len(text) != 2 or not text.isalpha():
            raise ValueError("CERTIFICATION_COUNTRY must be an ISO 3166-1 alpha-2 code")
        return text

    @field_validator("rpdb_api_key", mode="before")
    @classmethod
    def _blank_rpdb_key(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @property
    def tmdb_image_base(self) -> str:
        return self.tmdb_image_url.rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
