"""Pydantic models describing stored configurations and API payloads."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .filters import FilterSpec
from .list_types import ContentType
from .posters import PosterOptions, PosterServiceName
from .security import is_valid_catalog_id


def _new_catalog_id() -> str:
    return uuid.uuid4().hex


class CatalogDefinition(BaseModel):
    """A user-defined catalog: a named filter bound to one content type."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=_new_catalog_id)
    name: str = "Untitled"
    content_type: ContentType = Field(
        validation_alias=AliasChoices("type", "content_type", "contentType"),
        serialization_alias="type",
    )
    filters: FilterSpec = Field(default_factory=FilterSpec)
    enabled: bool = True

    @field_validator("id", mode="before")
    @classmethod
    def _valid_id(cls, value: Any) -> str:
        if value is None or value == "":
            return _new_catalog_id()
        text = str(value).strip()
        if not is_valid_catalog_id(text):
            raise ValueError("Catalog id must be 1-64 characters of letters, digits, - or _")
        return text

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text[:120] or "Untitled"

    @property
    def manifest_id(self) -> str:
        return f"tmdb-{self.id}"

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.content_type,
            "filters": self.filters.to_payload(),
            "enabled": self.enabled,
        }


class Preferences(BaseModel):
    """Per-user presentation preferences."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    default_language: str | None = None
    poster_service: PosterServiceName = "none"
    poster_api_key: str | None = None
    shuffle_catalogs: bool = False
    search_enabled: bool = True

    @field_validator("poster_service", mode="before")
    @classmethod
    def _service(cls, value: Any) -> str:
        if value in {"rpdb", "topPosters"}:
            return value
        return "none"

    @field_validator("default_language", "poster_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def poster_options(self) -> PosterOptions:
        return PosterOptions(service=self.poster_service, api_key=self.poster_api_key)

    def to_payload(self, *, include_secrets: bool = False) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True)
        if not include_secrets:
            payload.pop("posterApiKey", None)
            payload["hasPosterApiKey"] = bool(self.poster_api_key)
        return payload


class UserConfiguration(BaseModel):
    """Everything stored for one addon installation."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str
    config_name: str | None = None
    api_key: str = Field(repr=False)
    api_key_id: str
    catalogs: list[CatalogDefinition] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def find_catalog(self, catalog_id: str) -> CatalogDefinition | None:
        for catalog in self.catalogs:
            if catalog.id == catalog_id or catalog.manifest_id == catalog_id:
                return catalog
        return None

    def enabled_catalogs(self) -> list[CatalogDefinition]:
        return [catalog for catalog in self.catalogs if catalog.enabled]

    def to_public_payload(self, base_url: str | None = None) -> dict[str, Any]:
        """Response shape for the configuration API. Credentials never leave."""

        payload: dict[str, Any] = {
            "userId": self.user_id,
            "configName": self.config_name,
            "catalogs": [catalog.to_payload() for catalog in self.catalogs],
            "preferences": self.preferences.to_payload(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
        if base_url:
            manifest_url = f"{base_url.rstrip('/')}/{self.user_id}/manifest.json"
            payload["manifestUrl"] = manifest_url
            payload["installUrl"] = manifest_url.replace("https://", "stremio://", 1).replace(
                "http://", "stremio://", 1
            )
        return payload


class ConfigPayload(BaseModel):
    """Body of ``POST /api/config`` and ``PUT /api/config/{userId}``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("apiKey", "api_key", "tmdbApiKey")
    )
    config_name: str | None = Field(
        default=None, validation_alias=AliasChoices("configName", "config_name")
    )
    catalogs: list[CatalogDefinition] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)

    @field_validator("config_name", mode="before")
    @classmethod
    def _clean_config_name(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text[:120] or None


class PreviewPayload(BaseModel):
    """Body of ``POST /api/preview``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("apiKey", "api_key", "tmdbApiKey")
    )
    content_type: ContentType = Field(
        default="movie", validation_alias=AliasChoices("type", "contentType", "content_type")
    )
    filters: FilterSpec = Field(default_factory=FilterSpec)
    page: int = 1
    preferences: Preferences = Field(default_factory=Preferences)

    @field_validator("page", mode="before")
    @classmethod
    def _page(cls, value: Any) -> int:
        try:
            return max(1, int(value))
        except (TypeError, ValueError):
            return 1


class ValidateKeyPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(
        default=None, validation_alias=AliasChoices("apiKey", "api_key", "tmdbApiKey")
    )

