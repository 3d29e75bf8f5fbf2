"""Tests for the configuration store."""

from __future__ import annotations

import asyncio

import pytest

from app.database import Database
from app.errors import InvalidFilterError
from app.models import CatalogDefinition, Preferences, UserConfiguration
from app.services.config_store import ConfigStore


def _config(**overrides) -> UserConfiguration:
    base = {
        "user_id": "user-abc123",
        "config_name": "Evenings",
        "api_key": "0123456789abcdef0123456789abcdef",
        "api_key_id": "fingerprint-1",
        "catalogs": [
            CatalogDefinition.model_validate(
                {"id": "cat1", "name": "Action", "type": "movie", "filters": {"genres": [28]}}
            )
        ],
        "preferences": Preferences(poster_service="rpdb", poster_api_key="t1-secret"),
    }
    base.update(overrides)
    return UserConfiguration(**base)


def _run(tmp_path, scenario):
    async def runner():
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
        await database.create_all()
        try:
            return await scenario(ConfigStore(database.session_factory))
        finally:
            await database.dispose()

    return asyncio.run(runner())


def test_save_and_load_round_trip(tmp_path) -> None:
    async def scenario(store: ConfigStore):
        await store.save(_config())
        return await store.get("user-abc123")

    loaded = _run(tmp_path, scenario)

    assert loaded is not None
    assert loaded.config_name == "Evenings"
    assert loaded.catalogs[0].filters.genres == [28]
    assert loaded.catalogs[0].content_type == "movie"
    assert loaded.preferences.poster_api_key == "t1-secret"
    assert loaded.created_at is not None


def test_save_replaces_the_whole_document(tmp_path) -> None:
    async def scenario(store: ConfigStore):
        await store.save(_config())
        replacement = _config(
            config_name=None,
            catalogs=[CatalogDefinition(id="cat2", name="Drama", content_type="series")],
        )
        await store.save(replacement)
        return await store.get("user-abc123")

    loaded = _run(tmp_path, scenario)

    assert [catalog.id for catalog in loaded.catalogs] == ["cat2"]
    assert loaded.config_name is None


def test_catalog_type_cannot_change(tmp_path) -> None:
    async def scenario(store: ConfigStore):
        await store.save(_config())
        changed = _config(
            catalogs=[CatalogDefinition(id="cat1", name="Action", content_type="series")]
        )
        with pytest.raises(InvalidFilterError):
            await store.save(changed)
        return await store.get("user-abc123")

    loaded = _run(tmp_path, scenario)

    assert loaded.catalogs[0].content_type == "movie"


def test_list_and_delete(tmp_path) -> None:
    async def scenario(store: ConfigStore):
        await store.save(_config())
        await store.save(_config(user_id="user-def456"))
        await store.save(_config(user_id="user-ghi789", api_key_id="fingerprint-2"))
        listed = await store.list_by_api_key_id("fingerprint-1")
        deleted = await store.delete("user-abc123")
        missing = await store.delete("user-abc123")
        remaining = await store.list_by_api_key_id("fingerprint-1")
        return listed, deleted, missing, remaining

    listed, deleted, missing, remaining = _run(tmp_path, scenario)

    assert {config.user_id for config in listed} == {"user-abc123", "user-def456"}
    assert deleted is True
    assert missing is False
    assert [config.user_id for config in remaining] == ["user-def456"]


def test_update_catalog_genres_only_touches_genre_fields(tmp_path) -> None:
    async def scenario(store: ConfigStore):
        await store.save(_config())
        updated = await store.update_catalog_genres(
            "user-abc123", "cat1", genres=[10759], genre_names=["Action & Adventure"]
        )
        unknown = await store.update_catalog_genres(
            "user-abc123", "nope", genres=[1], genre_names=["x"]
        )
        return updated, unknown, await store.get("user-abc123")

    updated, unknown, loaded = _run(tmp_path, scenario)

    assert updated is True
    assert unknown is False
    filters = loaded.catalogs[0].filters
    assert filters.genres == [10759]
    assert filters.genre_names == ["Action & Adventure"]
    assert loaded.catalogs[0].name == "Action"
