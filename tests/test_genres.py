"""Tests for the injectable genre table."""

from __future__ import annotations

import pytest

from app.genres import GenreTable, load_static_genres

STATIC = {
    "movie": [{"id": 28, "name": "Action"}, {"id": 35, "name": "Comedy"}],
    "tv": [{"id": 10759, "name": "Action & Adventure"}, {"id": 35, "name": "Comedy"}],
}


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_bundled_table_covers_both_media_types() -> None:
    table = load_static_genres()

    assert {"id": 28, "name": "Action"} in table["movie"]
    assert {"id": 10759, "name": "Action & Adventure"} in table["tv"]


def test_names_for_ids_prefers_overrides_then_live_then_static() -> None:
    genres = GenreTable(static=STATIC)
    genres.seed("movie", "de", [{"id": 28, "name": "Action DE"}])

    names, missing = genres.names_for_ids(
        "movie", [28, 35, 999], language="de", overrides={35: "Komödie"}
    )

    assert names == ["Action DE", "Komödie"]
    assert missing == [999]


def test_resolve_names_keeps_order_and_drops_duplicates() -> None:
    genres = GenreTable(static=STATIC)

    assert genres.resolve_names("movie", ["Comedy", "action", "Comedy"]) == [35, 28]


def test_resolve_names_matches_loosely() -> None:
    genres = GenreTable(static=STATIC)

    assert genres.resolve_names("series", ["action and adventure"]) == [10759]
    assert genres.resolve_names("series", ["Adventure"]) == [10759]
    assert genres.resolve_names("movie", ["Nonexistentgenre"]) == []


@pytest.mark.anyio("asyncio")
async def test_get_falls_back_to_static_when_fetch_fails() -> None:
    async def failing(api_key: str, content_type: str, language: str | None):
        raise RuntimeError("boom")

    genres = GenreTable(failing, static=STATIC)

    entries = await genres.get("movie", api_key="key", language="fr")

    assert entries == STATIC["movie"]
    assert genres.cached("movie", "fr") is None


@pytest.mark.anyio("asyncio")
async def test_refresh_replaces_cached_entries_per_language() -> None:
    calls: list[tuple[str, str | None]] = []

    async def fetcher(api_key: str, content_type: str, language: str | None):
        calls.append((content_type, language))
        return [{"id": 28, "name": f"Action-{language}"}]

    genres = GenreTable(fetcher, static=STATIC)

    first = await genres.get("movie", api_key="key", language="es")
    second = await genres.get("movie", api_key="key", language="es")

    assert first == second == [{"id": 28, "name": "Action-es"}]
    assert calls == [("movie", "es")]
    assert genres.cached("movie", "en") is None
