"""End-to-end tests for the addon service against a mocked TMDB."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.database import Database
from app.errors import AccessDenied, UpstreamRejected
from app.main import build_addon_service
from app.models import ConfigPayload
from app.services.addon import NO_STORE, AddonService
from app.services.config_store import ConfigStore

API_KEY = "0123456789abcdef0123456789abcdef"
OTHER_KEY = "fedcba9876543210fedcba9876543210"

DISCOVER_RESULTS = [
    {"id": 1, "title": "Top Action", "vote_average": 8.5, "genre_ids": [28], "release_date": "2001-01-01"},
    {"id": 2, "title": "Good Action", "vote_average": 8.1, "genre_ids": [28, 12], "release_date": "2005-01-01"},
    {"id": 3, "title": "Fine Action", "vote_average": 7.2, "genre_ids": [28], "release_date": "2010-01-01"},
]
SEARCH_RESULTS = [
    {"id": 603, "title": "The Matrix", "vote_average": 8.2, "genre_ids": [28, 878]},
    {"id": 604, "title": "The Matrix Reloaded", "vote_average": 7.0, "genre_ids": [28]},
]
ENGLISH_GENRES = [{"id": 28, "name": "Action"}, {"id": 12, "name": "Adventure"}]
GERMAN_GENRES = [{"id": 28, "name": "Action"}, {"id": 35, "name": "Komödie"}]


class FakeTMDB:
    """Route table standing in for the TMDB API."""

    def __init__(self, *, discover_status: int = 200, genre_status: int = 200) -> None:
        self.discover_status = discover_status
        self.genre_status = genre_status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host != "api.themoviedb.org":
            return httpx.Response(404)
        path = request.url.path
        if request.url.params.get("api_key") not in {API_KEY, OTHER_KEY}:
            return httpx.Response(401, json={"status_message": "Invalid API key"})
        if path == "/3/configuration":
            return httpx.Response(200, json={"images": {}})
        if path in {"/3/genre/movie/list", "/3/genre/tv/list"}:
            if self.genre_status != 200:
                return httpx.Response(self.genre_status)
            if request.url.params.get("language") == "de":
                return httpx.Response(200, json={"genres": GERMAN_GENRES})
            return httpx.Response(200, json={"genres": ENGLISH_GENRES})
        if path == "/3/discover/movie":
            if self.discover_status != 200:
                return httpx.Response(self.discover_status)
            return httpx.Response(
                200, json={"page": 1, "results": DISCOVER_RESULTS, "total_pages": 1, "total_results": 3}
            )
        if path == "/3/search/movie":
            return httpx.Response(200, json={"page": 1, "results": SEARCH_RESULTS, "total_pages": 1})
        match = re.fullmatch(r"/3/movie/(\d+)/external_ids", path)
        if match:
            return httpx.Response(200, json={"imdb_id": f"tt{int(match.group(1)):07d}"})
        if path == "/3/tv/1399":
            return httpx.Response(
                200,
                json={
                    "id": 1399,
                    "name": "Game of Thrones",
                    "first_air_date": "2011-04-17",
                    "status": "Ended",
                    "last_air_date": "2019-05-19",
                    "external_ids": {},
                    "seasons": [{"season_number": 0}, {"season_number": 1}],
                },
            )
        if path == "/3/tv/1399/season/1":
            return httpx.Response(
                200, json={"episodes": [{"season_number": 1, "episode_number": 1, "name": "Winter Is Coming"}]}
            )
        if path == "/3/find/tt0133093":
            return httpx.Response(200, json={"movie_results": [{"id": 603}], "tv_results": []})
        return httpx.Response(404, json={"status_message": "not found"})


def run_scenario(tmp_path, scenario, handler: FakeTMDB | None = None):
    handler = handler or FakeTMDB()

    async def runner():
        settings = Settings(  # type: ignore[call-arg]
            _env_file=None, TMDB_MAX_RETRIES=0, API_KEY_SECRET="unit-test-secret"
        )
        database = Database(f"sqlite+aiosqlite:///{tmp_path / 'addon.db'}")
        await database.create_all()
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as tmdb_http, httpx.AsyncClient(
            transport=transport
        ) as ratings_http:
            service = build_addon_service(
                settings,
                tmdb_http=tmdb_http,
                ratings_http=ratings_http,
                session_factory=database.session_factory,
            )
            try:
                return await scenario(service, handler)
            finally:
                await service.stop()
                await database.dispose()

    return asyncio.run(runner())


def payload(*catalogs: dict[str, Any], **preferences: Any) -> ConfigPayload:
    return ConfigPayload.model_validate(
        {"apiKey": API_KEY, "catalogs": list(catalogs), "preferences": preferences}
    )


ACTION_CATALOG = {
    "id": "action",
    "type": "movie",
    "name": "Top Action",
    "filters": {"genres": [28], "ratingMin": 7, "voteCountMin": 200, "sortBy": "vote_average.desc"},
}


def test_manifest_lists_user_and_search_catalogs(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(ACTION_CATALOG))
        return await service.build_manifest(saved.user_id)

    result = run_scenario(tmp_path, scenario)

    manifest = result.body
    assert result.cache_control == "no-cache"
    assert manifest["resources"] == ["catalog", "meta"]
    assert manifest["idPrefixes"] == ["tmdb-", "tmdb:", "tt"]
    ids = [catalog["id"] for catalog in manifest["catalogs"]]
    assert ids == ["tmdb-action", "tmdb-search-movie", "tmdb-search-series"]
    entry = manifest["catalogs"][0]
    assert entry["pageSize"] == 20
    genre_extra = next(extra for extra in entry["extra"] if extra["name"] == "genre")
    assert genre_extra["options"] == ["Action"]
    assert genre_extra["isRequired"] is False


def test_unknown_user_gets_search_only_manifest(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        return await service.build_manifest("nobody-here")

    result = run_scenario(tmp_path, scenario)

    assert result.status_code == 200
    assert [catalog["id"] for catalog in result.body["catalogs"]] == [
        "tmdb-search-movie",
        "tmdb-search-series",
    ]


def test_shuffled_manifest_is_not_stored(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(ACTION_CATALOG, shuffleCatalogs=True))
        return await service.build_manifest(saved.user_id)

    result = run_scenario(tmp_path, scenario)

    assert result.cache_control == NO_STORE


def test_discover_catalog_end_to_end(tmp_path) -> None:
    async def scenario(service: AddonService, handler: FakeTMDB):
        saved = await service.save_config(payload(ACTION_CATALOG))
        result = await service.get_catalog(saved.user_id, "movie", "tmdb-action", {"skip": "20"})
        return result, handler

    result, handler = run_scenario(tmp_path, scenario)

    metas = result.body["metas"]
    assert [meta["name"] for meta in metas] == ["Top Action", "Good Action", "Fine Action"]
    assert all(float(meta["imdbRating"]) >= 7.0 for meta in metas)
    assert all("Action" in meta["genres"] for meta in metas)
    assert metas[0]["imdbId"] == "tt0000001"
    assert result.cache_control == "max-age=300, stale-while-revalidate=600"
    assert result.body["cacheMaxAge"] == 300
    assert result.body["staleRevalidate"] == 600

    discover = next(r for r in handler.requests if r.url.path == "/3/discover/movie")
    assert discover.url.params["with_genres"] == "28"
    assert discover.url.params["vote_count.gte"] == "200"
    assert discover.url.params["page"] == "2"


def test_search_catalog_returns_movies(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(ACTION_CATALOG))
        return await service.get_catalog(
            saved.user_id, "movie", "tmdb-search-movie", {"search": "Matrix"}
        )

    result = run_scenario(tmp_path, scenario)

    metas = result.body["metas"]
    assert metas
    assert all(meta["type"] == "movie" for meta in metas)


def test_randomized_catalog_is_never_cached(tmp_path) -> None:
    random_catalog = {**ACTION_CATALOG, "filters": {"sortBy": "random"}}

    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(random_catalog))
        return await service.get_catalog(saved.user_id, "movie", "tmdb-action")

    result = run_scenario(tmp_path, scenario)

    assert result.cache_control == NO_STORE
    assert result.body["cacheMaxAge"] == 0


def test_upstream_failures_yield_empty_catalog(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(ACTION_CATALOG))
        return await service.get_catalog(saved.user_id, "movie", "tmdb-action")

    result = run_scenario(tmp_path, scenario, FakeTMDB(discover_status=500))

    assert result.status_code == 200
    assert result.body == {"metas": []}


def test_unknown_user_catalog_is_empty(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        return await service.get_catalog("nobody-here", "movie", "tmdb-action")

    result = run_scenario(tmp_path, scenario)

    assert result.status_code == 404
    assert result.body == {"metas": []}


def test_series_meta_without_cross_reference_id(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(ACTION_CATALOG))
        return await service.get_meta(saved.user_id, "series", "tmdb:1399")

    result = run_scenario(tmp_path, scenario)

    meta = result.body["meta"]
    assert meta["name"] == "Game of Thrones"
    assert meta["releaseInfo"] == "2011-2019"
    assert [video["id"] for video in meta["videos"]] == ["tmdb:1399:1:1"]


def test_meta_ids_accept_every_supported_form(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        return [
            await service.resolve_meta_id(API_KEY, "movie", meta_id)
            for meta_id in ("tt0133093", "tmdb:603", "tmdb-603", "603", "garbage")
        ]

    assert run_scenario(tmp_path, scenario) == [603, 603, 603, 603, None]


def test_genre_self_heal_persists_repaired_ids(tmp_path) -> None:
    stale_catalog = {
        **ACTION_CATALOG,
        "filters": {"genres": [999], "genreNames": ["Action"]},
    }

    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(stale_catalog))
        manifest = await service.build_manifest(saved.user_id)
        await service.stop()
        stored = await service.get_config(saved.user_id, API_KEY)
        return manifest, stored

    manifest, stored = run_scenario(tmp_path, scenario)

    entry = manifest.body["catalogs"][0]
    genre_extra = next(extra for extra in entry["extra"] if extra["name"] == "genre")
    assert genre_extra["options"] == ["Action"]
    assert stored.catalogs[0].filters.genres == [28]
    assert stored.catalogs[0].filters.genre_names == ["Action"]


def test_unresolved_genres_survive_failed_genre_lookup(tmp_path) -> None:
    partly_unknown = {**ACTION_CATALOG, "filters": {"genres": [28, 99999]}}

    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(partly_unknown))
        manifest = await service.build_manifest(saved.user_id)
        await service.stop()
        stored = await service.get_config(saved.user_id, API_KEY)
        return manifest, stored

    manifest, stored = run_scenario(tmp_path, scenario, FakeTMDB(genre_status=503))

    entry = manifest.body["catalogs"][0]
    genre_extra = next(extra for extra in entry["extra"] if extra["name"] == "genre")
    assert genre_extra["options"] == ["Action"]
    assert stored.catalogs[0].filters.genres == [28, 99999]


def test_failed_genre_repair_is_logged_and_manifest_served(
    tmp_path, monkeypatch, caplog
) -> None:
    stale_catalog = {
        **ACTION_CATALOG,
        "filters": {"genres": [999], "genreNames": ["Action"]},
    }

    async def broken_update(self, *args, **kwargs):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(ConfigStore, "update_catalog_genres", broken_update)
    caplog.set_level(logging.ERROR, logger="app.services.addon")

    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(stale_catalog))
        manifest = await service.build_manifest(saved.user_id)
        await service.stop()
        stored = await service.get_config(saved.user_id, API_KEY)
        return manifest, stored

    manifest, stored = run_scenario(tmp_path, scenario)

    assert manifest.body["catalogs"][0]["id"] == "tmdb-action"
    assert stored.catalogs[0].filters.genres == [999]
    assert any("Genre repair for catalog action" in record.getMessage() for record in caplog.records)


def test_genre_extra_narrows_discover_query(tmp_path) -> None:
    async def scenario(service: AddonService, handler: FakeTMDB):
        saved = await service.save_config(payload(ACTION_CATALOG))
        await service.get_catalog(saved.user_id, "movie", "tmdb-action", {"genre": "Adventure"})
        return handler

    handler = run_scenario(tmp_path, scenario)

    discover = [r for r in handler.requests if r.url.path == "/3/discover/movie"][-1]
    assert discover.url.params["with_genres"] == "12"


def test_localized_genre_options_round_trip_to_discover(tmp_path) -> None:
    german_catalog = {**ACTION_CATALOG, "filters": {"genres": [28, 35]}}

    async def scenario(service: AddonService, handler: FakeTMDB):
        saved = await service.save_config(payload(german_catalog, defaultLanguage="de"))
        await service.get_catalog(saved.user_id, "movie", "tmdb-action")
        manifest = await service.build_manifest(saved.user_id)
        entry = manifest.body["catalogs"][0]
        options = next(extra for extra in entry["extra"] if extra["name"] == "genre")["options"]
        await service.get_catalog(saved.user_id, "movie", "tmdb-action", {"genre": options[-1]})
        return options, handler

    options, handler = run_scenario(tmp_path, scenario)

    assert options == ["Action", "Komödie"]
    discover = [r for r in handler.requests if r.url.path == "/3/discover/movie"][-1]
    assert discover.url.params["with_genres"] == "35"
    assert discover.url.params["language"] == "de"


def test_excluded_genres_are_not_offered(tmp_path) -> None:
    open_catalog = {**ACTION_CATALOG, "filters": {"excludeGenres": [12]}}

    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(open_catalog))
        return await service.build_manifest(saved.user_id)

    manifest = run_scenario(tmp_path, scenario)

    entry = manifest.body["catalogs"][0]
    genre_extra = next(extra for extra in entry["extra"] if extra["name"] == "genre")
    assert genre_extra["options"] == ["Action"]


def test_configs_are_scoped_to_the_owning_key(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(ACTION_CATALOG))
        with pytest.raises(AccessDenied):
            await service.get_config(saved.user_id, OTHER_KEY)
        with pytest.raises(AccessDenied):
            await service.delete_config(saved.user_id, OTHER_KEY)
        owned = await service.list_configs(API_KEY)
        foreign = await service.list_configs(OTHER_KEY)
        return saved, owned, foreign

    saved, owned, foreign = run_scenario(tmp_path, scenario)

    assert [config.user_id for config in owned] == [saved.user_id]
    assert foreign == []


def test_invalid_key_is_rejected_before_saving(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        with pytest.raises(UpstreamRejected):
            await service.save_config(payload(ACTION_CATALOG), api_key="a" * 32)
        return await service.list_configs("a" * 32)

    assert run_scenario(tmp_path, scenario) == []


def test_update_keeps_poster_key_when_omitted(tmp_path) -> None:
    async def scenario(service: AddonService, _):
        saved = await service.save_config(
            payload(ACTION_CATALOG, posterService="rpdb", posterApiKey="t1-secret")
        )
        await service.save_config(
            payload(ACTION_CATALOG, posterService="rpdb"), user_id=saved.user_id
        )
        return await service.get_config(saved.user_id, API_KEY)

    stored = run_scenario(tmp_path, scenario)

    assert stored.preferences.poster_api_key == "t1-secret"
    assert "posterApiKey" not in stored.to_public_payload()["preferences"]


def test_delete_catalog_removes_only_that_catalog(tmp_path) -> None:
    second = {**ACTION_CATALOG, "id": "second", "name": "Second"}

    async def scenario(service: AddonService, _):
        saved = await service.save_config(payload(ACTION_CATALOG, second))
        return await service.delete_catalog(saved.user_id, "tmdb-second", API_KEY)

    updated = run_scenario(tmp_path, scenario)

    assert [catalog.id for catalog in updated.catalogs] == ["action"]
