"""Tests for the rating lookups used by full metas."""

from __future__ import annotations

import httpx
import pytest

from app.cache import ResponseCache
from app.services.ratings import RatingsClient


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("https://v3-cinemeta.strem.io/manifest.json", "https://v3-cinemeta.strem.io"),
        ("https://addons.example.com/custom/manifest.json/", "https://addons.example.com/custom"),
        ("https://addons.example.com/custom/", "https://addons.example.com/custom"),
        ("https://example.com/addons/ratings", "https://example.com/addons/ratings"),
    ],
)
def test_normalize_base_url_handles_common_variations(raw: str, expected: str) -> None:
    assert RatingsClient._normalize_base_url(raw) == expected


def test_normalize_base_url_rejects_empty_values() -> None:
    assert RatingsClient._normalize_base_url(None) is None
    assert RatingsClient._normalize_base_url("   ") is None


def build_client(handler) -> RatingsClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RatingsClient(
        http_client,
        ResponseCache(),
        metadata_base_url="https://cinemeta.example.com/manifest.json",
        rpdb_base_url="https://rpdb.example.com",
    )


@pytest.mark.anyio("asyncio")
async def test_cinemeta_rating_is_read_and_cached() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"meta": {"imdbRating": "8.70"}})

    client = build_client(handler)

    assert await client.cinemeta_rating("tt0133093", "movie") == "8.7"
    assert await client.cinemeta_rating("tt0133093", "movie") == "8.7"
    assert len(requests) == 1
    assert requests[0].url.path == "/meta/movie/tt0133093.json"


@pytest.mark.anyio("asyncio")
async def test_missing_titles_are_remembered() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404)

    client = build_client(handler)

    assert await client.cinemeta_rating("tt0000001", "series") is None
    assert await client.cinemeta_rating("tt0000001", "series") is None
    assert calls == 1


@pytest.mark.anyio("asyncio")
async def test_invalid_ids_never_reach_the_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("unexpected request")

    client = build_client(handler)

    assert await client.cinemeta_rating("603", "movie") is None
    assert await client.rpdb_rating("tt0133093", "bad key!") is None


@pytest.mark.anyio("asyncio")
async def test_rpdb_rating_parses_plain_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/t0-free-rpdb/imdb/rating/tt0133093"
        return httpx.Response(200, text="8.7")

    client = build_client(handler)

    assert await client.rpdb_rating("tt0133093", "t0-free-rpdb") == "8.7"


@pytest.mark.anyio("asyncio")
async def test_rpdb_failures_fail_open() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = build_client(handler)

    assert await client.rpdb_rating("tt0133093", "t0-free-rpdb") is None
