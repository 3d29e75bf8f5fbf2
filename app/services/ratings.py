"""Rating lookups from Cinemeta-compatible add-ons and RatingPosterDB."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..cache import ResponseCache
from ..security import is_valid_imdb_id, is_valid_poster_key

logger = logging.getLogger(__name__)

RATING_TTL = 86_400
MISSING = "N/A"


def _parse_rating(value: Any) -> str | None:
    try:
        rating = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if rating <= 0 or rating > 10:
        return None
    return f"{rating:.1f}"


class RatingsClient:
    """Resolve an IMDb-style rating for a cross-reference id.

    Both sources are best effort; every failure collapses to ``None`` and
    negative answers are cached so missing titles are not re-requested.
    """

    _META_PATH = "/meta/{type}/{imdb_id}.json"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        cache: ResponseCache,
        *,
        metadata_base_url: str | None = None,
        rpdb_base_url: str | None = None,
    ) -> None:
        self._client = http_client
        self._cache = cache
        self._metadata_base_url = self._normalize_base_url(metadata_base_url)
        self._rpdb_base_url = self._normalize_base_url(rpdb_base_url)
        self._semaphore = asyncio.Semaphore(8)

    @property
    def metadata_base_url(self) -> str | None:
        return self._metadata_base_url

    async def cinemeta_rating(self, imdb_id: str | None, content_type: str) -> str | None:
        """Return ``imdbRating`` from the configured metadata add-on."""

        if not self._metadata_base_url or not is_valid_imdb_id(imdb_id):
            return None
        cache_key = f"cinemeta_rating:{content_type}:{imdb_id}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return None if cached == MISSING else cached

        url = f"{self._metadata_base_url}{self._META_PATH.format(type=content_type, imdb_id=imdb_id)}"
        response: httpx.Response | None = None
        max_attempts = 2
        for attempt in range(1, max_attempts + 1):
            try:
                async with self._semaphore:
                    response = await self._client.get(url)
                response.raise_for_status()
                break
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code if exc.response else None
                if status == 402 and attempt < max_attempts:
                    await asyncio.sleep(0.1)
                    continue
                if status == 404:
                    await self._cache.set(cache_key, MISSING, RATING_TTL)
                    return None
                logger.warning("Metadata add-on rating lookup failed for %s: %s", imdb_id, exc)
                return None
            except httpx.HTTPError as exc:
                logger.warning("Metadata add-on rating lookup failed for %s: %s", imdb_id, exc)
                return None
        else:
            return None

        try:
            payload = response.json()
        except ValueError:
            return None
        meta = payload.get("meta") if isinstance(payload, dict) else None
        rating = _parse_rating((meta or {}).get("imdbRating"))
        await self._cache.set(cache_key, rating or MISSING, RATING_TTL)
        return rating

    async def rpdb_rating(self, imdb_id: str | None, api_key: str | None) -> str | None:
        """Return the RatingPosterDB rating, which the service serves as plain text."""

        if not self._rpdb_base_url or not api_key or not imdb_id:
            return None
        if not is_valid_poster_key(api_key):
            logger.warning("Invalid RPDB API key format")
            return None
        if not is_valid_imdb_id(imdb_id):
            logger.warning("Invalid IMDb id format: %s", imdb_id)
            return None

        cache_key = f"rpdb_rating:{imdb_id}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return None if cached == MISSING else cached

        url = f"{self._rpdb_base_url}/{api_key}/imdb/rating/{imdb_id}"
        try:
            async with self._semaphore:
                response = await self._client.get(url)
        except httpx.HTTPError as exc:
            logger.warning("RPDB rating lookup failed for %s: %s", imdb_id, exc.__class__.__name__)
            return None
        if response.status_code == 404:
            await self._cache.set(cache_key, MISSING, RATING_TTL)
            return None
        if response.status_code == 403:
            logger.debug("RPDB refused the rating lookup for %s", imdb_id)
            return None
        if response.status_code >= 400:
            logger.warning("RPDB rating lookup for %s failed with %s", imdb_id, response.status_code)
            return None
        rating = _parse_rating(response.text)
        if rating is None:
            return None
        await self._cache.set(cache_key, rating, RATING_TTL)
        return rating

    @staticmethod
    def _normalize_base_url(value: str | None) -> str | None:
        if not value:
            return None
        normalized = value.strip()
        if not normalized:
            return None
        normalized = normalized.rstrip("/")
        lowered = normalized.lower()
        for suffix in ("/manifest.json", "/manifest"):
            if lowered.endswith(suffix):
                normalized = normalized[: -len(suffix)].rstrip("/")
                break
        return normalized or None
