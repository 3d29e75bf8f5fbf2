"""HTTP client for The Movie Database (TMDB) API and website search."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Mapping

import httpx

from ..cache import ResponseCache
from ..config import Settings
from ..errors import UpstreamError, UpstreamRejected
from ..list_types import media_type_for
from ..utils import redact_url

logger = logging.getLogger(__name__)

ABSOLUTE_URL_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*:)?//")
LOOSE_RE = re.compile(r"[^a-z0-9]+")

WEBSITE_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "X-Requested-With": "XMLHttpRequest",
    "User-Agent": "tmdb-discover-plus/2.x",
}
DETAIL_APPENDS = "external_ids,credits,videos,release_dates,content_ratings,images"
LOGO_SIZE = "w185"


def normalize_endpoint(endpoint: str) -> str:
    """Return ``endpoint`` as a rooted relative path or raise ``ValueError``."""

    text = str(endpoint or "").strip()
    if not text:
        raise ValueError("TMDB endpoint must not be empty")
    if ABSOLUTE_URL_RE.match(text) or "\\" in text:
        raise ValueError("TMDB endpoint must be a relative path")
    if not text.startswith("/"):
        text = f"/{text}"
    if any(segment == ".." for segment in text.split("/")):
        raise ValueError("TMDB endpoint must not traverse upwards")
    return text


def _split_base(url: str) -> tuple[str, str]:
    parsed = httpx.URL(url)
    port = f":{parsed.port}" if parsed.port else ""
    origin = f"{parsed.scheme}://{parsed.host}{port}"
    return origin, parsed.path.rstrip("/")


def assert_allowed_url(url: httpx.URL, *, origin: str, path_prefix: str = "") -> None:
    """Reject any outbound URL that escapes the configured TMDB origin."""

    if url.scheme != "https":
        raise ValueError("Only https TMDB URLs are allowed")
    if url.userinfo:
        raise ValueError("Credentials are not allowed in TMDB URLs")
    port = f":{url.port}" if url.port else ""
    if f"{url.scheme}://{url.host}{port}" != origin:
        raise ValueError("TMDB URL origin is not allowed")
    if path_prefix and not (
        url.path == path_prefix or url.path.startswith(f"{path_prefix}/")
    ):
        raise ValueError("TMDB URL path is not allowed")


def _serialise_param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(part) for part in value)
    return str(value)


def _loose(value: Any) -> str:
    return LOOSE_RE.sub(" ", str(value or "").lower()).strip()


class TMDBClient:
    """Validated, cached and retrying access to TMDB JSON endpoints."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        cache: ResponseCache,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._client = http_client
        self._cache = cache
        self._sleep = sleep
        self._api_origin, self._api_base_path = _split_base(str(settings.tmdb_api_url))
        self._site_origin, _ = _split_base(str(settings.tmdb_website_url))
        self._image_base = settings.tmdb_image_base
        if not self._api_base_path:
            self._api_base_path = "/3"

    def build_api_url(
        self, endpoint: str, api_key: str, params: Mapping[str, Any] | None = None
    ) -> httpx.URL:
        """Compose the outbound URL; the credential always comes first."""

        path = f"{self._api_base_path}{normalize_endpoint(endpoint)}"
        query: list[tuple[str, str]] = [("api_key", str(api_key or ""))]
        for key, value in (params or {}).items():
            if key == "api_key" or value is None or value == "":
                continue
            query.append((key, _serialise_param(value)))
        url = httpx.URL(f"{self._api_origin}{path}", params=query)
        assert_allowed_url(url, origin=self._api_origin, path_prefix=self._api_base_path)
        return url

    async def fetch_json(
        self,
        endpoint: str,
        api_key: str,
        params: Mapping[str, Any] | None = None,
        *,
        max_retries: int | None = None,
        cache_ttl: float | None = None,
        use_cache: bool = True,
    ) -> Any:
        """Return decoded JSON for ``endpoint``.

        Transient failures (HTTP 5xx, 429 and transport errors) are retried
        with exponential backoff; other 4xx answers raise
        :class:`UpstreamRejected` immediately.
        """

        url = self.build_api_url(endpoint, api_key, params)
        cache_key = str(url)
        redacted = redact_url(cache_key)

        if use_cache:
            cached = await self._cache_get(cache_key)
            if cached is not None:
                return cached

        retries = self._settings.tmdb_max_retries if max_retries is None else max_retries
        attempt = 0
        while True:
            if self._settings.debug_tmdb:
                logger.info("TMDB request %s (attempt %s)", redacted, attempt + 1)
            try:
                response = await self._client.get(url)
            except httpx.TransportError as exc:
                if attempt < retries:
                    delay = self._settings.tmdb_retry_delay * (2**attempt)
                    logger.info(
                        "Transient error talking to TMDB (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        redacted,
                        delay,
                    )
                    attempt += 1
                    await self._sleep(delay)
                    continue
                logger.warning(
                    "TMDB request to %s failed after %s attempts: %s",
                    redacted,
                    attempt + 1,
                    redact_url(str(exc)) or exc.__class__.__name__,
                )
                raise UpstreamError(
                    f"TMDB is unreachable ({exc.__class__.__name__})"
                ) from exc

            status = response.status_code
            if status == 429 or status >= 500:
                if attempt < retries:
                    delay = self._settings.tmdb_retry_delay * (2**attempt)
                    logger.info(
                        "TMDB answered %s for %s. Retrying in %.1fs",
                        status,
                        redacted,
                        delay,
                    )
                    attempt += 1
                    await self._sleep(delay)
                    continue
                logger.warning(
                    "TMDB request to %s failed after %s attempts with status %s",
                    redacted,
                    attempt + 1,
                    status,
                )
                raise UpstreamError(
                    f"TMDB request failed with status {status}", status=status
                )
            if status >= 400:
                message = self._error_message(response)
                logger.warning("TMDB rejected %s (%s): %s", redacted, status, message)
                raise UpstreamRejected(message, status=status)
            break

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON TMDB response for %s", redacted)
            raise UpstreamError("TMDB returned a non-JSON response", status=status) from exc

        if use_cache:
            await self._cache_set(cache_key, data, cache_ttl)
        return data

    async def fetch_website_json(
        self, endpoint: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        """Query the TMDB website's JSON search. Never retried."""

        query = [
            (key, _serialise_param(value))
            for key, value in (params or {}).items()
            if value is not None and value != ""
        ]
        url = httpx.URL(f"{self._site_origin}{normalize_endpoint(endpoint)}", params=query)
        assert_allowed_url(url, origin=self._site_origin)
        cache_key = f"tmdb_site:{url}"

        cached = await self._cache_get(cache_key)
        if cached is not None:
            return cached

        try:
            response = await self._client.get(url, headers=WEBSITE_HEADERS)
        except httpx.TransportError as exc:
            raise UpstreamError(
                f"TMDB website search is unreachable ({exc.__class__.__name__})"
            ) from exc
        if response.status_code >= 400:
            raise UpstreamError(
                f"TMDB website search error: {response.status_code}",
                status=response.status_code,
            )
        text = response.text.strip()
        if not text:
            return None
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError("TMDB website returned a non-JSON response") from exc
        await self._cache_set(cache_key, data, self._settings.cache_ttl_seconds)
        return data

    async def _cache_get(self, key: str) -> Any | None:
        try:
            return await self._cache.get(key)
        except Exception as exc:  # pragma: no cover - cache backends are best effort
            logger.warning("Cache read failed for %s: %s", redact_url(key), exc)
            return None

    async def _cache_set(self, key: str, value: Any, ttl: float | None) -> None:
        effective = self._settings.cache_ttl_seconds if ttl is None else ttl
        try:
            await self._cache.set(key, value, effective)
        except Exception as exc:  # pragma: no cover - cache backends are best effort
            logger.warning("Cache write failed for %s: %s", redact_url(key), exc)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("status_message"):
            return str(payload["status_message"])
        return f"TMDB API error: {response.status_code}"

    def image_url(self, path: str | None, size: str) -> str | None:
        if not path:
            return None
        if path.startswith("http"):
            return path
        return f"{self._image_base}/{size}{path}"

    # Catalog data

    async def get_genres(
        self, api_key: str, content_type: str, *, language: str | None = None
    ) -> list[dict[str, Any]]:
        media_type = media_type_for(content_type)
        data = await self.fetch_json(
            f"/genre/{media_type}/list",
            api_key,
            {"language": language},
            cache_ttl=self._settings.reference_cache_ttl_seconds,
        )
        genres = (data or {}).get("genres") if isinstance(data, dict) else None
        return [
            {"id": int(entry["id"]), "name": str(entry["name"])}
            for entry in genres or []
            if isinstance(entry, dict) and entry.get("id") is not None and entry.get("name")
        ]

    async def search(
        self,
        api_key: str,
        query: str,
        content_type: str,
        *,
        page: int = 1,
        language: str | None = None,
        include_adult: bool = False,
    ) -> dict[str, Any]:
        media_type = media_type_for(content_type)
        return await self.fetch_json(
            f"/search/{media_type}",
            api_key,
            {
                "query": query,
                "page": page,
                "language": language,
                "include_adult": include_adult,
            },
        )

    async def get_details(
        self,
        api_key: str,
        tmdb_id: int | str,
        content_type: str,
        *,
        language: str | None = None,
    ) -> dict[str, Any]:
        media_type = media_type_for(content_type)
        image_language = "en,null"
        if language:
            primary = language.split("-", 1)[0]
            if primary and primary != "en":
                image_language = f"{primary},en,null"
        return await self.fetch_json(
            f"/{media_type}/{int(tmdb_id)}",
            api_key,
            {
                "append_to_response": DETAIL_APPENDS,
                "language": language,
                "include_image_language": image_language,
                "include_video_language": image_language,
            },
        )

    async def get_external_ids(
        self, api_key: str, tmdb_id: int | str, content_type: str
    ) -> dict[str, Any] | None:
        """Return the external-id record, or ``None`` when it cannot be fetched."""

        media_type = media_type_for(content_type)
        try:
            return await self.fetch_json(
                f"/{media_type}/{int(tmdb_id)}/external_ids",
                api_key,
                cache_ttl=self._settings.external_ids_cache_ttl_seconds,
            )
        except (UpstreamError, UpstreamRejected, ValueError) as exc:
            logger.debug("External id lookup failed for %s %s: %s", media_type, tmdb_id, exc)
            return None

    async def find_by_imdb_id(
        self,
        api_key: str,
        imdb_id: str,
        content_type: str,
        *,
        language: str | None = None,
    ) -> dict[str, Any] | None:
        media_type = media_type_for(content_type)
        identifier = str(imdb_id or "").strip()
        if not identifier:
            return None
        try:
            data = await self.fetch_json(
                f"/find/{identifier}",
                api_key,
                {"external_source": "imdb_id", "language": language},
                cache_ttl=self._settings.external_ids_cache_ttl_seconds,
            )
        except (UpstreamError, UpstreamRejected, ValueError) as exc:
            logger.debug("IMDb lookup failed for %s: %s", identifier, exc)
            return None
        bucket = (data or {}).get("tv_results" if media_type == "tv" else "movie_results")
        if not isinstance(bucket, list) or not bucket:
            return None
        first = bucket[0]
        if not isinstance(first, dict) or not first.get("id"):
            return None
        return first

    async def get_season_details(
        self,
        api_key: str,
        tmdb_id: int | str,
        season_number: int,
        *,
        language: str | None = None,
    ) -> dict[str, Any] | None:
        try:
            return await self.fetch_json(
                f"/tv/{int(tmdb_id)}/season/{int(season_number)}",
                api_key,
                {"language": language},
                cache_ttl=self._settings.reference_cache_ttl_seconds,
            )
        except (UpstreamError, UpstreamRejected, ValueError) as exc:
            logger.debug("Season %s lookup failed for %s: %s", season_number, tmdb_id, exc)
            return None

    # Reference lookups for the configuration API

    async def validate_api_key(self, api_key: str) -> bool:
        """Check a credential against TMDB without touching the cache."""

        try:
            await self.fetch_json("/configuration", api_key, use_cache=False, max_retries=1)
        except UpstreamRejected:
            return False
        return True

    async def get_languages(self, api_key: str) -> list[dict[str, Any]]:
        data = await self.fetch_json(
            "/configuration/languages",
            api_key,
            cache_ttl=self._settings.reference_cache_ttl_seconds,
        )
        return [
            {
                "code": entry.get("iso_639_1"),
                "name": entry.get("english_name"),
                "nativeName": entry.get("name"),
            }
            for entry in data or []
            if isinstance(entry, dict) and entry.get("iso_639_1")
        ]

    async def get_countries(self, api_key: str) -> list[dict[str, Any]]:
        data = await self.fetch_json(
            "/configuration/countries",
            api_key,
            cache_ttl=self._settings.reference_cache_ttl_seconds,
        )
        return [
            {
                "code": entry.get("iso_3166_1"),
                "name": entry.get("english_name"),
                "nativeName": entry.get("native_name"),
            }
            for entry in data or []
            if isinstance(entry, dict) and entry.get("iso_3166_1")
        ]

    async def get_certifications(self, api_key: str, content_type: str) -> dict[str, Any]:
        media_type = media_type_for(content_type)
        data = await self.fetch_json(
            f"/certification/{media_type}/list",
            api_key,
            cache_ttl=self._settings.reference_cache_ttl_seconds,
        )
        return (data or {}).get("certifications") or {}

    async def get_watch_providers(
        self, api_key: str, content_type: str, region: str = "US"
    ) -> list[dict[str, Any]]:
        media_type = media_type_for(content_type)
        data = await self.fetch_json(
            f"/watch/providers/{media_type}",
            api_key,
            {"watch_region": region},
            cache_ttl=self._settings.reference_cache_ttl_seconds,
        )
        return (data or {}).get("results") or []

    async def get_watch_regions(self, api_key: str) -> list[dict[str, Any]]:
        data = await self.fetch_json(
            "/watch/providers/regions",
            api_key,
            cache_ttl=self._settings.reference_cache_ttl_seconds,
        )
        return (data or {}).get("results") or []

    async def search_person(self, api_key: str, query: str) -> list[dict[str, Any]]:
        data = await self.fetch_json("/search/person", api_key, {"query": query})
        return [
            {
                "id": person.get("id"),
                "name": person.get("name"),
                "profilePath": self.image_url(person.get("profile_path"), LOGO_SIZE),
                "knownFor": person.get("known_for_department"),
            }
            for person in ((data or {}).get("results") or [])[:10]
        ]

    async def search_company(self, api_key: str, query: str) -> list[dict[str, Any]]:
        data = await self.fetch_json("/search/company", api_key, {"query": query})
        return [
            {
                "id": company.get("id"),
                "name": company.get("name"),
                "logoPath": self.image_url(company.get("logo_path"), LOGO_SIZE),
            }
            for company in ((data or {}).get("results") or [])[:10]
        ]

    async def search_keyword(self, api_key: str, query: str) -> list[dict[str, Any]]:
        data = await self.fetch_json("/search/keyword", api_key, {"query": query})
        return [
            {"id": keyword.get("id"), "name": keyword.get("name")}
            for keyword in ((data or {}).get("results") or [])[:10]
        ]

    async def search_networks(self, query: str) -> list[dict[str, Any]]:
        """Search broadcast networks through the website, which has no API endpoint."""

        needle = _loose(query)
        if not needle:
            return []
        data = await self.fetch_website_json(
            "/search/remote/tv_network",
            {"language": "en", "query": query.strip(), "value": query.strip(), "include_adult": "false"},
        )
        results = (data or {}).get("results") if isinstance(data, dict) else None
        networks: dict[str, dict[str, Any]] = {}
        for entry in results or []:
            if not isinstance(entry, dict) or not entry.get("id") or not entry.get("name"):
                continue
            if needle not in _loose(entry["name"]):
                continue
            key = str(entry["id"])
            if key in networks:
                continue
            networks[key] = {
                "id": entry["id"],
                "name": entry["name"],
                "logoPath": self.image_url(entry.get("logo_path"), LOGO_SIZE),
            }
            if len(networks) >= 20:
                break
        return list(networks.values())

    async def get_entity(self, api_key: str, kind: str, entity_id: int) -> dict[str, Any] | None:
        """Resolve a person, company, keyword or network id to a display record."""

        if kind not in {"person", "company", "keyword", "network"}:
            raise ValueError(f"Unsupported entity kind: {kind}")
        try:
            data = await self.fetch_json(
                f"/{kind}/{int(entity_id)}",
                api_key,
                cache_ttl=self._settings.reference_cache_ttl_seconds,
            )
        except UpstreamRejected:
            return None
        if not isinstance(data, dict):
            return None
        record: dict[str, Any] = {"id": data.get("id"), "name": data.get("name")}
        if kind == "person":
            record["profilePath"] = self.image_url(data.get("profile_path"), LOGO_SIZE)
        elif kind in {"company", "network"}:
            record["logoPath"] = self.image_url(data.get("logo_path"), LOGO_SIZE)
        return record
