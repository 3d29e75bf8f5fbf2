"""Stremio-facing orchestration: manifests, catalogs, metas and stored configs."""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..config import Settings
from ..errors import AccessDenied, AddonError, InvalidFilterError, NotFoundError, UpstreamRejected
from ..filters import FilterCompiler, FilterSpec, clamp_page, exclude_by_genre, run_query
from ..genres import GenreTable
from ..list_types import ContentType
from ..meta import LocaleOptions, MetaMapper
from ..models import (
    CatalogDefinition,
    ConfigPayload,
    Preferences,
    UserConfiguration,
)
from ..security import (
    api_key_matches,
    compute_api_key_id,
    generate_user_id,
    is_valid_api_key,
    is_valid_user_id,
)
from .config_store import ConfigStore
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
SEARCH_CATALOG_IDS: dict[str, ContentType] = {
    "tmdb-search-movie": "movie",
    "tmdb-search-series": "series",
}
NO_STORE = "no-store, no-cache, must-revalidate, max-age=0"
META_ID_RE = re.compile(r"^(?:tmdb[:-])?(\d+)(?::.*)?$")
IMDB_META_RE = re.compile(r"^(tt\d+)(?::.*)?$")


@dataclass(slots=True)
class AddonResponse:
    """Body plus transport hints for an addon route."""

    body: dict[str, Any]
    cache_control: str
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)

    def response_headers(self) -> dict[str, str]:
        return {"Cache-Control": self.cache_control, **self.headers}


class AddonService:
    """Serve manifests, catalogs and metas from stored user configurations."""

    def __init__(
        self,
        settings: Settings,
        tmdb: TMDBClient,
        genres: GenreTable,
        compiler: FilterCompiler,
        mapper: MetaMapper,
        store: ConfigStore,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._tmdb = tmdb
        self._genres = genres
        self._compiler = compiler
        self._mapper = mapper
        self._store = store
        self._rng = rng or random.Random()
        self._repair_tasks: set[asyncio.Task[None]] = set()

    @property
    def tmdb(self) -> TMDBClient:
        return self._tmdb

    @property
    def genres(self) -> GenreTable:
        return self._genres

    async def stop(self) -> None:
        """Wait for outstanding genre repairs before shutdown."""

        if not self._repair_tasks:
            return
        await asyncio.gather(*list(self._repair_tasks), return_exceptions=True)

    # Cache policy

    def _catalog_cache_control(self, *, randomized: bool) -> tuple[str, int, int]:
        if randomized:
            return NO_STORE, 0, 0
        max_age = self._settings.catalog_cache_max_age
        stale = self._settings.catalog_stale_revalidate
        return f"max-age={max_age}, stale-while-revalidate={stale}", max_age, stale

    # Manifest

    async def _load_config(self, user_id: str) -> UserConfiguration | None:
        if not is_valid_user_id(user_id):
            return None
        return await self._store.get(user_id)

    def _base_manifest(self, name: str | None = None) -> dict[str, Any]:
        manifest: dict[str, Any] = {
            "id": self._settings.addon_id,
            "version": self._settings.addon_version,
            "name": self._settings.app_name,
            "description": self._settings.addon_description,
            "resources": ["catalog", "meta"],
            "types": ["movie", "series"],
            "idPrefixes": ["tmdb-", "tmdb:", "tt"],
            "catalogs": [],
            "behaviorHints": {"configurable": True, "configurationRequired": False},
        }
        if name:
            manifest["name"] = f"{self._settings.app_name} | {name}"
        if self._settings.base_url:
            manifest["logo"] = f"{self._settings.base_url}/logo.png"
        return manifest

    @staticmethod
    def _search_catalogs() -> list[dict[str, Any]]:
        return [
            {
                "id": catalog_id,
                "type": content_type,
                "name": "TMDB Search",
                "extra": [{"name": "search", "isRequired": True}, {"name": "skip"}],
            }
            for catalog_id, content_type in SEARCH_CATALOG_IDS.items()
        ]

    async def build_manifest(self, user_id: str) -> AddonResponse:
        """Manifest for ``user_id``; unknown users get the search-only manifest."""

        try:
            config = await self._load_config(user_id)
        except Exception as exc:
            logger.exception("Failed to load configuration for %s: %s", user_id, exc)
            config = None

        if config is None:
            manifest = self._base_manifest()
            manifest["catalogs"] = self._search_catalogs()
            return AddonResponse(manifest, "no-cache")

        preferences = config.preferences
        entries: list[dict[str, Any]] = []
        for catalog in config.enabled_catalogs():
            try:
                entries.append(await self._manifest_entry(config, catalog))
            except Exception as exc:
                logger.exception(
                    "Manifest entry for catalog %s of %s failed: %s", catalog.id, user_id, exc
                )
        if preferences.shuffle_catalogs:
            self._rng.shuffle(entries)

        manifest = self._base_manifest(config.config_name)
        manifest["catalogs"] = [*entries, *self._search_catalogs()]
        cache_control = NO_STORE if preferences.shuffle_catalogs else "no-cache"
        return AddonResponse(manifest, cache_control)

    async def _manifest_entry(
        self, config: UserConfiguration, catalog: CatalogDefinition
    ) -> dict[str, Any]:
        filters = catalog.filters
        language = filters.display_language or config.preferences.default_language
        options = await self._genre_options(config, catalog, language)

        extra: list[dict[str, Any]] = [{"name": "skip"}]
        if options:
            extra.append(
                {
                    "name": "genre",
                    "options": options,
                    "optionsLimit": 1,
                    "isRequired": filters.discover_only,
                }
            )
        if config.preferences.search_enabled:
            extra.append({"name": "search"})
        return {
            "id": catalog.manifest_id,
            "type": catalog.content_type,
            "name": catalog.name,
            "pageSize": PAGE_SIZE,
            "extra": extra,
        }

    async def _genre_options(
        self, config: UserConfiguration, catalog: CatalogDefinition, language: str | None
    ) -> list[str]:
        """Genre names for the manifest picker, repairing stale stored ids.

        Options come from the table for ``language``. Unresolvable ids trigger
        at most one live refresh; a repair is persisted in the background only
        when the live table resolves every stored id or remaps every stored
        name. Stored genres are never shortened.
        """

        content_type = catalog.content_type
        filters = catalog.filters
        was_cached = self._genres.cached(content_type, language) is not None
        entries = await self._genres.get(content_type, api_key=config.api_key, language=language)
        live_loaded = self._genres.cached(content_type, language) is not None

        if not filters.genres:
            excluded, _ = self._genres.names_for_ids(
                content_type, filters.exclude_genres, language=language
            )
            return [
                str(entry["name"]) for entry in entries if str(entry["name"]) not in excluded
            ]

        names, missing = self._genres.names_for_ids(content_type, filters.genres, language=language)
        if not missing:
            return names

        if was_cached:
            live_loaded = (
                await self._genres.refresh(content_type, api_key=config.api_key, language=language)
                is not None
            )
        if not live_loaded:
            logger.info(
                "Genre table unavailable; keeping unresolved ids %s of catalog %s",
                missing,
                catalog.id,
            )
            return names

        names, missing = self._genres.names_for_ids(content_type, filters.genres, language=language)
        repaired_ids: list[int] = []
        if not missing:
            repaired_ids = list(filters.genres)
        elif filters.genre_names:
            remapped = self._genres.resolve_names(
                content_type, filters.genre_names, language=language
            )
            if len(remapped) == len(filters.genre_names) and len(remapped) >= len(filters.genres):
                repaired_ids = remapped
                names, _ = self._genres.names_for_ids(content_type, remapped, language=language)

        if not repaired_ids:
            logger.info(
                "Genre ids %s of catalog %s stay unresolved after refresh", missing, catalog.id
            )
        elif repaired_ids != filters.genres or names != filters.genre_names:
            self._schedule_genre_repair(config.user_id, catalog.id, repaired_ids, names)
        return names

    def _schedule_genre_repair(
        self, user_id: str, catalog_id: str, genre_ids: list[int], names: list[str]
    ) -> None:
        async def _runner() -> None:
            try:
                updated = await self._store.update_catalog_genres(
                    user_id, catalog_id, genres=genre_ids, genre_names=names
                )
                if updated:
                    logger.info("Repaired genres of catalog %s for %s", catalog_id, user_id)
            except Exception as exc:
                logger.exception(
                    "Genre repair for catalog %s of %s failed: %s", catalog_id, user_id, exc
                )

        task = asyncio.create_task(_runner())
        self._repair_tasks.add(task)
        task.add_done_callback(self._repair_tasks.discard)

    # Catalogs

    async def get_catalog(
        self,
        user_id: str,
        content_type: str,
        catalog_id: str,
        extra: Mapping[str, str] | None = None,
    ) -> AddonResponse:
        """Catalog page; every failure collapses to an empty ``metas`` list."""

        try:
            return await self._catalog(user_id, content_type, catalog_id, dict(extra or {}))
        except NotFoundError as exc:
            logger.info("Catalog %s/%s for %s: %s", content_type, catalog_id, user_id, exc.message)
            return AddonResponse({"metas": []}, NO_STORE, status_code=404)
        except Exception as exc:
            logger.exception(
                "Catalog %s/%s for %s failed: %s", content_type, catalog_id, user_id, exc
            )
            return AddonResponse({"metas": []}, NO_STORE)

    async def _catalog(
        self, user_id: str, content_type: str, catalog_id: str, extra: dict[str, str]
    ) -> AddonResponse:
        config = await self._load_config(user_id)
        if config is None:
            raise NotFoundError(f"Unknown user {user_id}")
        if content_type not in {"movie", "series"}:
            return AddonResponse({"metas": []}, NO_STORE)
        if not config.api_key:
            logger.info("User %s has no stored credential", user_id)
            return AddonResponse({"metas": []}, NO_STORE)

        preferences = config.preferences
        search = (extra.get("search") or "").strip()
        page = clamp_page(_skip_to_page(extra.get("skip")))

        if catalog_id in SEARCH_CATALOG_IDS:
            if SEARCH_CATALOG_IDS[catalog_id] != content_type or not search:
                return AddonResponse({"metas": []}, NO_STORE)
            filters = FilterSpec()
        else:
            catalog = config.find_catalog(catalog_id)
            if catalog is None or catalog.content_type != content_type:
                raise NotFoundError(f"Unknown catalog {catalog_id}")
            filters = catalog.filters

        display_language = filters.display_language or preferences.default_language
        locale = LocaleOptions(
            language=preferences.default_language, display_language=filters.display_language
        )
        randomized = False

        if search:
            data = await self._tmdb.search(
                config.api_key,
                search,
                content_type,
                page=page,
                language=display_language,
                include_adult=filters.include_adult,
            )
            results = list((data or {}).get("results") or [])
            results = exclude_by_genre(results, filters.exclude_genres)
        else:
            # Genre extras arrive in the manifest's language.
            localized = filters.model_copy(update={"display_language": display_language})
            resolved = await self._compiler.resolve(
                localized, content_type, genre_names=extra.get("genre"), api_key=config.api_key
            )
            query = self._compiler.compile(resolved, content_type, page)
            randomized = query.randomize
            data = await run_query(self._tmdb, query, config.api_key, rng=self._rng)
            results = list(data.get("results") or [])

        metas = await self._map_previews(
            results[:PAGE_SIZE],
            content_type,
            api_key=config.api_key,
            preferences=preferences,
            locale=locale,
            imdb_only=filters.imdb_only,
        )
        cache_control, max_age, stale = self._catalog_cache_control(
            randomized=randomized or preferences.shuffle_catalogs
        )
        body = {"metas": metas, "cacheMaxAge": max_age, "staleRevalidate": stale}
        return AddonResponse(body, cache_control)

    async def _map_previews(
        self,
        items: list[dict[str, Any]],
        content_type: ContentType,
        *,
        api_key: str,
        preferences: Preferences,
        locale: LocaleOptions,
        imdb_only: bool = False,
    ) -> list[dict[str, Any]]:
        # Warms the localized genre table so previews resolve translated names.
        await self._genres.get(content_type, api_key=api_key, language=locale.effective)
        external = await asyncio.gather(
            *(
                self._tmdb.get_external_ids(api_key, item["id"], content_type)
                for item in items
                if item.get("id") is not None
            )
        )
        imdb_ids: dict[Any, str | None] = {}
        for item, ids in zip((item for item in items if item.get("id") is not None), external):
            imdb_ids[item["id"]] = (ids or {}).get("imdb_id") or None

        poster = preferences.poster_options()
        metas: list[dict[str, Any]] = []
        for item in items:
            if item.get("id") is None:
                continue
            imdb_id = imdb_ids.get(item["id"])
            if imdb_only and not imdb_id:
                continue
            metas.append(
                self._mapper.to_preview(
                    item, content_type, imdb_id=imdb_id, poster=poster, locale=locale
                )
            )
        return metas

    # Metas

    async def get_meta(self, user_id: str, content_type: str, meta_id: str) -> AddonResponse:
        """Full meta; every failure collapses to an empty ``meta`` object."""

        try:
            return await self._meta(user_id, content_type, meta_id)
        except NotFoundError as exc:
            logger.info("Meta %s/%s for %s: %s", content_type, meta_id, user_id, exc.message)
            return AddonResponse({"meta": {}}, NO_STORE, status_code=404)
        except Exception as exc:
            logger.exception("Meta %s/%s for %s failed: %s", content_type, meta_id, user_id, exc)
            return AddonResponse({"meta": {}}, NO_STORE)

    async def _meta(self, user_id: str, content_type: str, meta_id: str) -> AddonResponse:
        config = await self._load_config(user_id)
        if config is None:
            raise NotFoundError(f"Unknown user {user_id}")
        if content_type not in {"movie", "series"} or not config.api_key:
            return AddonResponse({"meta": {}}, NO_STORE)

        preferences = config.preferences
        language = preferences.default_language
        tmdb_id = await self.resolve_meta_id(
            config.api_key, content_type, meta_id, language=language
        )
        if tmdb_id is None:
            raise NotFoundError(f"Cannot resolve {meta_id}")

        details = await self._tmdb.get_details(
            config.api_key, tmdb_id, content_type, language=language
        )
        meta = await self._mapper.to_full(
            details,
            content_type,
            api_key=config.api_key,
            requested_id=meta_id,
            poster=preferences.poster_options(),
            locale=LocaleOptions(language=language),
        )
        cache_control, _, _ = self._catalog_cache_control(randomized=False)
        return AddonResponse({"meta": meta}, cache_control)

    async def resolve_meta_id(
        self, api_key: str, content_type: str, meta_id: str, *, language: str | None = None
    ) -> int | None:
        """Accept ``tt…``, ``tmdb:N``, ``tmdb-N`` or a bare ``N``."""

        meta_id = (meta_id or "").strip()
        imdb_match = IMDB_META_RE.match(meta_id)
        if imdb_match:
            found = await self._tmdb.find_by_imdb_id(
                api_key, imdb_match.group(1), content_type, language=language
            )
            return int(found["id"]) if found else None
        native_match = META_ID_RE.match(meta_id)
        if native_match:
            return int(native_match.group(1))
        return None

    # Interactive preview

    async def preview(
        self,
        api_key: str | None,
        content_type: str,
        filters: FilterSpec,
        page: int = 1,
        *,
        preferences: Preferences | None = None,
    ) -> dict[str, Any]:
        """Run the catalog pipeline for the configuration UI; errors propagate."""

        key = self._require_api_key(api_key)
        if content_type not in {"movie", "series"}:
            raise InvalidFilterError(f"Unsupported content type: {content_type}")
        preferences = preferences or Preferences()
        localized = filters.model_copy(
            update={"display_language": filters.display_language or preferences.default_language}
        )
        resolved = await self._compiler.resolve(localized, content_type, api_key=key)
        query = self._compiler.compile(resolved, content_type, page)
        data = await run_query(self._tmdb, query, key, rng=self._rng)
        metas = await self._map_previews(
            list(data.get("results") or [])[:PAGE_SIZE],
            content_type,
            api_key=key,
            preferences=preferences,
            locale=LocaleOptions(
                language=preferences.default_language,
                display_language=filters.display_language,
            ),
            imdb_only=filters.imdb_only,
        )
        return {
            "metas": metas,
            "page": query.page,
            "totalResults": data.get("total_results", len(metas)),
            "totalPages": data.get("total_pages", 1),
        }

    # Stored configurations

    @staticmethod
    def _require_api_key(api_key: str | None) -> str:
        key = (api_key or "").strip()
        if not is_valid_api_key(key):
            raise AddonError("A valid TMDB API key is required", status_code=400)
        return key

    def _owned(self, config: UserConfiguration | None, api_key: str) -> UserConfiguration:
        if config is None:
            raise NotFoundError("Configuration not found")
        if not api_key_matches(api_key, config.api_key_id, self._settings.api_key_secret):
            raise AccessDenied("API key does not own this configuration")
        return config

    async def get_config(self, user_id: str, api_key: str | None) -> UserConfiguration:
        key = self._require_api_key(api_key)
        return self._owned(await self._load_config(user_id), key)

    async def save_config(
        self, payload: ConfigPayload, *, api_key: str | None = None, user_id: str | None = None
    ) -> UserConfiguration:
        """Create (``user_id`` is ``None``) or replace a configuration.

        The credential is checked against TMDB before anything is written.
        """

        key = self._require_api_key(api_key or payload.api_key)
        existing: UserConfiguration | None = None
        if user_id is not None:
            existing = self._owned(await self._load_config(user_id), key)

        if not await self._tmdb.validate_api_key(key):
            raise UpstreamRejected("Invalid TMDB API key", status=401)

        preferences = payload.preferences
        if (
            existing is not None
            and "poster_api_key" not in preferences.model_fields_set
            and existing.preferences.poster_api_key
        ):
            preferences = preferences.model_copy(
                update={"poster_api_key": existing.preferences.poster_api_key}
            )

        if existing is None:
            user_id = await self._new_user_id()
        config = UserConfiguration(
            user_id=user_id,
            config_name=payload.config_name,
            api_key=key,
            api_key_id=compute_api_key_id(key, self._settings.api_key_secret),
            catalogs=payload.catalogs,
            preferences=preferences,
        )
        saved = await self._store.save(config)
        logger.info(
            "Saved configuration %s with %d catalogs", saved.user_id, len(saved.catalogs)
        )
        return saved

    async def _new_user_id(self) -> str:
        for _ in range(5):
            candidate = generate_user_id()
            if await self._store.get(candidate) is None:
                return candidate
        raise AddonError("Could not allocate a configuration id")

    async def delete_config(self, user_id: str, api_key: str | None) -> None:
        key = self._require_api_key(api_key)
        self._owned(await self._load_config(user_id), key)
        await self._store.delete(user_id)
        logger.info("Deleted configuration %s", user_id)

    async def delete_catalog(
        self, user_id: str, catalog_id: str, api_key: str | None
    ) -> UserConfiguration:
        key = self._require_api_key(api_key)
        config = self._owned(await self._load_config(user_id), key)
        target = config.find_catalog(catalog_id)
        if target is None:
            raise NotFoundError(f"Catalog {catalog_id} not found")
        remaining = [catalog for catalog in config.catalogs if catalog.id != target.id]
        return await self._store.save(config.model_copy(update={"catalogs": remaining}))

    async def list_configs(self, api_key: str | None) -> list[UserConfiguration]:
        key = self._require_api_key(api_key)
        return await self._store.list_by_api_key_id(
            compute_api_key_id(key, self._settings.api_key_secret)
        )


def _skip_to_page(value: Any) -> int:
    try:
        skip = int(str(value).strip())
    except (TypeError, ValueError):
        return 1
    return max(0, skip) // PAGE_SIZE + 1
