"""Genre id/name tables per media type and display language."""

from __future__ import annotations

import json
import logging
from importlib import resources
from typing import Any, Awaitable, Callable, Iterable

from .list_types import media_type_for
from .utils import normalize_genre_name

logger = logging.getLogger(__name__)

GenreEntry = dict[str, Any]
GenreFetcher = Callable[[str, str, str | None], Awaitable[list[GenreEntry]]]


def load_static_genres() -> dict[str, list[GenreEntry]]:
    """Load the bundled fallback table keyed by upstream media type."""

    raw = json.loads(
        resources.files("app").joinpath("data/tmdb_genres.json").read_text(encoding="utf-8")
    )
    return {
        media_type: [{"id": int(genre_id), "name": name} for genre_id, name in entries.items()]
        for media_type, entries in raw.items()
    }


class GenreTable:
    """Lazily populated ``(media type, language) -> [{id, name}]`` table.

    ``fetcher`` is called as ``fetcher(api_key, content_type, language)`` and
    should return the live list. Lookups fall back to the static table when
    the live call fails. Concurrent refreshes for the same key may both hit
    the network; the last write wins.
    """

    def __init__(
        self,
        fetcher: GenreFetcher | None = None,
        *,
        static: dict[str, list[GenreEntry]] | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._static = static if static is not None else load_static_genres()
        self._live: dict[tuple[str, str], list[GenreEntry]] = {}

    @staticmethod
    def _key(content_type: str, language: str | None) -> tuple[str, str]:
        return media_type_for(content_type), (language or "en")

    def static(self, content_type: str) -> list[GenreEntry]:
        return list(self._static.get(media_type_for(content_type), []))

    def cached(self, content_type: str, language: str | None = None) -> list[GenreEntry] | None:
        entries = self._live.get(self._key(content_type, language))
        return list(entries) if entries is not None else None

    def seed(self, content_type: str, language: str | None, entries: Iterable[GenreEntry]) -> None:
        self._live[self._key(content_type, language)] = [dict(entry) for entry in entries]

    async def refresh(
        self, content_type: str, *, api_key: str | None, language: str | None = None
    ) -> list[GenreEntry] | None:
        """Fetch the live list, replacing whatever was cached for the key."""

        if self._fetcher is None or not api_key:
            return None
        try:
            entries = await self._fetcher(api_key, content_type, language)
        except Exception as exc:
            logger.warning(
                "Live genre lookup failed for %s (%s): %s", content_type, language or "en", exc
            )
            return None
        if not entries:
            return None
        self.seed(content_type, language, entries)
        return self.cached(content_type, language)

    async def get(
        self, content_type: str, *, api_key: str | None = None, language: str | None = None
    ) -> list[GenreEntry]:
        """Return cached entries, fetching once when missing, else the static table."""

        cached = self.cached(content_type, language)
        if cached:
            return cached
        live = await self.refresh(content_type, api_key=api_key, language=language)
        if live:
            return live
        return self.static(content_type)

    def names_for_ids(
        self,
        content_type: str,
        ids: Iterable[Any],
        *,
        language: str | None = None,
        overrides: dict[int, str] | None = None,
    ) -> tuple[list[str], list[int]]:
        """Resolve ids to names; returns ``(names, unresolved_ids)``."""

        live = {
            int(entry["id"]): str(entry["name"])
            for entry in self.cached(content_type, language) or []
        }
        static = {int(entry["id"]): str(entry["name"]) for entry in self.static(content_type)}
        names: list[str] = []
        missing: list[int] = []
        for raw in ids:
            try:
                genre_id = int(raw)
            except (TypeError, ValueError):
                continue
            name = (overrides or {}).get(genre_id) or live.get(genre_id) or static.get(genre_id)
            if name:
                if name not in names:
                    names.append(name)
            else:
                missing.append(genre_id)
        return names, missing

    def resolve_names(
        self, content_type: str, names: Iterable[str], *, language: str | None = None
    ) -> list[int]:
        """Reverse-map genre names to ids, preserving input order.

        Each name is matched exactly against the live table for ``language``,
        then the static table, then fuzzily (substring either way, then every
        word contained).
        """

        tables = [self.cached(content_type, language) or [], self.static(content_type)]
        resolved: list[int] = []
        for name in names:
            needle = normalize_genre_name(name)
            if not needle:
                continue
            genre_id = self._match(needle, tables)
            if genre_id is not None and genre_id not in resolved:
                resolved.append(genre_id)
        return resolved

    @staticmethod
    def _match(needle: str, tables: list[list[GenreEntry]]) -> int | None:
        for table in tables:
            for entry in table:
                if normalize_genre_name(entry["name"]) == needle:
                    return int(entry["id"])
        for table in tables:
            for entry in table:
                candidate = normalize_genre_name(entry["name"])
                if candidate and (needle in candidate or candidate in needle):
                    return int(entry["id"])
        words = needle.split()
        for table in tables:
            for entry in table:
                candidate_words = set(normalize_genre_name(entry["name"]).split())
                if words and all(word in candidate_words for word in words):
                    return int(entry["id"])
        return None
