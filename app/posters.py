"""Third-party poster service URL generation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from .security import is_valid_imdb_id, is_valid_poster_key

logger = logging.getLogger(__name__)

PosterServiceName = Literal["none", "rpdb", "topPosters"]


@dataclass(frozen=True, slots=True)
class PosterOptions:
    """Poster substitution settings taken from a user's preferences."""

    service: PosterServiceName = "none"
    api_key: str | None = None

    @property
    def enabled(self) -> bool:
        return self.service != "none" and is_valid_poster_key(self.api_key)


def generate_poster_url(
    options: PosterOptions | None,
    *,
    base_urls: dict[str, str],
    content_type: str,
    tmdb_id: int | str | None,
    imdb_id: str | None = None,
) -> str | None:
    """Return the substituted poster URL or ``None`` when substitution is off.

    IMDb ids are preferred; TMDB ids are prefixed with ``movie-``/``series-``.
    """

    if options is None or not options.enabled:
        return None
    base_url = base_urls.get(options.service)
    if not base_url:
        logger.debug("Unknown poster service %s", options.service)
        return None
    base_url = base_url.rstrip("/")
    if imdb_id and is_valid_imdb_id(imdb_id):
        return f"{base_url}/{options.api_key}/imdb/poster-default/{imdb_id}.jpg?fallback=true"
    if not tmdb_id:
        return None
    prefix = "series" if content_type == "series" else "movie"
    return (
        f"{base_url}/{options.api_key}/tmdb/poster-default/{prefix}-{tmdb_id}.jpg"
        "?fallback=true"
    )
