"""Map TMDB payloads onto Stremio meta objects."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from .certifications import resolve_certification, viewer_country
from .genres import GenreTable
from .list_types import ContentType, media_type_for
from .posters import PosterOptions, generate_poster_url
from .security import is_valid_imdb_id
from .utils import extract_year, format_runtime

if TYPE_CHECKING:
    from .services.ratings import RatingsClient
    from .services.tmdb import TMDBClient

logger = logging.getLogger(__name__)

MAX_SEASONS = 50
RUNNING_STATUSES = {"Returning Series", "In Production"}
WRITER_JOBS = {"Writer", "Screenplay", "Author"}
SHARE_SLUG_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class LocaleOptions:
    """Language settings for one request.

    ``language`` is the user's default; ``display_language`` overrides it for
    localized titles, images and certification country.
    """

    language: str | None = None
    display_language: str | None = None

    @property
    def effective(self) -> str | None:
        return self.display_language or self.language

    @property
    def primary(self) -> str:
        return (self.effective or "en").split("-", 1)[0].lower()


def _search_link(name: str, category: str) -> dict[str, str]:
    return {
        "name": name,
        "category": category,
        "url": f"stremio:///search?search={quote(name, safe='')}",
    }


def _released(value: Any) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        day = date.fromisoformat(value[:10])
    except ValueError:
        return None
    return f"{day.isoformat()}T00:00:00.000Z"


def _format_rating(value: Any) -> str | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not value:
        return None
    return f"{value:.1f}"


class MetaMapper:
    """Build preview and full Stremio metas from TMDB records."""

    def __init__(
        self,
        genres: GenreTable,
        *,
        tmdb: "TMDBClient",
        ratings: "RatingsClient | None" = None,
        image_base: str = "https://image.tmdb.org/t/p",
        poster_base_urls: dict[str, str] | None = None,
        rpdb_api_key: str | None = None,
        reference_country: str = "US",
    ) -> None:
        self._genres = genres
        self._tmdb = tmdb
        self._ratings = ratings
        self._image_base = image_base.rstrip("/")
        self._poster_base_urls = dict(poster_base_urls or {})
        self._rpdb_api_key = rpdb_api_key
        self._reference_country = reference_country

    def _image(self, path: Any, size: str) -> str | None:
        if not isinstance(path, str) or not path:
            return None
        if path.startswith("http"):
            return path
        return f"{self._image_base}/{size}{path}"

    def _poster(
        self,
        record: dict[str, Any],
        content_type: ContentType,
        imdb_id: str | None,
        poster: PosterOptions | None,
    ) -> str | None:
        substituted = generate_poster_url(
            poster,
            base_urls=self._poster_base_urls,
            content_type=content_type,
            tmdb_id=record.get("id"),
            imdb_id=imdb_id,
        )
        return substituted or self._image(record.get("poster_path"), "w500")

    def to_preview(
        self,
        item: dict[str, Any],
        content_type: ContentType,
        *,
        imdb_id: str | None = None,
        poster: PosterOptions | None = None,
        locale: LocaleOptions | None = None,
        genre_names: dict[int, str] | None = None,
    ) -> dict[str, Any]:
        """Catalog-row meta for a search/discover result. No I/O."""

        locale = locale or LocaleOptions()
        is_movie = content_type == "movie"
        title = item.get("title") if is_movie else item.get("name")
        title = title or item.get("original_title") or item.get("original_name") or ""
        year = extract_year(item.get("release_date") if is_movie else item.get("first_air_date"))

        raw_ids = item.get("genre_ids")
        if raw_ids is None:
            raw_ids = [genre.get("id") for genre in item.get("genres") or [] if isinstance(genre, dict)]
        names, _ = self._genres.names_for_ids(
            content_type, raw_ids, language=locale.effective, overrides=genre_names
        )

        effective_imdb = imdb_id or item.get("imdb_id") or None
        background = self._image(item.get("backdrop_path"), "w1280")
        return {
            "id": f"tmdb:{item.get('id')}",
            "tmdbId": item.get("id"),
            "imdbId": effective_imdb,
            "imdb_id": effective_imdb,
            "type": content_type,
            "name": title,
            "poster": self._poster(item, content_type, effective_imdb, poster),
            "posterShape": "poster",
            "background": background,
            "fanart": background,
            "description": item.get("overview") or "",
            "releaseInfo": str(year) if year else "",
            "imdbRating": _format_rating(item.get("vote_average")),
            "genres": names,
            "behaviorHints": {"defaultVideoId": effective_imdb or f"tmdb:{item.get('id')}"},
        }

    async def to_full(
        self,
        details: dict[str, Any],
        content_type: ContentType,
        *,
        api_key: str,
        requested_id: str | None = None,
        poster: PosterOptions | None = None,
        locale: LocaleOptions | None = None,
        include_episodes: bool = True,
    ) -> dict[str, Any]:
        """Detail-page meta; enrichment lookups omit their field on failure."""

        if not details:
            return {}
        locale = locale or LocaleOptions()
        is_movie = content_type == "movie"
        media_type = media_type_for(content_type)
        tmdb_id = details.get("id")
        title = (details.get("title") if is_movie else details.get("name")) or ""
        release_date = details.get("release_date") if is_movie else details.get("first_air_date")
        year = extract_year(release_date)
        status = details.get("status") or None

        external = details.get("external_ids") or {}
        imdb_id = external.get("imdb_id") or details.get("imdb_id") or None
        if not is_valid_imdb_id(imdb_id):
            imdb_id = None

        genres = [
            genre["name"]
            for genre in details.get("genres") or []
            if isinstance(genre, dict) and genre.get("name")
        ]
        credits = details.get("credits") or {}
        cast_records = [person for person in credits.get("cast") or [] if isinstance(person, dict)]
        cast = [person["name"] for person in cast_records[:20] if person.get("name")]
        crew = [person for person in credits.get("crew") or [] if isinstance(person, dict)]
        directors = [person for person in crew if person.get("job") == "Director" and person.get("name")]
        writers = [person for person in crew if person.get("job") in WRITER_JOBS and person.get("name")]

        runtime = details.get("runtime") if is_movie else next(
            (value for value in details.get("episode_run_time") or [] if isinstance(value, int)),
            None,
        )

        country = viewer_country(locale.language, locale.display_language)
        certification = resolve_certification(
            details, media_type, country, reference_country=self._reference_country
        )
        release_info = self._release_info(details, is_movie, year, status, certification)
        rating = await self._rating(imdb_id, content_type, details.get("vote_average"))

        videos = [video for video in (details.get("videos") or {}).get("results") or [] if isinstance(video, dict)]
        trailer = self.select_trailer(videos, locale.primary)
        trailer_streams = [
            {"title": video.get("name"), "ytId": video.get("key"), "lang": video.get("iso_639_1") or "en"}
            for video in videos
            if video.get("site") == "YouTube" and video.get("type") == "Trailer" and video.get("key")
        ]

        links = self._links(
            title=title,
            content_type=content_type,
            tmdb_id=tmdb_id,
            imdb_id=imdb_id,
            rating=rating,
            genres=genres,
            cast=cast,
            directors=[person["name"] for person in directors],
            writers=[person["name"] for person in writers],
        )

        background = self._image(details.get("backdrop_path"), "w1280")
        logo = self._logo(details, locale.primary)
        default_id = imdb_id or f"tmdb:{tmdb_id}"
        slug_title = title.lower().replace(" ", "-")

        meta: dict[str, Any] = {
            "id": requested_id or f"tmdb:{tmdb_id}",
            "tmdbId": tmdb_id,
            "imdbId": imdb_id,
            "imdb_id": imdb_id,
            "type": content_type,
            "name": title,
            "slug": f"{content_type}/{slug_title}-{default_id}",
            "poster": self._poster(details, content_type, imdb_id, poster),
            "posterShape": "poster",
            "background": background,
            "fanart": background,
            "logo": self._image(logo, "w300"),
            "description": details.get("overview") or "",
            "year": str(year) if year else None,
            "releaseInfo": release_info,
            "imdbRating": rating,
            "genres": genres,
            "cast": cast or None,
            "director": ", ".join(person["name"] for person in directors) or None,
            "writer": ", ".join(person["name"] for person in writers) or None,
            "runtime": format_runtime(runtime),
            "language": details.get("original_language") or None,
            "country": ", ".join(details.get("origin_country") or []) or None,
            "released": _released(release_date),
            "links": links or None,
            "trailer": f"yt:{trailer['key']}" if trailer else None,
            "trailerStreams": trailer_streams or None,
            "app_extras": {
                "cast": [
                    {
                        "name": person.get("name"),
                        "character": person.get("character"),
                        "photo": self._image(person.get("profile_path"), "w276_and_h350_face"),
                    }
                    for person in cast_records[:15]
                ],
                "directors": [
                    {"name": person["name"], "photo": self._image(person.get("profile_path"), "w185")}
                    for person in directors
                ],
                "writers": [
                    {"name": person["name"], "photo": self._image(person.get("profile_path"), "w185")}
                    for person in writers
                ],
                "seasonPosters": [
                    url
                    for url in (
                        self._image((season or {}).get("poster_path"), "w500")
                        for season in details.get("seasons") or []
                    )
                    if url
                ],
                "certification": certification,
            },
            "behaviorHints": {
                "defaultVideoId": default_id if is_movie else None,
                "hasScheduledVideos": (not is_movie) and status in RUNNING_STATUSES,
            },
            "status": status,
        }

        if not is_movie and include_episodes:
            episodes = await self.episodes(details, api_key=api_key, imdb_id=imdb_id, locale=locale)
            if episodes:
                meta["videos"] = episodes

        return {key: value for key, value in meta.items() if value is not None}

    @staticmethod
    def _release_info(
        details: dict[str, Any],
        is_movie: bool,
        year: int | None,
        status: str | None,
        certification: str | None,
    ) -> str:
        info = str(year) if year else ""
        if year and not is_movie:
            end_year = extract_year(details.get("last_air_date"))
            if status in RUNNING_STATUSES or not details.get("last_air_date"):
                info = f"{year}-"
            elif end_year and end_year != year:
                info = f"{year}-{end_year}"
        if certification:
            info = f"{info} • {certification}" if info else certification
        return info

    async def _rating(self, imdb_id: str | None, content_type: str, vote_average: Any) -> str | None:
        """Cross-reference rating, then RatingPosterDB, then TMDB's own average."""

        if imdb_id and self._ratings is not None:
            for lookup in (
                lambda: self._ratings.cinemeta_rating(imdb_id, content_type),
                lambda: self._ratings.rpdb_rating(imdb_id, self._rpdb_api_key),
            ):
                try:
                    rating = await lookup()
                except Exception as exc:
                    logger.debug("Rating lookup failed for %s: %s", imdb_id, exc)
                    continue
                if rating:
                    return rating
        return _format_rating(vote_average)

    @staticmethod
    def select_trailer(videos: list[dict[str, Any]], language: str) -> dict[str, Any] | None:
        """Pick a YouTube trailer: viewer language, then English, then any.

        Falls back to any YouTube video when no trailer exists.
        """

        youtube = [video for video in videos if video.get("site") == "YouTube" and video.get("key")]
        trailers = [video for video in youtube if video.get("type") == "Trailer"]
        for wanted in (language, "en"):
            for video in trailers:
                if (video.get("iso_639_1") or "").lower() == wanted:
                    return video
        if trailers:
            return trailers[0]
        return youtube[0] if youtube else None

    @staticmethod
    def _logo(details: dict[str, Any], language: str) -> str | None:
        logos = [
            logo for logo in (details.get("images") or {}).get("logos") or []
            if isinstance(logo, dict) and logo.get("file_path")
        ]
        for wanted in (language, "en"):
            for logo in logos:
                if logo.get("iso_639_1") == wanted:
                    return logo["file_path"]
        return logos[0]["file_path"] if logos else None

    @staticmethod
    def _links(
        *,
        title: str,
        content_type: str,
        tmdb_id: Any,
        imdb_id: str | None,
        rating: str | None,
        genres: list[str],
        cast: list[str],
        directors: list[str],
        writers: list[str],
    ) -> list[dict[str, str]]:
        links: list[dict[str, str]] = []
        if imdb_id:
            links.append(
                {
                    "name": rating or "IMDb",
                    "category": "imdb",
                    "url": f"https://www.imdb.com/title/{imdb_id}/",
                }
            )
        links.extend(_search_link(name, "Genres") for name in genres)
        links.extend(_search_link(name, "Cast") for name in cast[:5])
        links.extend(_search_link(name, "Directors") for name in directors)
        links.extend(_search_link(name, "Writers") for name in writers)
        slug = SHARE_SLUG_RE.sub("-", title.lower()).strip("-")
        links.append(
            {
                "name": title,
                "category": "share",
                "url": f"https://www.strem.io/s/{content_type}/{slug}-{tmdb_id}",
            }
        )
        return links

    async def episodes(
        self,
        details: dict[str, Any],
        *,
        api_key: str,
        imdb_id: str | None,
        locale: LocaleOptions,
    ) -> list[dict[str, Any]]:
        """Fetch regular seasons concurrently and flatten their episodes."""

        tmdb_id = details.get("id")
        seasons = [
            season["season_number"]
            for season in details.get("seasons") or []
            if isinstance(season, dict)
            and isinstance(season.get("season_number"), int)
            and season["season_number"] > 0
        ][:MAX_SEASONS]
        if not seasons or tmdb_id is None:
            return []

        results = await asyncio.gather(
            *(
                self._tmdb.get_season_details(
                    api_key, tmdb_id, number, language=locale.effective
                )
                for number in seasons
            ),
            return_exceptions=True,
        )

        videos: list[dict[str, Any]] = []
        for number, result in zip(seasons, results):
            if isinstance(result, BaseException):
                logger.warning("Season %s of %s could not be loaded: %s", number, tmdb_id, result)
                continue
            for episode in (result or {}).get("episodes") or []:
                season_number = episode.get("season_number", number)
                episode_number = episode.get("episode_number")
                if not isinstance(episode_number, int):
                    continue
                prefix = imdb_id or f"tmdb:{tmdb_id}"
                video = {
                    "id": f"{prefix}:{season_number}:{episode_number}",
                    "season": season_number,
                    "episode": episode_number,
                    "title": episode.get("name") or f"Episode {episode_number}",
                    "released": _released(episode.get("air_date")),
                    "overview": episode.get("overview") or None,
                    "thumbnail": self._image(episode.get("still_path"), "w500"),
                    "runtime": format_runtime(episode.get("runtime")),
                }
                videos.append({key: value for key, value in video.items() if value is not None})

        videos.sort(key=lambda video: (video["season"], video["episode"]))
        return videos
