"""Catalog filter model and its translation into TMDB queries."""

from __future__ import annotations

import calendar
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Callable, Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import InvalidFilterError
from .genres import GenreTable
from .list_types import ContentType, list_type_for, media_type_for
from .utils import parse_id_list, shuffle_items

if TYPE_CHECKING:
    from .services.tmdb import TMDBClient

logger = logging.getLogger(__name__)

MAX_PAGE = 500
DEFAULT_SORT = "popularity.desc"
RANDOM_SORT = "random"

SORT_RE = re.compile(r"^[a-z_]+\.(asc|desc)$")
LANGUAGE_RE = re.compile(r"^[a-z]{2,3}(-[A-Za-z]{2})?$")
COUNTRY_RE = re.compile(r"^[A-Za-z]{2}$")
TOKEN_RE = re.compile(r"^[A-Za-z0-9+_-]{1,16}$")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False


def _as_int(value: Any) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_date(value: Any) -> str | None:
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10]).isoformat()
    except ValueError:
        return None


def _as_id_list(value: Any) -> list[int]:
    ids: list[int] = []
    for entry in parse_id_list(value):
        parsed = _as_int(entry)
        if parsed is not None and parsed >= 0 and parsed not in ids:
            ids.append(parsed)
    return ids


def _as_id_string(value: Any) -> str | None:
    """Keep only numeric ids from a comma separated list."""

    ids = [entry for entry in parse_id_list(value) if entry.isdigit()]
    return ",".join(ids) or None


def _as_token_list(value: Any) -> list[str]:
    return [entry for entry in parse_id_list(value) if TOKEN_RE.match(entry)]


class FilterSpec(BaseModel):
    """Typed, validated catalog filter.

    Unknown keys are ignored. A malformed optional value degrades to unset
    instead of failing validation, so a stored catalog keeps serving even
    when one field is nonsensical.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    genres: list[int] = Field(default_factory=list)
    exclude_genres: list[int] = Field(default_factory=list)
    genre_names: list[str] = Field(default_factory=list)
    genre_match_mode: Literal["any", "all"] = "any"

    year_from: int | None = None
    year_to: int | None = None
    rating_min: float | None = None
    rating_max: float | None = None
    vote_count_min: int | None = None
    sort_by: str | None = None
    language: str | None = None
    display_language: str | None = None
    origin_country: str | None = None
    region: str | None = None
    include_adult: bool = False

    release_date_from: str | None = None
    release_date_to: str | None = None
    release_type: int | None = None
    release_types: list[int] = Field(default_factory=list)
    certification: str | None = None
    certifications: list[str] = Field(default_factory=list)
    certification_country: str | None = None

    runtime_min: int | None = None
    runtime_max: int | None = None

    with_cast: str | None = None
    with_crew: str | None = None
    with_people: str | None = None
    with_companies: str | None = None
    with_keywords: str | None = None
    exclude_keywords: str | None = None
    exclude_companies: str | None = None

    watch_region: str | None = None
    watch_providers: list[int] = Field(default_factory=list)
    watch_monetization_type: str | None = None
    watch_monetization_types: list[str] = Field(default_factory=list)

    air_date_from: str | None = None
    air_date_to: str | None = None
    first_air_date_from: str | None = None
    first_air_date_to: str | None = None
    with_networks: str | None = None
    tv_status: str | None = None
    tv_type: str | None = None

    date_preset: str | None = None
    list_type: str | None = None
    randomize: bool = False
    discover_only: bool = False
    imdb_only: bool = False

    @field_validator(
        "genres", "exclude_genres", "release_types", "watch_providers", mode="before"
    )
    @classmethod
    def _id_lists(cls, value: Any) -> list[int]:
        return _as_id_list(value)

    @field_validator("genre_names", mode="before")
    @classmethod
    def _name_list(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            return []
        return [str(entry).strip() for entry in value if str(entry).strip()]

    @field_validator("genre_match_mode", mode="before")
    @classmethod
    def _match_mode(cls, value: Any) -> str:
        return "all" if str(value or "").strip().lower() == "all" else "any"

    @field_validator(
        "year_from", "year_to", "vote_count_min", "runtime_min", "runtime_max",
        "release_type", mode="before",
    )
    @classmethod
    def _non_negative_int(cls, value: Any) -> int | None:
        parsed = _as_int(value)
        if parsed is None or parsed < 0:
            return None
        return parsed

    @field_validator("rating_min", "rating_max", mode="before")
    @classmethod
    def _rating(cls, value: Any) -> float | None:
        parsed = _as_float(value)
        if parsed is None or not 0 <= parsed <= 10:
            return None
        return parsed

    @field_validator("sort_by", mode="before")
    @classmethod
    def _sort(cls, value: Any) -> str | None:
        text = str(value or "").strip()
        if text == RANDOM_SORT or SORT_RE.match(text):
            return text
        return None

    @field_validator("language", "display_language", mode="before")
    @classmethod
    def _language(cls, value: Any) -> str | None:
        text = str(value or "").strip()
        return text if LANGUAGE_RE.match(text) else None

    @field_validator("region", "watch_region", "certification_country", mode="before")
    @classmethod
    def _country(cls, value: Any) -> str | None:
        text = str(value or "").strip()
        return text.upper() if COUNTRY_RE.match(text) else None

    @field_validator("origin_country", mode="before")
    @classmethod
    def _countries(cls, value: Any) -> str | None:
        codes = [entry.upper() for entry in parse_id_list(value) if COUNTRY_RE.match(entry)]
        return ",".join(codes) or None

    @field_validator(
        "release_date_from", "release_date_to", "air_date_from", "air_date_to",
        "first_air_date_from", "first_air_date_to", mode="before",
    )
    @classmethod
    def _date(cls, value: Any) -> str | None:
        return _as_date(value)

    @field_validator(
        "with_cast", "with_crew", "with_people", "with_companies", "with_keywords",
        "exclude_keywords", "exclude_companies", "with_networks", mode="before",
    )
    @classmethod
    def _id_string(cls, value: Any) -> str | None:
        return _as_id_string(value)

    @field_validator(
        "certification", "watch_monetization_type", "tv_status", "tv_type",
        "date_preset", "list_type", mode="before",
    )
    @classmethod
    def _token(cls, value: Any) -> str | None:
        if isinstance(value, (list, tuple)):
            value = ",".join(str(entry) for entry in value)
        text = str(value or "").strip()
        if not text:
            return None
        return text if re.match(r"^[A-Za-z0-9+_,|/ -]{1,64}$", text) else None

    @field_validator("certifications", "watch_monetization_types", mode="before")
    @classmethod
    def _token_list(cls, value: Any) -> list[str]:
        return _as_token_list(value)

    @field_validator(
        "include_adult", "randomize", "discover_only", "imdb_only", mode="before"
    )
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return _as_bool(value)

    def to_payload(self) -> dict[str, Any]:
        """Serialise in the stored camelCase shape, dropping unset values."""

        return self.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)

    @property
    def is_random(self) -> bool:
        return self.randomize or self.sort_by == RANDOM_SORT


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


def resolve_date_preset(
    preset: str, content_type: ContentType, today: date
) -> tuple[str, str] | None:
    """Return concrete ``(from, to)`` ISO dates for a symbolic preset."""

    if preset == "last_30_days":
        start, end = today - timedelta(days=30), today
    elif preset == "last_90_days":
        start, end = today - timedelta(days=90), today
    elif preset == "last_180_days":
        start, end = today - timedelta(days=180), today
    elif preset == "this_year":
        start, end = date(today.year, 1, 1), today
    elif preset == "last_year":
        start, end = date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
    elif preset == "upcoming":
        if content_type != "movie":
            return None
        start, end = today, _add_months(today, 6)
    else:
        return None
    return start.isoformat(), end.isoformat()


@dataclass(slots=True)
class UpstreamQuery:
    """A compiled, ready-to-run TMDB request."""

    endpoint: str
    params: dict[str, Any]
    content_type: ContentType
    randomize: bool = False
    exclude_genres: list[int] = field(default_factory=list)
    list_type: str | None = None

    @property
    def page(self) -> int:
        return int(self.params.get("page") or 1)


def clamp_page(value: Any) -> int:
    parsed = _as_int(value)
    if parsed is None or parsed < 1:
        return 1
    return min(parsed, MAX_PAGE)


def _pipe(value: str | None) -> str | None:
    if not value:
        return None
    return value.replace(",", "|")


class FilterCompiler:
    """Resolve dynamic filter parts and compile them into TMDB parameters."""

    def __init__(
        self,
        genres: GenreTable,
        *,
        clock: Callable[[], date] = date.today,
        default_certification_country: str = "US",
    ) -> None:
        self._genres = genres
        self._clock = clock
        self._certification_country = default_certification_country

    async def resolve(
        self,
        spec: FilterSpec,
        content_type: str,
        *,
        genre_names: str | Iterable[str] | None = None,
        api_key: str | None = None,
    ) -> FilterSpec:
        """Return a resolved copy: concrete preset dates and request genre names.

        ``spec`` itself is never mutated; its symbolic preset survives.
        """

        content = self._check_content_type(content_type)
        update: dict[str, Any] = {}

        if spec.date_preset:
            window = resolve_date_preset(spec.date_preset, content, self._clock())
            if window is None:
                logger.debug("Ignoring date preset %s for %s", spec.date_preset, content)
            elif content == "movie":
                update["release_date_from"], update["release_date_to"] = window
            else:
                update["air_date_from"], update["air_date_to"] = window
            update["date_preset"] = None

        if genre_names:
            names = (
                [part for part in genre_names.split(",")]
                if isinstance(genre_names, str)
                else list(genre_names)
            )
            language = spec.display_language
            if api_key and self._genres.cached(content, language) is None:
                await self._genres.get(content, api_key=api_key, language=language)
            resolved = self._genres.resolve_names(content, names, language=language)
            if resolved:
                update["genres"] = resolved
            else:
                logger.debug(
                    "No genre matched %s for %s; keeping stored genres", names, content
                )

        if not update:
            return spec.model_copy()
        return spec.model_copy(update=update)

    def compile(self, spec: FilterSpec, content_type: str, page: Any = 1) -> UpstreamQuery:
        """Translate an already-resolved spec into an :class:`UpstreamQuery`."""

        content = self._check_content_type(content_type)
        media_type = media_type_for(content)
        page_number = clamp_page(page)

        list_definition = list_type_for(spec.list_type, content)
        if spec.list_type and spec.list_type not in {"discover", RANDOM_SORT} and list_definition is None:
            logger.debug("List type %s does not apply to %s; using discover", spec.list_type, content)
        if list_definition is not None:
            params: dict[str, Any] = {"page": page_number}
            if spec.display_language:
                params["language"] = spec.display_language
            if spec.region:
                params["region"] = spec.region
            return UpstreamQuery(
                endpoint=list_definition.endpoint_for(content),
                params=params,
                content_type=content,
                list_type=list_definition.key,
                exclude_genres=list(spec.exclude_genres),
            )

        randomize = spec.is_random or spec.list_type == RANDOM_SORT
        sort_by = spec.sort_by if spec.sort_by and spec.sort_by != RANDOM_SORT else DEFAULT_SORT
        params = {
            "sort_by": sort_by,
            "page": page_number,
            "include_adult": spec.include_adult,
            "vote_count.gte": spec.vote_count_min or 0,
        }

        if spec.genres:
            separator = "," if spec.genre_match_mode == "all" else "|"
            params["with_genres"] = separator.join(str(genre) for genre in spec.genres)
        if spec.exclude_genres:
            params["without_genres"] = ",".join(str(genre) for genre in spec.exclude_genres)

        if spec.rating_min:
            params["vote_average.gte"] = spec.rating_min
        if spec.rating_max:
            params["vote_average.lte"] = spec.rating_max
        if spec.language:
            params["with_original_language"] = spec.language
        if spec.display_language:
            params["language"] = spec.display_language
            params["include_image_language"] = f"{spec.display_language},null"
        if spec.origin_country:
            params["with_origin_country"] = _pipe(spec.origin_country)
        if spec.runtime_min:
            params["with_runtime.gte"] = spec.runtime_min
        if spec.runtime_max:
            params["with_runtime.lte"] = spec.runtime_max

        if media_type == "movie":
            self._compile_movie(spec, params)
        else:
            self._compile_tv(spec, params)

        for key, value in (
            ("with_cast", spec.with_cast),
            ("with_crew", spec.with_crew),
            ("with_people", spec.with_people),
            ("with_companies", spec.with_companies),
            ("with_keywords", spec.with_keywords),
        ):
            if value:
                params[key] = _pipe(value)
        if spec.exclude_companies:
            params["without_companies"] = spec.exclude_companies
        if spec.exclude_keywords:
            params["without_keywords"] = spec.exclude_keywords

        if spec.watch_region and spec.watch_providers:
            params["watch_region"] = spec.watch_region
            params["with_watch_providers"] = "|".join(str(p) for p in spec.watch_providers)
        if spec.watch_monetization_type:
            params["with_watch_monetization_types"] = _pipe(spec.watch_monetization_type)
        elif spec.watch_monetization_types:
            params["with_watch_monetization_types"] = "|".join(spec.watch_monetization_types)

        return UpstreamQuery(
            endpoint=f"/discover/{media_type}",
            params=params,
            content_type=content,
            randomize=randomize,
            exclude_genres=list(spec.exclude_genres),
        )

    def _compile_movie(self, spec: FilterSpec, params: dict[str, Any]) -> None:
        date_key = "release_date" if spec.region else "primary_release_date"
        if spec.region:
            params["region"] = spec.region
        if spec.release_date_from:
            params[f"{date_key}.gte"] = spec.release_date_from
        elif spec.year_from:
            params[f"{date_key}.gte"] = f"{spec.year_from}-01-01"
        if spec.release_date_to:
            params[f"{date_key}.lte"] = spec.release_date_to
        elif spec.year_to:
            params[f"{date_key}.lte"] = f"{spec.year_to}-12-31"

        if spec.release_type:
            params["with_release_type"] = spec.release_type
        elif spec.release_types:
            params["with_release_type"] = "|".join(str(value) for value in spec.release_types)

        certifications = spec.certifications or (
            [spec.certification] if spec.certification else []
        )
        if certifications:
            params["certification"] = "|".join(certifications)
            params["certification_country"] = (
                spec.certification_country or self._certification_country
            )

    @staticmethod
    def _compile_tv(spec: FilterSpec, params: dict[str, Any]) -> None:
        if spec.air_date_from:
            params["air_date.gte"] = spec.air_date_from
        if spec.air_date_to:
            params["air_date.lte"] = spec.air_date_to
        if spec.first_air_date_from:
            params["first_air_date.gte"] = spec.first_air_date_from
        elif spec.year_from and not spec.air_date_from:
            params["first_air_date.gte"] = f"{spec.year_from}-01-01"
        if spec.first_air_date_to:
            params["first_air_date.lte"] = spec.first_air_date_to
        elif spec.year_to and not spec.air_date_to:
            params["first_air_date.lte"] = f"{spec.year_to}-12-31"
        if spec.with_networks:
            params["with_networks"] = _pipe(spec.with_networks)
        if spec.tv_status:
            params["with_status"] = _pipe(spec.tv_status)
        if spec.tv_type:
            params["with_type"] = _pipe(spec.tv_type)

    @staticmethod
    def _check_content_type(content_type: str) -> ContentType:
        if content_type not in {"movie", "series"}:
            raise InvalidFilterError(f"Unsupported content type: {content_type!r}")
        return content_type  # type: ignore[return-value]


def exclude_by_genre(items: list[dict[str, Any]], excluded: Iterable[int]) -> list[dict[str, Any]]:
    """Drop every item carrying any excluded genre id."""

    blocked = {int(genre) for genre in excluded}
    if not blocked:
        return items
    kept: list[dict[str, Any]] = []
    for item in items:
        genre_ids = item.get("genre_ids")
        if genre_ids is None:
            genre_ids = [genre.get("id") for genre in item.get("genres") or [] if isinstance(genre, dict)]
        if blocked.intersection(_as_id_list(genre_ids)):
            continue
        kept.append(item)
    return kept


async def run_query(
    client: "TMDBClient",
    query: UpstreamQuery,
    api_key: str,
    *,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """Execute a compiled query and apply post-processing.

    Randomized queries probe page 1 for the page count, fetch one uniformly
    chosen page and shuffle it. Excluded genres are always filtered out of
    the results; ``total_results`` is reduced by the number removed from this
    page while ``total_pages`` is left as reported upstream.
    """

    generator = rng or random.Random()
    if query.randomize:
        probe = await client.fetch_json(query.endpoint, api_key, {**query.params, "page": 1})
        total_pages = _as_int((probe or {}).get("total_pages")) or 1
        max_page = max(1, min(total_pages, MAX_PAGE))
        chosen = generator.randint(1, max_page)
        data = dict(
            await client.fetch_json(query.endpoint, api_key, {**query.params, "page": chosen})
            or {}
        )
        results = list(data.get("results") or [])
        data["results"] = list(shuffle_items(results, generator))
    else:
        data = dict(await client.fetch_json(query.endpoint, api_key, query.params) or {})
        data["results"] = list(data.get("results") or [])

    if query.exclude_genres:
        before = len(data["results"])
        data["results"] = exclude_by_genre(data["results"], query.exclude_genres)
        removed = before - len(data["results"])
        if removed and isinstance(data.get("total_results"), int):
            data["total_results"] = max(0, data["total_results"] - removed)
    return data
