"""Fixed reference tables: list feeds, sort orders and discover enumerations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


ContentType = Literal["movie", "series"]
MediaType = Literal["movie", "tv"]


def media_type_for(content_type: str) -> MediaType:
    """Map a Stremio content type onto the upstream media type."""

    if content_type == "movie":
        return "movie"
    if content_type == "series":
        return "tv"
    raise ValueError(f"Unsupported content type: {content_type!r}")


@dataclass(frozen=True)
class ListTypeDefinition:
    """Describes a dedicated upstream feed that bypasses discover filters."""

    key: str
    label: str
    description: str
    content_types: tuple[ContentType, ...]
    endpoint: str

    def endpoint_for(self, content_type: ContentType) -> str:
        return self.endpoint.format(media=media_type_for(content_type))


LIST_TYPES: tuple[ListTypeDefinition, ...] = (
    ListTypeDefinition(
        key="trending_day",
        label="Trending Today",
        description="Titles trending today",
        content_types=("movie", "series"),
        endpoint="/trending/{media}/day",
    ),
    ListTypeDefinition(
        key="trending_week",
        label="Trending This Week",
        description="Titles trending this week",
        content_types=("movie", "series"),
        endpoint="/trending/{media}/week",
    ),
    ListTypeDefinition(
        key="now_playing",
        label="Now Playing",
        description="Currently in theaters",
        content_types=("movie",),
        endpoint="/movie/now_playing",
    ),
    ListTypeDefinition(
        key="upcoming",
        label="Upcoming",
        description="Coming soon to theaters",
        content_types=("movie",),
        endpoint="/movie/upcoming",
    ),
    ListTypeDefinition(
        key="airing_today",
        label="Airing Today",
        description="Episodes airing today",
        content_types=("series",),
        endpoint="/tv/airing_today",
    ),
    ListTypeDefinition(
        key="on_the_air",
        label="On The Air",
        description="Currently airing shows",
        content_types=("series",),
        endpoint="/tv/on_the_air",
    ),
    ListTypeDefinition(
        key="top_rated",
        label="Top Rated",
        description="All-time highest rated",
        content_types=("movie", "series"),
        endpoint="/{media}/top_rated",
    ),
    ListTypeDefinition(
        key="popular",
        label="Popular",
        description="Currently popular titles",
        content_types=("movie", "series"),
        endpoint="/{media}/popular",
    ),
)

LIST_TYPE_MAP: dict[str, ListTypeDefinition] = {
    definition.key: definition for definition in LIST_TYPES
}


def list_type_for(key: str | None, content_type: ContentType) -> ListTypeDefinition | None:
    """Return the dedicated feed for ``key`` when it applies to ``content_type``."""

    if not key:
        return None
    definition = LIST_TYPE_MAP.get(key)
    if definition is None or content_type not in definition.content_types:
        return None
    return definition


SORT_OPTIONS: dict[str, tuple[tuple[str, str], ...]] = {
    "movie": (
        ("popularity.desc", "Most Popular"),
        ("popularity.asc", "Least Popular"),
        ("vote_average.desc", "Highest Rated"),
        ("vote_average.asc", "Lowest Rated"),
        ("vote_count.desc", "Most Votes"),
        ("vote_count.asc", "Least Votes"),
        ("primary_release_date.desc", "Newest Releases"),
        ("primary_release_date.asc", "Oldest Releases"),
        ("release_date.desc", "Release Date (Newest)"),
        ("release_date.asc", "Release Date (Oldest)"),
        ("revenue.desc", "Highest Revenue"),
        ("revenue.asc", "Lowest Revenue"),
        ("original_title.asc", "Title A-Z"),
        ("original_title.desc", "Title Z-A"),
        ("title.asc", "Localized Title A-Z"),
        ("title.desc", "Localized Title Z-A"),
        ("random", "Random"),
    ),
    "series": (
        ("popularity.desc", "Most Popular"),
        ("popularity.asc", "Least Popular"),
        ("vote_average.desc", "Highest Rated"),
        ("vote_average.asc", "Lowest Rated"),
        ("vote_count.desc", "Most Votes"),
        ("vote_count.asc", "Least Votes"),
        ("first_air_date.desc", "Newest First Aired"),
        ("first_air_date.asc", "Oldest First Aired"),
        ("original_name.asc", "Name A-Z"),
        ("original_name.desc", "Name Z-A"),
        ("name.asc", "Localized Name A-Z"),
        ("name.desc", "Localized Name Z-A"),
        ("random", "Random"),
    ),
}

RELEASE_TYPES: tuple[tuple[int, str], ...] = (
    (1, "Premiere"),
    (2, "Limited Theatrical"),
    (3, "Theatrical"),
    (4, "Digital"),
    (5, "Physical"),
    (6, "TV"),
)

TV_STATUSES: tuple[tuple[str, str], ...] = (
    ("0", "Returning Series"),
    ("1", "Planned"),
    ("2", "In Production"),
    ("3", "Ended"),
    ("4", "Cancelled"),
    ("5", "Pilot"),
)

TV_TYPES: tuple[tuple[str, str], ...] = (
    ("0", "Documentary"),
    ("1", "News"),
    ("2", "Miniseries"),
    ("3", "Reality"),
    ("4", "Scripted"),
    ("5", "Talk Show"),
    ("6", "Video"),
)

MONETIZATION_TYPES: tuple[tuple[str, str], ...] = (
    ("flatrate", "Subscription"),
    ("free", "Free"),
    ("ads", "Free with Ads"),
    ("rent", "Rent"),
    ("buy", "Buy"),
)

DATE_PRESETS: tuple[tuple[str, str], ...] = (
    ("last_30_days", "Last 30 days"),
    ("last_90_days", "Last 90 days"),
    ("last_180_days", "Last 6 months"),
    ("this_year", "This year"),
    ("last_year", "Last year"),
    ("upcoming", "Upcoming (movies)"),
)

# Curated broadcaster/streamer ids; anything else goes through network search.
TV_NETWORKS: tuple[tuple[int, str], ...] = (
    (213, "Netflix"),
    (1024, "Amazon"),
    (2739, "Disney+"),
    (2552, "Apple TV+"),
    (453, "Hulu"),
    (3186, "HBO Max"),
    (49, "HBO"),
    (2697, "Paramount+"),
    (4330, "Peacock"),
    (3353, "Discovery+"),
    (6, "NBC"),
    (2, "ABC"),
    (16, "CBS"),
    (19, "FOX"),
    (71, "The CW"),
    (174, "AMC"),
    (67, "Showtime"),
    (318, "Starz"),
    (34, "FX"),
    (4, "BBC One"),
    (332, "BBC Two"),
    (26, "Channel 4"),
    (9, "ITV"),
    (493, "Sky Atlantic"),
    (1, "Fuji TV"),
    (98, "TV Tokyo"),
    (614, "Crunchyroll"),
)


def reference_table(name: str) -> list[dict[str, object]] | dict[str, list[dict[str, object]]]:
    """Return a static table in the JSON shape the configuration UI consumes."""

    if name == "list-types":
        return {
            content_type: [
                {"value": "discover", "label": "Custom Discover"},
                *(
                    {
                        "value": definition.key,
                        "label": definition.label,
                        "description": definition.description,
                    }
                    for definition in LIST_TYPES
                    if content_type in definition.content_types
                ),
            ]
            for content_type in ("movie", "series")
        }
    if name == "sort-options":
        return {
            content_type: [{"value": value, "label": label} for value, label in options]
            for content_type, options in SORT_OPTIONS.items()
        }
    tables: dict[str, tuple[tuple[object, str], ...]] = {
        "release-types": RELEASE_TYPES,
        "tv-statuses": TV_STATUSES,
        "tv-types": TV_TYPES,
        "monetization-types": MONETIZATION_TYPES,
        "date-presets": DATE_PRESETS,
        "tv-networks": TV_NETWORKS,
    }
    table = tables.get(name)
    if table is None:
        raise KeyError(name)
    if name == "tv-networks":
        return [{"id": value, "name": label} for value, label in table]
    return [{"value": value, "label": label} for value, label in table]
