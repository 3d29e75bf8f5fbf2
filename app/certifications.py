"""Viewer-country derivation and best-effort age-rating translation.

Rating systems are not equivalent across countries. The tables below map a US
rating onto the closest commonly used local label and are informative only.
"""

from __future__ import annotations

REFERENCE_COUNTRY = "US"

LANGUAGE_COUNTRY: dict[str, str] = {
    "en": "US",
    "de": "DE",
    "fr": "FR",
    "es": "ES",
    "it": "IT",
    "nl": "NL",
    "pt": "BR",
    "sv": "SE",
    "da": "DK",
    "no": "NO",
    "nb": "NO",
    "fi": "FI",
    "pl": "PL",
    "cs": "CZ",
    "hu": "HU",
    "ru": "RU",
    "tr": "TR",
    "el": "GR",
    "ja": "JP",
    "ko": "KR",
    "zh": "CN",
    "hi": "IN",
    "he": "IL",
    "ar": "SA",
}

_MOVIE_FROM_US: dict[str, dict[str, str]] = {
    "GB": {"G": "U", "PG": "PG", "PG-13": "12A", "R": "15", "NC-17": "18"},
    "IE": {"G": "G", "PG": "PG", "PG-13": "12A", "R": "16", "NC-17": "18"},
    "DE": {"G": "0", "PG": "6", "PG-13": "12", "R": "16", "NC-17": "18"},
    "AT": {"G": "0", "PG": "6", "PG-13": "12", "R": "16", "NC-17": "18"},
    "FR": {"G": "U", "PG": "U", "PG-13": "12", "R": "16", "NC-17": "18"},
    "ES": {"G": "A", "PG": "7", "PG-13": "12", "R": "16", "NC-17": "18"},
    "IT": {"G": "T", "PG": "T", "PG-13": "14", "R": "18", "NC-17": "18"},
    "NL": {"G": "AL", "PG": "6", "PG-13": "12", "R": "16", "NC-17": "18"},
    "BR": {"G": "L", "PG": "10", "PG-13": "12", "R": "16", "NC-17": "18"},
    "PT": {"G": "M/3", "PG": "M/6", "PG-13": "M/12", "R": "M/16", "NC-17": "M/18"},
    "SE": {"G": "Btl", "PG": "7", "PG-13": "11", "R": "15", "NC-17": "15"},
    "DK": {"G": "A", "PG": "7", "PG-13": "11", "R": "15", "NC-17": "15"},
    "NO": {"G": "A", "PG": "6", "PG-13": "12", "R": "15", "NC-17": "18"},
    "FI": {"G": "S", "PG": "7", "PG-13": "12", "R": "16", "NC-17": "18"},
    "PL": {"G": "0", "PG": "7", "PG-13": "12", "R": "16", "NC-17": "18"},
    "AU": {"G": "G", "PG": "PG", "PG-13": "M", "R": "MA15+", "NC-17": "R18+"},
    "CA": {"G": "G", "PG": "PG", "PG-13": "14A", "R": "18A", "NC-17": "R"},
    "JP": {"G": "G", "PG": "G", "PG-13": "PG12", "R": "R15+", "NC-17": "R18+"},
    "KR": {"G": "All", "PG": "12", "PG-13": "15", "R": "18", "NC-17": "18"},
    "IN": {"G": "U", "PG": "UA", "PG-13": "UA", "R": "A", "NC-17": "A"},
}

_TV_FROM_US: dict[str, dict[str, str]] = {
    "GB": {"TV-Y": "U", "TV-Y7": "U", "TV-G": "U", "TV-PG": "PG", "TV-14": "12", "TV-MA": "18"},
    "DE": {"TV-Y": "0", "TV-Y7": "6", "TV-G": "0", "TV-PG": "6", "TV-14": "12", "TV-MA": "16"},
    "FR": {"TV-Y": "NR", "TV-Y7": "NR", "TV-G": "NR", "TV-PG": "10", "TV-14": "12", "TV-MA": "16"},
    "ES": {"TV-Y": "TP", "TV-Y7": "7", "TV-G": "TP", "TV-PG": "7", "TV-14": "12", "TV-MA": "18"},
    "IT": {"TV-Y": "T", "TV-Y7": "T", "TV-G": "T", "TV-PG": "T", "TV-14": "VM14", "TV-MA": "VM18"},
    "NL": {"TV-Y": "AL", "TV-Y7": "6", "TV-G": "AL", "TV-PG": "6", "TV-14": "12", "TV-MA": "16"},
    "BR": {"TV-Y": "L", "TV-Y7": "L", "TV-G": "L", "TV-PG": "10", "TV-14": "14", "TV-MA": "18"},
    "AU": {"TV-Y": "G", "TV-Y7": "G", "TV-G": "G", "TV-PG": "PG", "TV-14": "M", "TV-MA": "MA15+"},
    "CA": {"TV-Y": "C", "TV-Y7": "C8", "TV-G": "G", "TV-PG": "PG", "TV-14": "14+", "TV-MA": "18+"},
    "KR": {"TV-Y": "All", "TV-Y7": "7", "TV-G": "All", "TV-PG": "12", "TV-14": "15", "TV-MA": "19"},
}


def viewer_country(language: str | None, display_language: str | None = None) -> str:
    """Derive the viewer's country from ``xx-YY`` tags or the bare language."""

    for candidate in (display_language, language):
        if not candidate:
            continue
        text = str(candidate).replace("_", "-")
        primary, _, region = text.partition("-")
        if len(region) == 2 and region.isalpha():
            return region.upper()
        country = LANGUAGE_COUNTRY.get(primary.lower())
        if country:
            return country
    return REFERENCE_COUNTRY


def translate_rating(rating: str, target_country: str, media_type: str) -> str | None:
    """Translate a reference-country rating into ``target_country`` vocabulary."""

    if not rating:
        return None
    country = target_country.upper()
    if country == REFERENCE_COUNTRY:
        return rating
    table = _TV_FROM_US if media_type == "tv" else _MOVIE_FROM_US
    return table.get(country, {}).get(rating.strip().upper())


def _movie_certification(details: dict, country: str) -> str | None:
    payload = details.get("release_dates") or {}
    for entry in payload.get("results") or []:
        if not isinstance(entry, dict) or entry.get("iso_3166_1") != country:
            continue
        for release in entry.get("release_dates") or []:
            certification = str((release or {}).get("certification") or "").strip()
            if certification:
                return certification
    return None


def _tv_certification(details: dict, country: str) -> str | None:
    payload = details.get("content_ratings") or {}
    for entry in payload.get("results") or []:
        if isinstance(entry, dict) and entry.get("iso_3166_1") == country:
            rating = str(entry.get("rating") or "").strip()
            if rating:
                return rating
    return None


def resolve_certification(
    details: dict,
    media_type: str,
    country: str,
    *,
    reference_country: str = REFERENCE_COUNTRY,
) -> str | None:
    """Pick the age rating for ``country``.

    Order: the viewer's own entry, then the reference country's rating
    translated to the viewer's vocabulary, then the untranslated reference
    rating.
    """

    lookup = _tv_certification if media_type == "tv" else _movie_certification
    local = lookup(details, country)
    if local:
        return local
    reference = lookup(details, reference_country)
    if not reference:
        return None
    if reference_country == REFERENCE_COUNTRY:
        translated = translate_rating(reference, country, media_type)
        if translated:
            return translated
    return reference
