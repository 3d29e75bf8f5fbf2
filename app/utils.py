"""Utility helpers for the TMDB Discover+ service."""

from __future__ import annotations

import random
import re
import unicodedata
from typing import Any, Iterable, MutableSequence, TypeVar
from urllib.parse import unquote

T = TypeVar("T")

API_KEY_PARAM_RE = re.compile(r"([?&]api_key=)[^&\s]+", re.IGNORECASE)
GENRE_STRIP_RE = re.compile(r"[^a-z0-9\s]")
WHITESPACE_RE = re.compile(r"\s+")


def normalize_genre_name(value: str) -> str:
    """Canonicalise a genre label for loose comparisons.

    ``"Action & Adventure"`` and ``"action and adventure"`` normalise to the
    same string; accents, dashes and punctuation are dropped.
    """

    text = str(value or "").replace("–", " ").replace("—", " ").replace("-", " ")
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower().replace("&", " and ")
    text = GENRE_STRIP_RE.sub("", text)
    return WHITESPACE_RE.sub(" ", text).strip()


def parse_id_list(value: Any) -> list[str]:
    """Split comma/pipe separated identifiers into a clean, de-duplicated list."""

    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        raw: Iterable[Any] = value
    else:
        raw = re.split(r"[,|]", str(value))
    cleaned: list[str] = []
    for entry in raw:
        text = str(entry).strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return cleaned


def redact_url(url: str) -> str:
    """Mask credential query parameters before a URL reaches a log sink."""

    return API_KEY_PARAM_RE.sub(r"\1[REDACTED]", str(url))


def parse_extra(raw: str | None) -> dict[str, str]:
    """Decode a Stremio ``extra`` path segment such as ``genre=Action&skip=20``.

    The segment is split on the literal delimiters before percent-decoding so
    encoded ``%26`` inside a value survives as ``&``.
    """

    if not raw:
        return {}
    segment = raw[:-5] if raw.endswith(".json") else raw
    extras: dict[str, str] = {}
    for part in segment.split("&"):
        if not part:
            continue
        key, _, value = part.partition("=")
        key = unquote(key).strip()
        if not key:
            continue
        extras[key] = unquote(value).strip()
    return extras


def format_runtime(minutes: Any) -> str | None:
    """Render runtimes the way Stremio shows them (``2h7min``)."""

    try:
        total = int(minutes)
    except (TypeError, ValueError):
        return None
    if total <= 0:
        return None
    hours, remainder = divmod(total, 60)
    if not hours:
        return f"{remainder}min"
    if not remainder:
        return f"{hours}h"
    return f"{hours}h{remainder}min"


def shuffle_items(items: MutableSequence[T], rng: random.Random | None = None) -> MutableSequence[T]:
    """Fisher-Yates shuffle in place and return the same sequence."""

    generator = rng or random
    for index in range(len(items) - 1, 0, -1):
        swap = generator.randint(0, index)
        items[index], items[swap] = items[swap], items[index]
    return items


def extract_year(value: Any) -> int | None:
    if not isinstance(value, str) or len(value) < 4:
        return None
    try:
        return int(value[:4])
    except ValueError:
        return None
