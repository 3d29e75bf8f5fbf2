"""Credential fingerprinting and identifier format checks."""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets

API_KEY_RE = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)
USER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{6,30}$")
CATALOG_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
POSTER_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
IMDB_ID_RE = re.compile(r"^tt\d+$")


def compute_api_key_id(api_key: str, secret: str) -> str:
    """Return a stable, non-reversible identifier for a TMDB API key."""

    digest = hmac.new(secret.encode("utf-8"), api_key.strip().encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def api_key_matches(api_key: str | None, expected_id: str | None, secret: str) -> bool:
    if not api_key or not expected_id:
        return False
    return hmac.compare_digest(compute_api_key_id(api_key, secret), expected_id)


def is_valid_api_key(value: str | None) -> bool:
    return bool(value) and API_KEY_RE.match(value.strip()) is not None


def is_valid_user_id(value: str | None) -> bool:
    return bool(value) and USER_ID_RE.match(value) is not None


def is_valid_catalog_id(value: str | None) -> bool:
    return bool(value) and CATALOG_ID_RE.match(value) is not None


def is_valid_poster_key(value: str | None) -> bool:
    return bool(value) and POSTER_KEY_RE.match(value) is not None


def is_valid_imdb_id(value: str | None) -> bool:
    return bool(value) and IMDB_ID_RE.match(value) is not None


def generate_user_id() -> str:
    """Return a URL-safe user identifier accepted by :func:`is_valid_user_id`."""

    while True:
        candidate = secrets.token_urlsafe(9)[:12]
        if is_valid_user_id(candidate):
            return candidate
