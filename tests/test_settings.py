"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import Settings


def test_defaults_point_at_public_services() -> None:
    """Without overrides the addon talks to the public TMDB endpoints."""

    settings = Settings(_env_file=None)

    assert str(settings.tmdb_api_url).rstrip("/") == "https://api.themoviedb.org/3"
    assert settings.tmdb_image_base == "https://image.tmdb.org/t/p"
    assert settings.certification_country == "US"
    assert settings.catalog_cache_max_age == 300
    assert settings.catalog_stale_revalidate == 600
    assert settings.database_url.startswith("sqlite+aiosqlite://")


def test_base_url_is_normalised() -> None:
    settings = Settings(_env_file=None, BASE_URL="  https://addon.example.com/ ")

    assert settings.base_url == "https://addon.example.com"


def test_blank_base_url_becomes_none() -> None:
    settings = Settings(_env_file=None, BASE_URL="   ")

    assert settings.base_url is None


def test_cinemeta_url_alias_is_accepted() -> None:
    """The legacy ``CINEMETA_URL`` variable still configures the rating source."""

    settings = Settings(_env_file=None, CINEMETA_URL="https://cinemeta.example.com")

    assert str(settings.metadata_addon_url).startswith("https://cinemeta.example.com")


def test_certification_country_is_uppercased() -> None:
    settings = Settings(_env_file=None, CERTIFICATION_COUNTRY="gb")

    assert settings.certification_country == "GB"


def test_invalid_certification_country_raises() -> None:
    with pytest.raises(ValueError, match="CERTIFICATION_COUNTRY"):
        Settings(_env_file=None, CERTIFICATION_COUNTRY="Germany")


def test_blank_rpdb_key_disables_rating_lookups() -> None:
    settings = Settings(_env_file=None, RPDB_API_KEY="  ")

    assert settings.rpdb_api_key is None


def test_short_api_key_secret_is_rejected() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, API_KEY_SECRET="short")


def test_retry_bounds_are_enforced() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, TMDB_MAX_RETRIES=50)
