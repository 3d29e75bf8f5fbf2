from app.certifications import resolve_certification, translate_rating, viewer_country

MOVIE_DETAILS = {
    "release_dates": {
        "results": [
            {"iso_3166_1": "US", "release_dates": [{"certification": ""}, {"certification": "R"}]},
            {"iso_3166_1": "DE", "release_dates": [{"certification": "16"}]},
        ]
    }
}
TV_DETAILS = {"content_ratings": {"results": [{"iso_3166_1": "US", "rating": "TV-MA"}]}}


def test_viewer_country_prefers_region_then_language():
    assert viewer_country("en", "pt-BR") == "BR"
    assert viewer_country("de") == "DE"
    assert viewer_country(None) == "US"
    assert viewer_country("xx") == "US"


def test_local_rating_wins():
    assert resolve_certification(MOVIE_DETAILS, "movie", "DE") == "16"


def test_reference_rating_is_translated_when_mapping_exists():
    assert resolve_certification(MOVIE_DETAILS, "movie", "GB") == "15"
    assert resolve_certification(TV_DETAILS, "tv", "DE") == "16"


def test_untranslatable_reference_rating_is_returned_as_is():
    assert resolve_certification(MOVIE_DETAILS, "movie", "ZA") == "R"
    assert translate_rating("R", "US", "movie") == "R"


def test_missing_ratings_resolve_to_none():
    assert resolve_certification({}, "movie", "US") is None
