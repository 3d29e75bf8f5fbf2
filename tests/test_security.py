from app.security import (
    api_key_matches,
    compute_api_key_id,
    generate_user_id,
    is_valid_api_key,
    is_valid_imdb_id,
    is_valid_user_id,
)

API_KEY = "0123456789abcdef0123456789abcdef"
SECRET = "unit-test-secret"


def test_api_key_id_is_stable_and_secret_bound():
    first = compute_api_key_id(API_KEY, SECRET)

    assert first == compute_api_key_id(API_KEY, SECRET)
    assert first != compute_api_key_id(API_KEY, "another-secret")
    assert API_KEY not in first


def test_api_key_matches_compares_fingerprints():
    expected = compute_api_key_id(API_KEY, SECRET)

    assert api_key_matches(API_KEY, expected, SECRET)
    assert not api_key_matches("f" * 32, expected, SECRET)
    assert not api_key_matches(None, expected, SECRET)


def test_identifier_formats():
    assert is_valid_api_key(API_KEY.upper())
    assert not is_valid_api_key("not-a-key")
    assert is_valid_imdb_id("tt0133093")
    assert not is_valid_imdb_id("0133093")
    assert not is_valid_user_id("abc")


def test_generated_user_ids_are_valid():
    user_id = generate_user_id()

    assert is_valid_user_id(user_id)
    assert len(user_id) == 12
