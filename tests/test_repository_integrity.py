"""Repository-level integrity checks."""

from __future__ import annotations

import json
import re
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
CONFLICT_PATTERN = re.compile(r"^(<<<<<<<|=======|>>>>>>>)( |$)", re.MULTILINE)
IGNORED_PARTS = {".git", "__pycache__", ".mypy_cache", ".pytest_cache", ".venv"}


def _repository_files() -> list[Path]:
    return [
        path
        for path in REPO_ROOT.rglob("*")
        if path.is_file() and not any(part in IGNORED_PARTS for part in path.parts)
    ]


def test_repository_has_no_merge_conflict_markers() -> None:
    offending = [
        path.relative_to(REPO_ROOT)
        for path in _repository_files()
        if CONFLICT_PATTERN.search(path.read_text(encoding="utf-8", errors="ignore"))
    ]

    assert not offending, "Conflict markers left in: " + ", ".join(map(str, offending))


def test_bundled_genre_table_is_well_formed() -> None:
    """The static fallback must cover both media types with numeric ids."""

    data = json.loads((REPO_ROOT / "app" / "data" / "tmdb_genres.json").read_text("utf-8"))

    assert set(data) == {"movie", "tv"}
    for entries in data.values():
        assert entries
        assert all(genre_id.isdigit() and name for genre_id, name in entries.items())
