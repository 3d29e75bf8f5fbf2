from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app import db_models  # noqa: F401  (registers the tables)
from app.database import Database


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a legacy user_configs table lacking the preferences column."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE user_configs (
                        user_id VARCHAR(32) PRIMARY KEY,
                        api_key TEXT,
                        api_key_id VARCHAR(64),
                        catalogs JSON,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    "INSERT INTO user_configs (user_id, api_key, api_key_id, catalogs) "
                    "VALUES ('legacy-user', 'key', 'fingerprint', '[]')"
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_missing_columns(tmp_path) -> None:
    """Schema migrations should backfill the newer columns."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        columns = {column["name"] for column in inspector.get_columns("user_configs")}
        indexes = {index["name"] for index in inspector.get_indexes("user_configs")}
        with inspector_engine.connect() as connection:
            preferences = connection.execute(
                text("SELECT preferences FROM user_configs WHERE user_id = 'legacy-user'")
            ).scalar_one()
    finally:
        inspector_engine.dispose()

    assert {"preferences", "config_name"} <= columns
    assert preferences == "{}"
    assert "ix_user_configs_api_key_id" in indexes


def test_create_all_on_empty_database(tmp_path) -> None:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'fresh.db'}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
    try:
        assert "user_configs" in inspect(inspector_engine).get_table_names()
    finally:
        inspector_engine.dispose()
