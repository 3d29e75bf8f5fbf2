"""Database utilities for the addon's configuration store."""

from __future__ import annotations

import logging

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

CONFIG_TABLE = "user_configs"
API_KEY_ID_INDEX = "ix_user_configs_api_key_id"


class Base(DeclarativeBase):
    metadata = MetaData()


class Database:
    """Owns the async engine and hands out sessions to the config store."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create missing tables, then bring older ``user_configs`` tables up to date."""

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection) -> None:
        inspector = inspect(sync_connection)
        if CONFIG_TABLE not in inspector.get_table_names():
            return

        existing_columns = {column["name"] for column in inspector.get_columns(CONFIG_TABLE)}

        def _ensure_column(name: str, column_type: str, backfill: str | None = None) -> None:
            if name in existing_columns:
                return
            sync_connection.execute(
                text(f"ALTER TABLE {CONFIG_TABLE} ADD COLUMN {name} {column_type}")
            )
            if backfill is not None:
                sync_connection.execute(
                    text(f"UPDATE {CONFIG_TABLE} SET {name} = {backfill} WHERE {name} IS NULL")
                )
            existing_columns.add(name)
            logger.info("Added column %s.%s", CONFIG_TABLE, name)

        _ensure_column("config_name", "VARCHAR(120)")
        _ensure_column("preferences", "JSON", "'{}'")
        _ensure_column("updated_at", "DATETIME", "created_at")

        # Ownership listing filters on the credential fingerprint.
        index_names = {index["name"] for index in inspector.get_indexes(CONFIG_TABLE)}
        if API_KEY_ID_INDEX not in index_names:
            sync_connection.execute(
                text(
                    f"CREATE INDEX IF NOT EXISTS {API_KEY_ID_INDEX} "
                    f"ON {CONFIG_TABLE} (api_key_id)"
                )
            )

    async def dispose(self) -> None:
        await self._engine.dispose()
