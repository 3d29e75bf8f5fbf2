"""Persistence for user configurations."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import UserConfigRecord
from ..errors import InvalidFilterError
from ..models import CatalogDefinition, Preferences, UserConfiguration

logger = logging.getLogger(__name__)


class ConfigStore:
    """Load and replace whole :class:`UserConfiguration` documents."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_model(record: UserConfigRecord) -> UserConfiguration:
        catalogs: list[CatalogDefinition] = []
        for raw in record.catalogs or []:
            try:
                catalogs.append(CatalogDefinition.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "Skipping unreadable catalog for user %s: %s", record.user_id, exc
                )
        return UserConfiguration(
            user_id=record.user_id,
            config_name=record.config_name,
            api_key=record.api_key,
            api_key_id=record.api_key_id,
            catalogs=catalogs,
            preferences=Preferences.model_validate(record.preferences or {}),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    def _serialise_catalogs(catalogs: Iterable[CatalogDefinition]) -> list[dict[str, Any]]:
        return [catalog.to_payload() for catalog in catalogs]

    async def get(self, user_id: str) -> UserConfiguration | None:
        async with self._session_factory() as session:
            record = await session.get(UserConfigRecord, user_id)
            if record is None:
                return None
            return self._to_model(record)

    async def save(self, config: UserConfiguration) -> UserConfiguration:
        """Create or replace the stored document for ``config.user_id``.

        A catalog id that already exists keeps its content type; a save that
        changes it raises :class:`InvalidFilterError` and nothing is written.
        """

        async with self._session_factory() as session:
            record = await session.get(UserConfigRecord, config.user_id)
            if record is not None:
                previous = {
                    str(raw.get("id")): raw.get("type")
                    for raw in record.catalogs or []
                    if isinstance(raw, dict)
                }
                for catalog in config.catalogs:
                    old_type = previous.get(catalog.id)
                    if old_type is not None and old_type != catalog.content_type:
                        raise InvalidFilterError(
                            f"Catalog {catalog.id} cannot change type from {old_type} "
                            f"to {catalog.content_type}"
                        )
            else:
                record = UserConfigRecord(user_id=config.user_id)
                session.add(record)

            record.config_name = config.config_name
            record.api_key = config.api_key
            record.api_key_id = config.api_key_id
            record.catalogs = self._serialise_catalogs(config.catalogs)
            record.preferences = config.preferences.to_payload(include_secrets=True)
            record.updated_at = datetime.utcnow()
            await session.commit()
            await session.refresh(record)
            return self._to_model(record)

    async def delete(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(UserConfigRecord).where(UserConfigRecord.user_id == user_id)
            )
            await session.commit()
            return bool(result.rowcount)

    async def list_by_api_key_id(self, api_key_id: str) -> list[UserConfiguration]:
        async with self._session_factory() as session:
            stmt = (
                select(UserConfigRecord)
                .where(UserConfigRecord.api_key_id == api_key_id)
                .order_by(UserConfigRecord.updated_at.desc())
            )
            result = await session.execute(stmt)
            return [self._to_model(record) for record in result.scalars().all()]

    async def update_catalog_genres(
        self,
        user_id: str,
        catalog_id: str,
        *,
        genres: list[int],
        genre_names: list[str],
    ) -> bool:
        """Persist repaired genre ids/names for one catalog.

        Only the two genre fields of the matching catalog change; the rest of
        the stored document is left as is.
        """

        async with self._session_factory() as session:
            record = await session.get(UserConfigRecord, user_id)
            if record is None:
                return False
            updated = False
            catalogs: list[dict[str, Any]] = []
            for raw in record.catalogs or []:
                entry = dict(raw)
                if entry.get("id") == catalog_id:
                    filters = dict(entry.get("filters") or {})
                    filters["genres"] = list(genres)
                    filters["genreNames"] = list(genre_names)
                    entry["filters"] = filters
                    updated = True
                catalogs.append(entry)
            if not updated:
                return False
            record.catalogs = catalogs
            await session.commit()
            return True
