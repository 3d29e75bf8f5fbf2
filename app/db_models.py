"""ORM mapping for stored addon configurations."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class UserConfigRecord(Base):
    """One stored addon installation, replaced wholesale on every save."""

    __tablename__ = "user_configs"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    config_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    api_key: Mapped[str] = mapped_column(Text)
    api_key_id: Mapped[str] = mapped_column(String(64), index=True)
    catalogs: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    preferences: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
