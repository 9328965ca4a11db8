"""
db/models/catalog_entity.py

Target store rows written by incremental entity providers.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin


class CatalogEntityRecord(Base, TimestampMixin):
    __tablename__ = "catalog_entities"

    ref: Mapped[str] = mapped_column(
        Text,
        primary_key=True,
        comment="kind:namespace/name, lowercased",
    )
    provider_name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    __table_args__ = (Index("ix_catalog_entities_provider_name", "provider_name"),)
