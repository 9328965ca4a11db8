"""
db/models/ingestion.py

Incremental ingestion lifecycle records and their progress marks.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin

OPEN_COMPLETION_TICKET = "open"


class Ingestion(Base, TimestampMixin):
    __tablename__ = "ingestions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    provider_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="bursting, interstitial, resting, backing off, canceling, complete, canceled",
    )
    next_action: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="ingest, rest, backoff, cancel, nothing (done), nothing (canceled)",
    )
    next_action_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    ingestion_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    rest_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completion_ticket: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=OPEN_COMPLETION_TICKET,
        comment="'open' while active; replaced with a UUID once the ingestion closes",
    )
    burst_lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set while a process holds the burst; NULL between bursts",
    )

    marks: Mapped[list[IngestionMarkRecord]] = relationship(
        back_populates="ingestion",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint(
            "provider_name",
            "completion_ticket",
            name="uq_ingestions_provider_completion_ticket",
        ),
        Index("ix_ingestions_provider_name", "provider_name"),
        Index("ix_ingestions_status", "status"),
    )


class IngestionMarkRecord(Base):
    __tablename__ = "ingestion_marks"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    ingestion_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ingestions.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    cursor: Mapped[Any | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Provider-defined token used to request the next page",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    ingestion: Mapped[Ingestion] = relationship(back_populates="marks")
    entities: Mapped[list[IngestionMarkEntity]] = relationship(
        back_populates="mark",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("ingestion_id", "sequence", name="uq_ingestion_marks_ingestion_sequence"),
        Index("ix_ingestion_marks_ingestion_id", "ingestion_id"),
    )


class IngestionMarkEntity(Base):
    __tablename__ = "ingestion_mark_entities"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    ingestion_mark_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ingestion_marks.id", ondelete="CASCADE"),
        nullable=False,
    )
    ref: Mapped[str] = mapped_column(Text, nullable=False)

    mark: Mapped[IngestionMarkRecord] = relationship(back_populates="entities")

    __table_args__ = (
        Index("ix_ingestion_mark_entities_mark_id", "ingestion_mark_id"),
        Index("ix_ingestion_mark_entities_ref", "ref"),
    )
