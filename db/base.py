"""
db/base.py

Declarative base, timestamp mixin and the UTC clock shared by the
ingestion state models and repositories.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Timezone-aware now; every persisted timestamp is UTC."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for the ingestion state tables.
    """


class TimestampMixin:
    """
    created_at / updated_at columns. updated_at is refreshed on every UPDATE
    issued through SQLAlchemy, ORM or Core.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=utcnow,
    )
