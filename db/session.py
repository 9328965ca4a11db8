"""
db/session.py

Process-wide engine and session factory for the ingestion state store.
Both are built lazily so importing the repositories never opens a pool.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import DatabaseSettings, get_database_settings
from db.config import resolve_database_url

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def create_db_engine(
    database_url: str | None = None,
    settings: DatabaseSettings | None = None,
) -> Engine:
    url = database_url or resolve_database_url()
    if not url.startswith("postgresql"):
        # The state store relies on ON CONFLICT and row-level UPDATE claims.
        raise RuntimeError(f"Ingestion state requires PostgreSQL, got '{url.split(':', 1)[0]}'.")

    pool = settings or get_database_settings()
    return create_engine(
        url,
        echo=pool.echo,
        pool_pre_ping=True,
        pool_size=pool.pool_size,
        max_overflow=pool.max_overflow,
        pool_recycle=pool.pool_recycle_seconds,
    )


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Sessions do not expire on commit: repositories map rows to plain records
    after their transaction has closed.
    """

    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _session_factory


def SessionLocal() -> Session:
    return get_session_factory()()
