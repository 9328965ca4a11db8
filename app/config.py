"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache

from db.config import load_env_files
from incremental.backoff import DEFAULT_BACKOFF

logger = logging.getLogger(__name__)

_DEFAULT_BACKOFF_SECONDS = tuple(int(entry.total_seconds()) for entry in DEFAULT_BACKOFF)


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool = False) -> bool:
    """
    Read a boolean flag from environment variables.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def parse_backoff_seconds(raw: str | None) -> tuple[int, ...]:
    """
    Parse a comma-separated list of backoff durations in seconds.

    Invalid or negative tokens are skipped with a WARNING log. An empty result
    falls back to the default table.
    """

    if raw is None or not raw.strip():
        return _DEFAULT_BACKOFF_SECONDS
    values: list[int] = []
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        try:
            value = int(token)
        except ValueError:
            logger.warning("INCREMENTAL_BACKOFF_SECONDS: skipping malformed token %r", token)
            continue
        if value < 0:
            logger.warning("INCREMENTAL_BACKOFF_SECONDS: skipping negative token %r", token)
            continue
        values.append(value)
    return tuple(values) if values else _DEFAULT_BACKOFF_SECONDS


def parse_inventory_sources(raw: str | None) -> tuple[InventorySource, ...]:
    """
    Parse ``INVENTORY_SOURCES`` into provider definitions.

    Format: ``name=url,name=url`` (whitespace-tolerant). Malformed tokens and
    duplicate names are skipped with a WARNING log.
    """

    if raw is None or not raw.strip():
        return ()
    sources: list[InventorySource] = []
    seen: set[str] = set()
    for token in raw.split(","):
        token = token.strip()
        if not token:
            continue
        parts = token.split("=", 1)
        if len(parts) != 2:
            logger.warning("INVENTORY_SOURCES: skipping malformed token %r", token)
            continue
        name, base_url = parts[0].strip(), parts[1].strip()
        if not name or not base_url:
            logger.warning("INVENTORY_SOURCES: skipping token with empty name or url %r", token)
            continue
        if name in seen:
            logger.warning("INVENTORY_SOURCES: skipping duplicate provider %r", name)
            continue
        seen.add(name)
        sources.append(InventorySource(name=name, base_url=base_url))
    return tuple(sources)


@dataclass(frozen=True)
class IncrementalIngestionSettings:
    """
    Lifecycle timing for every incremental provider.
    """

    rest_length_seconds: int = 86400
    burst_length_seconds: float = 3.0
    burst_interval_seconds: float = 3.0
    backoff_seconds: tuple[int, ...] = _DEFAULT_BACKOFF_SECONDS
    burst_lease_seconds: int = 600

    @property
    def rest_length(self) -> timedelta:
        return timedelta(seconds=self.rest_length_seconds)

    @property
    def burst_length(self) -> timedelta:
        return timedelta(seconds=self.burst_length_seconds)

    @property
    def burst_interval(self) -> timedelta:
        return timedelta(seconds=self.burst_interval_seconds)

    @property
    def backoff(self) -> tuple[timedelta, ...]:
        return tuple(timedelta(seconds=value) for value in self.backoff_seconds)

    @property
    def burst_lease(self) -> timedelta:
        return timedelta(seconds=self.burst_lease_seconds)


@dataclass(frozen=True)
class DatabaseSettings:
    """
    Connection pool options for the ingestion database.
    """

    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    pool_recycle_seconds: int = 1800


@dataclass(frozen=True)
class ExternalHTTPSettings:
    """
    Shared HTTP behavior settings for inventory connectors.
    """

    timeout_seconds: float = 15.0
    max_retries: int = 3
    backoff_initial_seconds: float = 0.5
    backoff_multiplier: float = 2.0
    rate_limit_per_second: float = 5.0


@dataclass(frozen=True)
class InventorySource:
    """
    One paged inventory endpoint, ingested under ``name``.
    """

    name: str
    base_url: str


@dataclass(frozen=True)
class InventorySourceSettings:
    """
    Inventory endpoints and paging options.
    """

    sources: tuple[InventorySource, ...] = field(default_factory=tuple)
    page_size: int = 100
    bearer_token: str | None = None


@lru_cache(maxsize=1)
def get_incremental_ingestion_settings() -> IncrementalIngestionSettings:
    """
    Return cached lifecycle settings from environment variables.
    """

    _load_env_once()
    return IncrementalIngestionSettings(
        rest_length_seconds=max(0, _get_int_env("INCREMENTAL_REST_LENGTH_SECONDS", 86400)),
        burst_length_seconds=max(0.1, _get_float_env("INCREMENTAL_BURST_LENGTH_SECONDS", 3.0)),
        burst_interval_seconds=max(0.1, _get_float_env("INCREMENTAL_BURST_INTERVAL_SECONDS", 3.0)),
        backoff_seconds=parse_backoff_seconds(os.getenv("INCREMENTAL_BACKOFF_SECONDS")),
        burst_lease_seconds=max(1, _get_int_env("INCREMENTAL_BURST_LEASE_SECONDS", 600)),
    )


@lru_cache(maxsize=1)
def get_external_http_settings() -> ExternalHTTPSettings:
    """
    Return shared connector HTTP settings from environment variables.
    """

    return ExternalHTTPSettings(
        timeout_seconds=max(1.0, _get_float_env("EXTERNAL_HTTP_TIMEOUT_SECONDS", 15.0)),
        max_retries=max(0, _get_int_env("EXTERNAL_HTTP_MAX_RETRIES", 3)),
        backoff_initial_seconds=max(0.1, _get_float_env("EXTERNAL_HTTP_BACKOFF_INITIAL_SECONDS", 0.5)),
        backoff_multiplier=max(1.0, _get_float_env("EXTERNAL_HTTP_BACKOFF_MULTIPLIER", 2.0)),
        rate_limit_per_second=max(0.1, _get_float_env("EXTERNAL_HTTP_RATE_LIMIT_PER_SECOND", 5.0)),
    )


@lru_cache(maxsize=1)
def get_inventory_source_settings() -> InventorySourceSettings:
    """
    Return inventory endpoint settings from environment variables.
    """

    _load_env_once()
    token = _get_str_env("INVENTORY_BEARER_TOKEN", "")
    return InventorySourceSettings(
        sources=parse_inventory_sources(os.getenv("INVENTORY_SOURCES")),
        page_size=max(1, _get_int_env("INVENTORY_PAGE_SIZE", 100)),
        bearer_token=token or None,
    )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
    """
    Return connection pool settings from environment variables.
    """

    return DatabaseSettings(
        echo=_get_bool_env("SQL_ECHO", default=False),
        pool_size=max(1, _get_int_env("DB_POOL_SIZE", 5)),
        max_overflow=max(0, _get_int_env("DB_MAX_OVERFLOW", 10)),
        pool_recycle_seconds=_get_int_env("DB_POOL_RECYCLE", 1800),
    )
