"""
app/services/incremental_ingestion_service.py

Wires configured inventory sources into incremental ingestion engines and
exposes the administrative operations used by the admin router.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from functools import lru_cache

from app.config import (
    get_external_http_settings,
    get_incremental_ingestion_settings,
    get_inventory_source_settings,
)
from app.connectors import PagedInventoryConnector
from db.repositories.catalog_entity_repository import CatalogEntityConnection
from db.repositories.incremental_ingestion_repository import IncrementalIngestionRepository
from db.repositories.types import IngestionHealth, ProviderPurgeSummary
from incremental.base import IngestionMark, IngestionRecord
from incremental.engine import IncrementalIngestionEngine

logger = logging.getLogger(__name__)

ADMIN_CANCEL_REASON = "Canceled by administrator"


class UnknownProviderError(LookupError):
    """
    Raised when an operation names a provider that is not configured.
    """


class IncrementalIngestionService:
    """
    Holds one engine per configured provider plus the shared state store.
    """

    def __init__(
        self,
        *,
        repository: IncrementalIngestionRepository,
        engines: Sequence[IncrementalIngestionEngine],
    ) -> None:
        self._repository = repository
        self._engines = {engine.provider_name: engine for engine in engines}

    @property
    def engines(self) -> list[IncrementalIngestionEngine]:
        return list(self._engines.values())

    def get_engine(self, provider_name: str) -> IncrementalIngestionEngine:
        engine = self._engines.get(provider_name)
        if engine is None:
            allowed = ", ".join(sorted(self._engines)) or "<none>"
            raise UnknownProviderError(
                f"Unknown provider '{provider_name}'. Configured providers: {allowed}."
            )
        return engine

    def list_providers(self) -> list[str]:
        """
        Configured providers plus any provider that still has rows in the store.
        """

        return sorted(set(self._engines) | set(self._repository.list_providers()))

    def health(self) -> IngestionHealth:
        return self._repository.health_check()

    def get_status(self, provider_name: str) -> IngestionRecord | None:
        self.get_engine(provider_name)
        return self._repository.get_current_ingestion_record(provider_name)

    def trigger(self, provider_name: str) -> bool:
        """
        Make the provider's next tick end its rest or backoff period.
        """

        self.get_engine(provider_name)
        triggered = self._repository.trigger_next_provider_action(provider_name)
        logger.info("Admin trigger provider=%s triggered=%s", provider_name, triggered)
        return triggered

    def cancel(self, provider_name: str) -> uuid.UUID | None:
        """
        Schedule the active ingestion for cancellation; the next tick restarts it.

        Returns:
            The canceled ingestion id, or None when nothing was active.
        """

        record = self.get_status(provider_name)
        if record is None:
            return None
        self._repository.set_provider_canceling(record.ingestion_id, ADMIN_CANCEL_REASON)
        logger.info("Admin cancel provider=%s ingestion_id=%s", provider_name, record.ingestion_id)
        return record.ingestion_id

    def purge(self, provider_name: str) -> ProviderPurgeSummary:
        self.get_engine(provider_name)
        summary = self._repository.purge_and_reset_provider(provider_name)
        logger.warning(
            "Admin purge provider=%s ingestions=%s marks=%s mark_entities=%s",
            provider_name,
            summary.ingestions,
            summary.marks,
            summary.mark_entities,
        )
        return summary

    def get_marks(self, provider_name: str) -> tuple[IngestionRecord | None, list[IngestionMark]]:
        record = self.get_status(provider_name)
        if record is None:
            return None, []
        return record, self._repository.get_all_marks(record.ingestion_id)


def build_incremental_ingestion_service() -> IncrementalIngestionService:
    """
    Build engines for every source listed in ``INVENTORY_SOURCES``.
    """

    from db.session import get_session_factory

    session_factory = get_session_factory()
    lifecycle = get_incremental_ingestion_settings()
    http_settings = get_external_http_settings()
    inventory = get_inventory_source_settings()
    repository = IncrementalIngestionRepository(session_factory, burst_lease=lifecycle.burst_lease)

    engines: list[IncrementalIngestionEngine] = []
    for source in inventory.sources:
        connector = PagedInventoryConnector(
            source=source,
            http_settings=http_settings,
            page_size=inventory.page_size,
            bearer_token=inventory.bearer_token,
        )
        engines.append(
            IncrementalIngestionEngine(
                provider=connector,
                manager=repository,
                connection=CatalogEntityConnection(session_factory, provider_name=source.name),
                rest_length=lifecycle.rest_length,
                backoff=lifecycle.backoff,
            )
        )
    if not engines:
        logger.warning("No inventory sources configured; set INVENTORY_SOURCES to enable ingestion")
    return IncrementalIngestionService(repository=repository, engines=engines)


@lru_cache(maxsize=1)
def get_incremental_ingestion_service() -> IncrementalIngestionService:
    return build_incremental_ingestion_service()
