"""
db/repositories/catalog_entity_repository.py

Target store connection that applies entity deltas to ``catalog_entities``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session

from db.models.catalog_entity import CatalogEntityRecord
from incremental.base import EntityDelta

logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE = 500


class CatalogEntityConnection:
    """
    Applies one provider's deltas to the target store.

    Added entities are upserted by ref. Removals only touch rows owned by
    this connection's provider. Both halves of a delta commit together.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        provider_name: str,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> None:
        self._session_factory = session_factory
        self.provider_name = provider_name
        self._batch_size = max(1, batch_size)

    def apply_mutation(self, mutation: EntityDelta) -> None:
        if mutation.type != "delta":
            raise ValueError(f"Unsupported mutation type '{mutation.type}'.")

        # Last occurrence of a ref within one page wins.
        payloads: dict[str, dict[str, Any]] = {}
        for deferred in mutation.added:
            ref = deferred.entity_ref
            payloads[ref] = {
                "ref": ref,
                "provider_name": self.provider_name,
                "location_key": deferred.location_key,
                "entity": deferred.entity,
            }
        removed_refs = [removed.entity_ref for removed in mutation.removed if removed.entity_ref not in payloads]
        rows = list(payloads.values())

        session = self._session_factory()
        try:
            with session.begin():
                for start in range(0, len(rows), self._batch_size):
                    chunk = rows[start : start + self._batch_size]
                    stmt = insert(CatalogEntityRecord).values(chunk)
                    session.execute(
                        stmt.on_conflict_do_update(
                            index_elements=[CatalogEntityRecord.ref],
                            set_={
                                "provider_name": stmt.excluded.provider_name,
                                "location_key": stmt.excluded.location_key,
                                "entity": stmt.excluded.entity,
                                "updated_at": func.now(),
                            },
                        )
                    )
                if removed_refs:
                    session.execute(
                        delete(CatalogEntityRecord).where(
                            CatalogEntityRecord.provider_name == self.provider_name,
                            CatalogEntityRecord.ref.in_(removed_refs),
                        )
                    )
        finally:
            session.close()

        logger.debug(
            "Applied delta provider=%s added=%d removed=%d",
            self.provider_name,
            len(rows),
            len(removed_refs),
        )
