"""
incremental/burst.py

Burst execution: one bounded pass over a provider's pages.

Every page is checkpointed as a mark before its delta reaches the target
store, so the next burst resumes from the last persisted mark's cursor.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any

from incremental.base import (
    DeferredEntity,
    EntityDelta,
    EntityIteratorResult,
    EntityProviderConnection,
    IncrementalEntityProvider,
    IngestionMark,
    IngestionStateStore,
    RemovedEntity,
    tag_with_provider,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BurstStart:
    cursor: Any
    sequence: int


class BurstExecutor:
    """
    Pages through a provider, persisting a mark and applying a delta per page.
    """

    def __init__(
        self,
        *,
        provider: IncrementalEntityProvider,
        manager: IngestionStateStore,
        connection: EntityProviderConnection,
    ) -> None:
        self._provider = provider
        self._manager = manager
        self._connection = connection

    def run_burst(self, ingestion_id: uuid.UUID, signal: threading.Event) -> bool:
        """
        Run one burst for ``ingestion_id``.

        The cancellation signal is only checked between page fetches; an
        in-flight fetch always completes or fails on its own.

        Returns:
            True when the provider reported its final page.

        Raises:
            Whatever the provider, the state store or the connection raised.
        """

        start = self._resume_point(ingestion_id)
        started_at = time.perf_counter()
        pages = 0
        done = False

        logger.info("incremental-engine: Ingestion '%s' burst initiated", ingestion_id)

        def _burst(context: Any) -> None:
            nonlocal pages, done
            cursor = start.cursor
            sequence = start.sequence
            while True:
                result: EntityIteratorResult = self._provider.next(context, cursor)
                pages += 1
                done = result.done
                self.mark(
                    ingestion_id,
                    sequence=sequence,
                    entities=result.entities,
                    done=result.done,
                    cursor=result.cursor,
                )
                if result.done or signal.is_set():
                    return
                cursor = result.cursor
                sequence += 1

        self._provider.around(_burst)

        elapsed_ms = round((time.perf_counter() - started_at) * 1000)
        logger.info(
            "incremental-engine: Ingestion '%s' burst complete. (%d batches in %dms)",
            ingestion_id,
            pages,
            elapsed_ms,
        )
        return done

    def mark(
        self,
        ingestion_id: uuid.UUID,
        *,
        sequence: int,
        entities: list[DeferredEntity],
        done: bool,
        cursor: Any = None,
    ) -> None:
        """
        Persist one page as a mark and apply its delta to the target store.
        """

        logger.debug(
            "incremental-engine: Ingestion '%s': MARK %d entities, cursor: %s, done: %s",
            ingestion_id,
            len(entities),
            _describe_cursor(cursor),
            done,
        )
        mark_id = uuid.uuid4()
        self._manager.create_mark(
            IngestionMark(
                id=mark_id,
                ingestion_id=ingestion_id,
                sequence=sequence,
                cursor=cursor,
            )
        )
        if entities:
            self._manager.create_mark_entities(mark_id, entities)

        provider_name = self._provider.get_provider_name()
        added = [tag_with_provider(entity, provider_name) for entity in entities]

        # Removals for the full cycle are reconciled once the rest period completes.
        removed: list[RemovedEntity] = (
            [] if done else self._manager.compute_removed(provider_name, ingestion_id)
        )

        self._connection.apply_mutation(EntityDelta(added=added, removed=removed))

    def _resume_point(self, ingestion_id: uuid.UUID) -> BurstStart:
        last_mark = self._manager.get_last_mark(ingestion_id)
        if last_mark is None:
            return BurstStart(cursor=None, sequence=0)
        return BurstStart(cursor=last_mark.cursor, sequence=last_mark.sequence + 1)


def _describe_cursor(cursor: Any) -> str:
    try:
        return json.dumps(cursor, default=str)
    except (TypeError, ValueError):
        return repr(cursor)
