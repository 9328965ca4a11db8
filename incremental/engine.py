"""
incremental/engine.py

Lifecycle state machine for one incremental entity provider.

Each call to ``tick`` reads the provider's persisted ingestion record and
performs exactly one transition:

    rest     -> (rest period over)    complete, a fresh ingestion follows
    ingest   -> burst                 rest | ingest (interstitial)
                                      cancel (cancellation) | backoff (failure)
    backoff  -> (backoff over)        ingest
    cancel   ->                       canceled, a fresh ingestion follows

All state lives in the ``IngestionStateStore``. The engine keeps nothing
between ticks, so any number of processes can drive the same provider: the
store hands the burst of an ingestion to one claimant at a time, and a tick
that loses the claim does nothing.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone

from incremental.backoff import backoff_delay, normalize_backoff
from incremental.base import (
    EntityProviderConnection,
    IncrementalEntityProvider,
    IngestionRecord,
    IngestionStateStore,
    NextAction,
)
from incremental.burst import BurstExecutor
from incremental.errors import IngestionCancelledError

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 700


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_error(error: BaseException | str, limit: int = MAX_ERROR_LENGTH) -> str:
    """
    Render an error for logs and persisted state, capped at ``limit`` chars.
    """

    text = error if isinstance(error, str) else f"{type(error).__name__}: {error}"
    return text[:limit]


class IncrementalIngestionEngine:
    """
    Decides and performs the next lifecycle action for one provider per tick.
    """

    def __init__(
        self,
        *,
        provider: IncrementalEntityProvider,
        manager: IngestionStateStore,
        connection: EntityProviderConnection,
        rest_length: timedelta,
        backoff: Sequence[timedelta] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._provider = provider
        self._manager = manager
        self.rest_length = rest_length
        self.backoff = normalize_backoff(backoff)
        self._clock = clock or _utcnow
        self._burst = BurstExecutor(
            provider=provider,
            manager=manager,
            connection=connection,
        )

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    def tick(self, signal: threading.Event) -> None:
        """
        Evaluate one lifecycle transition.

        Unexpected errors are logged and re-raised so the caller's scheduler
        can react to them.
        """

        logger.debug("incremental-engine: Begin tick provider=%s", self.provider_name)
        try:
            self.handle_next_action(signal)
        except Exception as exc:
            logger.exception(
                "incremental-engine: Tick failed provider=%s error=%s",
                self.provider_name,
                truncate_error(exc),
            )
            raise
        finally:
            logger.debug("incremental-engine: End tick provider=%s", self.provider_name)

    def handle_next_action(self, signal: threading.Event) -> None:
        record = self.get_current_action()
        if record is None:
            logger.error(
                "incremental-engine: Engine tried to create duplicate ingestion record "
                "for provider '%s'.",
                self.provider_name,
            )
            return

        ingestion_id = record.ingestion_id
        next_action = record.next_action

        if next_action == NextAction.REST:
            self._handle_rest(record)
        elif next_action == NextAction.INGEST:
            self._handle_ingest(record, signal)
        elif next_action == NextAction.BACKOFF:
            self._handle_backoff(record)
        elif next_action == NextAction.CANCEL:
            logger.info(
                "incremental-engine: Ingestion '%s' canceling, will restart",
                ingestion_id,
            )
            self._manager.set_provider_canceled(ingestion_id)
        else:
            logger.error(
                "incremental-engine: Ingestion '%s' received unknown action '%s'",
                ingestion_id,
                next_action,
            )

    def get_current_action(self) -> IngestionRecord | None:
        """
        Return the active ingestion record, creating one when none exists.
        """

        provider_name = self.provider_name
        record = self._manager.get_current_ingestion_record(provider_name)
        if record is not None:
            logger.info("incremental-engine: Ingestion record found: '%s'", record.ingestion_id)
            return record

        created = self._manager.create_provider_ingestion_record(provider_name)
        if created is not None:
            logger.info(
                "incremental-engine: Ingestion record created: '%s'",
                created.ingestion_id,
            )
        return created

    def ingest_one_burst(self, ingestion_id: uuid.UUID, signal: threading.Event) -> bool:
        return self._burst.run_burst(ingestion_id, signal)

    def _handle_rest(self, record: IngestionRecord) -> None:
        ingestion_id = record.ingestion_id
        if self._clock() > record.next_action_at:
            self._manager.clear_finished_ingestions(self.provider_name)
            logger.info(
                "incremental-engine: Ingestion '%s' rest period complete. "
                "Ingestion will start again",
                ingestion_id,
            )
            self._manager.set_provider_complete(ingestion_id)
        else:
            logger.info(
                "incremental-engine: Ingestion '%s' rest period continuing",
                ingestion_id,
            )

    def _handle_ingest(self, record: IngestionRecord, signal: threading.Event) -> None:
        ingestion_id = record.ingestion_id
        try:
            if not self._manager.set_provider_bursting(ingestion_id):
                logger.info(
                    "incremental-engine: Ingestion '%s' burst already claimed elsewhere, skipping",
                    ingestion_id,
                )
                return
            done = self.ingest_one_burst(ingestion_id, signal)
            if done:
                logger.info(
                    "incremental-engine: Ingestion '%s' complete, transitioning to rest "
                    "period of %s",
                    ingestion_id,
                    self.rest_length,
                )
                self._manager.set_provider_resting(ingestion_id, self.rest_length)
            else:
                self._manager.set_provider_interstitial(ingestion_id)
                logger.info("incremental-engine: Ingestion '%s' continuing", ingestion_id)
        except IngestionCancelledError as exc:
            logger.info("incremental-engine: Ingestion '%s' canceled", ingestion_id)
            self._manager.set_provider_canceling(ingestion_id, exc.reason)
        except Exception as exc:
            delay = backoff_delay(record.attempts, self.backoff)
            logger.error(
                "incremental-engine: Ingestion '%s' threw an error during ingestion burst. "
                "Ingestion will backoff for %s (%s)",
                ingestion_id,
                delay,
                truncate_error(exc),
                exc_info=exc,
            )
            self._manager.set_provider_backoff(ingestion_id, record.attempts, exc, delay)

    def _handle_backoff(self, record: IngestionRecord) -> None:
        ingestion_id = record.ingestion_id
        if self._clock() > record.next_action_at:
            logger.info(
                "incremental-engine: Ingestion '%s' backoff complete, will attempt to resume",
                ingestion_id,
            )
            self._manager.set_provider_ingesting(ingestion_id)
        else:
            logger.info(
                "incremental-engine: Ingestion '%s' backoff continuing",
                ingestion_id,
            )
