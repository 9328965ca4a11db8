"""
db/repositories/incremental_ingestion_repository.py

PostgreSQL-backed state store for incremental ingestion.

Every public method runs in its own short transaction so each lifecycle
transition commits atomically. Exactly one active ingestion per provider is
enforced by the ``(provider_name, completion_ticket)`` unique constraint:
active rows carry the ``open`` ticket, closed rows a random UUID.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import Session, aliased

from db.base import utcnow
from db.models.ingestion import (
    OPEN_COMPLETION_TICKET,
    Ingestion,
    IngestionMarkEntity,
    IngestionMarkRecord,
)
from db.repositories.types import IngestionHealth, ProviderPurgeSummary
from incremental.base import (
    DeferredEntity,
    IngestionMark,
    IngestionRecord,
    IngestionStatus,
    NextAction,
    RemovedEntity,
)

_ACTIVE_CONSTRAINT = "uq_ingestions_provider_completion_ticket"
_MAX_ERROR_LENGTH = 700
_DEFAULT_BATCH_SIZE = 500
_DEFAULT_BURST_LEASE = timedelta(minutes=10)


def _closed_ticket() -> str:
    return str(uuid.uuid4())


class IncrementalIngestionRepository:
    """
    Persists ingestion lifecycle state, progress marks and mark entities.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        burst_lease: timedelta = _DEFAULT_BURST_LEASE,
    ) -> None:
        self._session_factory = session_factory
        self._batch_size = max(1, batch_size)
        self._burst_lease = burst_lease

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Ingestion records
    # ------------------------------------------------------------------

    def get_current_ingestion_record(self, provider_name: str) -> IngestionRecord | None:
        with self._transaction() as session:
            row = session.scalars(
                select(Ingestion).where(
                    Ingestion.provider_name == provider_name,
                    Ingestion.completion_ticket == OPEN_COMPLETION_TICKET,
                )
            ).first()
            return _to_record(row) if row is not None else None

    def create_provider_ingestion_record(self, provider_name: str) -> IngestionRecord | None:
        """
        Insert a fresh active ingestion for ``provider_name``.

        Returns None when another active record already exists for the
        provider (for example when a concurrent process created it first).
        """

        now = utcnow()
        ingestion_id = uuid.uuid4()
        stmt = (
            insert(Ingestion)
            .values(
                id=ingestion_id,
                provider_name=provider_name,
                status=IngestionStatus.BURSTING,
                next_action=NextAction.INGEST,
                next_action_at=now,
                attempts=0,
                completion_ticket=OPEN_COMPLETION_TICKET,
            )
            .on_conflict_do_nothing(constraint=_ACTIVE_CONSTRAINT)
            .returning(Ingestion.id)
        )
        with self._transaction() as session:
            inserted = session.execute(stmt).scalar_one_or_none()
        if inserted is None:
            return None
        return IngestionRecord(
            ingestion_id=inserted,
            provider_name=provider_name,
            next_action=NextAction.INGEST,
            next_action_at=now,
            attempts=0,
            status=IngestionStatus.BURSTING,
        )

    def set_provider_ingesting(self, ingestion_id: uuid.UUID) -> None:
        self._update(ingestion_id, next_action=NextAction.INGEST)

    def set_provider_bursting(self, ingestion_id: uuid.UUID) -> bool:
        """
        Claim the burst for ``ingestion_id``.

        The row is only claimed while its next action is ``ingest`` and no
        unexpired burst lease is held on it. Concurrent claimers block on the
        row lock and re-check the condition, so exactly one of them wins.

        Returns:
            True when this caller now holds the burst lease.
        """

        now = utcnow()
        with self._transaction() as session:
            result = session.execute(
                update(Ingestion)
                .where(
                    Ingestion.id == ingestion_id,
                    Ingestion.next_action == NextAction.INGEST,
                    or_(
                        Ingestion.burst_lease_expires_at.is_(None),
                        Ingestion.burst_lease_expires_at < now,
                    ),
                )
                .values(
                    status=IngestionStatus.BURSTING,
                    burst_lease_expires_at=now + self._burst_lease,
                )
            )
            return bool(result.rowcount)

    def set_provider_interstitial(self, ingestion_id: uuid.UUID) -> None:
        self._update(
            ingestion_id,
            status=IngestionStatus.INTERSTITIAL,
            attempts=0,
            burst_lease_expires_at=None,
        )

    def set_provider_resting(self, ingestion_id: uuid.UUID, rest_length: timedelta) -> None:
        now = utcnow()
        self._update(
            ingestion_id,
            next_action=NextAction.REST,
            next_action_at=now + rest_length,
            ingestion_completed_at=now,
            status=IngestionStatus.RESTING,
            attempts=0,
            burst_lease_expires_at=None,
        )

    def set_provider_backoff(
        self,
        ingestion_id: uuid.UUID,
        attempts: int,
        error: BaseException,
        backoff_length: timedelta,
    ) -> None:
        self._update(
            ingestion_id,
            next_action=NextAction.BACKOFF,
            attempts=attempts + 1,
            last_error=f"{type(error).__name__}: {error}"[:_MAX_ERROR_LENGTH],
            next_action_at=utcnow() + backoff_length,
            status=IngestionStatus.BACKING_OFF,
            burst_lease_expires_at=None,
        )

    def set_provider_canceling(self, ingestion_id: uuid.UUID, reason: str) -> None:
        self._update(
            ingestion_id,
            next_action=NextAction.CANCEL,
            last_error=reason[:_MAX_ERROR_LENGTH],
            next_action_at=utcnow(),
            status=IngestionStatus.CANCELING,
            burst_lease_expires_at=None,
        )

    def set_provider_canceled(self, ingestion_id: uuid.UUID) -> None:
        self._update(
            ingestion_id,
            next_action=NextAction.CANCELED,
            ingestion_completed_at=utcnow(),
            status=IngestionStatus.CANCELED,
            completion_ticket=_closed_ticket(),
        )

    def set_provider_complete(self, ingestion_id: uuid.UUID) -> None:
        self._update(
            ingestion_id,
            next_action=NextAction.DONE,
            rest_completed_at=utcnow(),
            status=IngestionStatus.COMPLETE,
            completion_ticket=_closed_ticket(),
        )

    def clear_finished_ingestions(self, provider_name: str) -> None:
        """
        Delete closed ingestions for the provider. Marks and mark entities go
        with them through ``ON DELETE CASCADE``.
        """

        with self._transaction() as session:
            session.execute(
                delete(Ingestion).where(
                    Ingestion.provider_name == provider_name,
                    Ingestion.completion_ticket != OPEN_COMPLETION_TICKET,
                )
            )

    def _update(self, ingestion_id: uuid.UUID, **values: Any) -> None:
        with self._transaction() as session:
            session.execute(update(Ingestion).where(Ingestion.id == ingestion_id).values(**values))

    # ------------------------------------------------------------------
    # Marks
    # ------------------------------------------------------------------

    def get_last_mark(self, ingestion_id: uuid.UUID) -> IngestionMark | None:
        with self._transaction() as session:
            row = session.scalars(
                select(IngestionMarkRecord)
                .where(IngestionMarkRecord.ingestion_id == ingestion_id)
                .order_by(IngestionMarkRecord.sequence.desc())
                .limit(1)
            ).first()
            return _to_mark(row) if row is not None else None

    def get_all_marks(self, ingestion_id: uuid.UUID) -> list[IngestionMark]:
        with self._transaction() as session:
            rows = session.scalars(
                select(IngestionMarkRecord)
                .where(IngestionMarkRecord.ingestion_id == ingestion_id)
                .order_by(IngestionMarkRecord.sequence.asc())
            ).all()
            return [_to_mark(row) for row in rows]

    def create_mark(self, mark: IngestionMark) -> None:
        with self._transaction() as session:
            session.add(
                IngestionMarkRecord(
                    id=mark.id,
                    ingestion_id=mark.ingestion_id,
                    sequence=mark.sequence,
                    cursor=mark.cursor,
                )
            )

    def create_mark_entities(self, mark_id: uuid.UUID, entities: Sequence[DeferredEntity]) -> None:
        if not entities:
            return
        payloads = [
            {"id": uuid.uuid4(), "ingestion_mark_id": mark_id, "ref": entity.entity_ref}
            for entity in entities
        ]
        with self._transaction() as session:
            for start in range(0, len(payloads), self._batch_size):
                session.execute(insert(IngestionMarkEntity), payloads[start : start + self._batch_size])

    def compute_removed(self, provider_name: str, ingestion_id: uuid.UUID) -> list[RemovedEntity]:
        """
        Refs recorded by the provider's latest completed ingestion that the
        current ingestion has not recorded yet.
        """

        with self._transaction() as session:
            previous_id = session.scalars(
                select(Ingestion.id)
                .where(
                    Ingestion.provider_name == provider_name,
                    Ingestion.status == IngestionStatus.COMPLETE,
                    Ingestion.id != ingestion_id,
                )
                .order_by(Ingestion.created_at.desc())
                .limit(1)
            ).first()
            if previous_id is None:
                return []

            # Aliased so the subquery is not correlated with the outer query.
            current_entity = aliased(IngestionMarkEntity)
            current_mark = aliased(IngestionMarkRecord)
            current_refs = (
                select(current_entity.ref)
                .join(current_mark, current_entity.ingestion_mark_id == current_mark.id)
                .where(current_mark.ingestion_id == ingestion_id)
            )
            stale_refs = session.scalars(
                select(IngestionMarkEntity.ref)
                .join(IngestionMarkRecord, IngestionMarkEntity.ingestion_mark_id == IngestionMarkRecord.id)
                .where(
                    IngestionMarkRecord.ingestion_id == previous_id,
                    IngestionMarkEntity.ref.not_in(current_refs),
                )
                .distinct()
                .order_by(IngestionMarkEntity.ref)
            ).all()
            return [RemovedEntity(entity_ref=ref) for ref in stale_refs]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_providers(self) -> list[str]:
        with self._transaction() as session:
            rows = session.scalars(
                select(Ingestion.provider_name).distinct().order_by(Ingestion.provider_name)
            ).all()
            return list(rows)

    def health_check(self) -> IngestionHealth:
        with self._transaction() as session:
            rows = session.scalars(
                select(Ingestion.provider_name)
                .where(Ingestion.completion_ticket == OPEN_COMPLETION_TICKET)
                .group_by(Ingestion.provider_name)
                .having(func.count(Ingestion.id) > 1)
                .order_by(Ingestion.provider_name)
            ).all()
            return IngestionHealth(duplicate_providers=list(rows))

    def trigger_next_provider_action(self, provider_name: str) -> bool:
        """
        End the current rest or backoff period on the next tick.

        Returns:
            True when an active ingestion was updated.
        """

        with self._transaction() as session:
            result = session.execute(
                update(Ingestion)
                .where(
                    Ingestion.provider_name == provider_name,
                    Ingestion.completion_ticket == OPEN_COMPLETION_TICKET,
                )
                .values(next_action_at=utcnow())
            )
            return bool(result.rowcount)

    def purge_and_reset_provider(self, provider_name: str) -> ProviderPurgeSummary:
        """
        Delete every ingestion, mark and mark entity owned by the provider.
        The next tick starts a fresh ingestion.
        """

        with self._transaction() as session:
            ingestion_ids = select(Ingestion.id).where(Ingestion.provider_name == provider_name)
            mark_ids = select(IngestionMarkRecord.id).where(
                IngestionMarkRecord.ingestion_id.in_(ingestion_ids)
            )
            mark_entities = session.execute(
                delete(IngestionMarkEntity).where(IngestionMarkEntity.ingestion_mark_id.in_(mark_ids))
            ).rowcount
            marks = session.execute(
                delete(IngestionMarkRecord).where(IngestionMarkRecord.ingestion_id.in_(ingestion_ids))
            ).rowcount
            ingestions = session.execute(
                delete(Ingestion).where(Ingestion.provider_name == provider_name)
            ).rowcount
        return ProviderPurgeSummary(
            provider_name=provider_name,
            ingestions=ingestions or 0,
            marks=marks or 0,
            mark_entities=mark_entities or 0,
        )


def _to_record(row: Ingestion) -> IngestionRecord:
    return IngestionRecord(
        ingestion_id=row.id,
        provider_name=row.provider_name,
        next_action=row.next_action,
        next_action_at=row.next_action_at,
        attempts=row.attempts,
        status=row.status,
        last_error=row.last_error,
    )


def _to_mark(row: IngestionMarkRecord) -> IngestionMark:
    return IngestionMark(
        id=row.id,
        ingestion_id=row.ingestion_id,
        sequence=row.sequence,
        cursor=row.cursor,
    )
