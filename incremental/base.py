"""
incremental/base.py

Types and collaborator contracts for incremental ingestion.

The engine only talks to three collaborators:

  * an ``IncrementalEntityProvider`` that knows how to page through one
    external inventory,
  * an ``IngestionStateStore`` that persists ingestion lifecycle state and
    progress marks with atomic transitions,
  * an ``EntityProviderConnection`` that applies entity deltas to the
    target store.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol, TypeVar

T = TypeVar("T")

INCREMENTAL_PROVIDER_ANNOTATION = "ingestion.io/incremental-provider-name"
DEFAULT_NAMESPACE = "default"


class IngestionStatus:
    BURSTING = "bursting"
    INTERSTITIAL = "interstitial"
    RESTING = "resting"
    BACKING_OFF = "backing off"
    CANCELING = "canceling"
    COMPLETE = "complete"
    CANCELED = "canceled"


class NextAction:
    INGEST = "ingest"
    REST = "rest"
    BACKOFF = "backoff"
    CANCEL = "cancel"
    DONE = "nothing (done)"
    CANCELED = "nothing (canceled)"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeferredEntity:
    """
    One entity emitted by a provider, not yet written to the target store.
    """

    entity: dict[str, Any]
    location_key: str | None = None

    @property
    def entity_ref(self) -> str:
        return stringify_entity_ref(self.entity)


@dataclass(frozen=True)
class RemovedEntity:
    entity_ref: str


@dataclass(frozen=True)
class EntityDelta:
    """
    Additive/subtractive change set applied to the target store for one mark.
    """

    added: list[DeferredEntity] = field(default_factory=list)
    removed: list[RemovedEntity] = field(default_factory=list)
    type: str = "delta"


def stringify_entity_ref(entity: dict[str, Any]) -> str:
    """
    Build the ``kind:namespace/name`` reference for an entity descriptor.

    Raises:
        ValueError: If the entity has no kind or no metadata.name.
    """

    kind = str(entity.get("kind") or "").strip()
    metadata = entity.get("metadata") or {}
    name = str(metadata.get("name") or "").strip()
    if not kind or not name:
        raise ValueError("Entity must define 'kind' and 'metadata.name'.")
    namespace = str(metadata.get("namespace") or DEFAULT_NAMESPACE).strip()
    return f"{kind}:{namespace}/{name}".lower()


def tag_with_provider(deferred: DeferredEntity, provider_name: str) -> DeferredEntity:
    """
    Return a copy of ``deferred`` annotated with its owning provider.
    The provider's own objects are left untouched.
    """

    entity = copy.deepcopy(deferred.entity)
    metadata = entity.setdefault("metadata", {})
    annotations = dict(metadata.get("annotations") or {})
    annotations[INCREMENTAL_PROVIDER_ANNOTATION] = provider_name
    metadata["annotations"] = annotations
    return DeferredEntity(entity=entity, location_key=deferred.location_key)


# ---------------------------------------------------------------------------
# Lifecycle records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IngestionRecord:
    """
    Snapshot of the active ingestion row for one provider.
    """

    ingestion_id: uuid.UUID
    provider_name: str
    next_action: str
    next_action_at: datetime
    attempts: int = 0
    status: str | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class IngestionMark:
    """
    Durable checkpoint for one processed page.
    """

    id: uuid.UUID
    ingestion_id: uuid.UUID
    sequence: int
    cursor: Any = None


@dataclass(frozen=True)
class EntityIteratorResult:
    """
    One page returned by ``IncrementalEntityProvider.next``.
    """

    entities: list[DeferredEntity]
    cursor: Any = None
    done: bool = False


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


class IncrementalEntityProvider(Protocol):
    def get_provider_name(self) -> str:
        ...

    def around(self, burst: Callable[[Any], T]) -> T:
        """
        Acquire a fetch context, run ``burst(context)`` once and release the
        context on every exit path.
        """
        ...

    def next(self, context: Any, cursor: Any = None) -> EntityIteratorResult:
        ...


class IngestionStateStore(Protocol):
    def get_current_ingestion_record(self, provider_name: str) -> IngestionRecord | None:
        ...

    def create_provider_ingestion_record(self, provider_name: str) -> IngestionRecord | None:
        ...

    def set_provider_ingesting(self, ingestion_id: uuid.UUID) -> None:
        ...

    def set_provider_bursting(self, ingestion_id: uuid.UUID) -> bool:
        """
        Claim the burst for an ingestion whose next action is ``ingest``.
        Returns False when another worker already holds it.
        """
        ...

    def set_provider_interstitial(self, ingestion_id: uuid.UUID) -> None:
        ...

    def set_provider_resting(self, ingestion_id: uuid.UUID, rest_length: timedelta) -> None:
        ...

    def set_provider_backoff(
        self,
        ingestion_id: uuid.UUID,
        attempts: int,
        error: BaseException,
        backoff_length: timedelta,
    ) -> None:
        ...

    def set_provider_canceling(self, ingestion_id: uuid.UUID, reason: str) -> None:
        ...

    def set_provider_canceled(self, ingestion_id: uuid.UUID) -> None:
        ...

    def set_provider_complete(self, ingestion_id: uuid.UUID) -> None:
        ...

    def clear_finished_ingestions(self, provider_name: str) -> None:
        ...

    def get_last_mark(self, ingestion_id: uuid.UUID) -> IngestionMark | None:
        ...

    def create_mark(self, mark: IngestionMark) -> None:
        ...

    def create_mark_entities(self, mark_id: uuid.UUID, entities: Sequence[DeferredEntity]) -> None:
        ...

    def compute_removed(self, provider_name: str, ingestion_id: uuid.UUID) -> list[RemovedEntity]:
        ...


class EntityProviderConnection(Protocol):
    def apply_mutation(self, mutation: EntityDelta) -> None:
        ...
