"""
Incremental ingestion engine: lifecycle state machine and burst execution.
"""

from incremental.backoff import DEFAULT_BACKOFF, backoff_delay
from incremental.base import (
    INCREMENTAL_PROVIDER_ANNOTATION,
    DeferredEntity,
    EntityDelta,
    EntityIteratorResult,
    EntityProviderConnection,
    IncrementalEntityProvider,
    IngestionMark,
    IngestionRecord,
    IngestionStateStore,
    IngestionStatus,
    NextAction,
    RemovedEntity,
    stringify_entity_ref,
)
from incremental.burst import BurstExecutor
from incremental.engine import IncrementalIngestionEngine
from incremental.errors import IncrementalIngestionError, IngestionCancelledError

__all__ = [
    "BurstExecutor",
    "DEFAULT_BACKOFF",
    "DeferredEntity",
    "EntityDelta",
    "EntityIteratorResult",
    "EntityProviderConnection",
    "INCREMENTAL_PROVIDER_ANNOTATION",
    "IncrementalEntityProvider",
    "IncrementalIngestionEngine",
    "IncrementalIngestionError",
    "IngestionCancelledError",
    "IngestionMark",
    "IngestionRecord",
    "IngestionStateStore",
    "IngestionStatus",
    "NextAction",
    "RemovedEntity",
    "backoff_delay",
    "stringify_entity_ref",
]
