"""
tests/test_burst_executor.py

Unit tests for BurstExecutor against in-memory collaborators.

Coverage
--------
- Marks and deltas per page, contiguous sequences
- Resume from the last persisted mark
- Cancellation signal observed between pages only
- Empty pages still produce a mark
- Provider context released on failure
- Removal computation skipped on the final page
"""

from __future__ import annotations

import threading
import uuid

import pytest

from incremental.base import INCREMENTAL_PROVIDER_ANNOTATION, IngestionMark, RemovedEntity
from incremental.burst import BurstExecutor
from tests.fakes import (
    FakeProvider,
    InMemoryStateStore,
    MutableClock,
    RecordingConnection,
    deferred,
)


@pytest.fixture()
def store() -> InMemoryStateStore:
    return InMemoryStateStore(MutableClock())


@pytest.fixture()
def connection() -> RecordingConnection:
    return RecordingConnection()


def _start(store: InMemoryStateStore, provider: FakeProvider) -> uuid.UUID:
    record = store.create_provider_ingestion_record(provider.get_provider_name())
    assert record is not None
    return record.ingestion_id


# ---------------------------------------------------------------------------
# Page loop
# ---------------------------------------------------------------------------


class TestRunBurst:
    def test_runs_to_final_page(self, store: InMemoryStateStore, connection: RecordingConnection) -> None:
        provider = FakeProvider([[deferred("a")], [deferred("b")], [deferred("c")]])
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        done = executor.run_burst(ingestion_id, threading.Event())

        assert done is True
        assert [mark.sequence for mark in store.marks_for(ingestion_id)] == [0, 1, 2]
        assert [mark.cursor for mark in store.marks_for(ingestion_id)] == [1, 2, None]
        assert provider.requested_cursors == [None, 1, 2]
        assert len(connection.mutations) == 3

    def test_signal_stops_after_current_page(
        self, store: InMemoryStateStore, connection: RecordingConnection
    ) -> None:
        signal = threading.Event()
        provider = FakeProvider(
            [[deferred("a")], [deferred("b")], [deferred("c")]],
            after_page=lambda index: signal.set(),
        )
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        done = executor.run_burst(ingestion_id, signal)

        assert done is False
        assert provider.requested_cursors == [None]
        assert [mark.sequence for mark in store.marks_for(ingestion_id)] == [0]
        assert len(connection.mutations) == 1

    def test_presignalled_burst_still_fetches_one_page(
        self, store: InMemoryStateStore, connection: RecordingConnection
    ) -> None:
        signal = threading.Event()
        signal.set()
        provider = FakeProvider([[deferred("a")], [deferred("b")]])
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        assert executor.run_burst(ingestion_id, signal) is False
        assert len(store.marks_for(ingestion_id)) == 1

    def test_resumes_from_last_mark(self, store: InMemoryStateStore, connection: RecordingConnection) -> None:
        provider = FakeProvider([[deferred("a")], [deferred("b")], [deferred("c")], [deferred("d")]])
        ingestion_id = _start(store, provider)
        store.create_mark(IngestionMark(id=uuid.uuid4(), ingestion_id=ingestion_id, sequence=0, cursor=1))
        store.create_mark(IngestionMark(id=uuid.uuid4(), ingestion_id=ingestion_id, sequence=1, cursor=2))
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        done = executor.run_burst(ingestion_id, threading.Event())

        assert done is True
        assert provider.requested_cursors == [2, 3]
        assert [mark.sequence for mark in store.marks_for(ingestion_id)] == [0, 1, 2, 3]

    def test_empty_page_still_marks(self, store: InMemoryStateStore, connection: RecordingConnection) -> None:
        provider = FakeProvider([[], [deferred("a")]])
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        executor.run_burst(ingestion_id, threading.Event())

        first_mark = store.marks_for(ingestion_id)[0]
        assert first_mark.sequence == 0
        assert first_mark.id not in store.mark_refs
        assert connection.mutations[0].added == []

    def test_context_released_when_provider_fails(
        self, store: InMemoryStateStore, connection: RecordingConnection
    ) -> None:
        provider = FakeProvider(
            [[deferred("a")], [deferred("b")]],
            failures={1: RuntimeError("inventory down")},
        )
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        with pytest.raises(RuntimeError, match="inventory down"):
            executor.run_burst(ingestion_id, threading.Event())

        assert provider.opened == 1
        assert provider.closed == 1
        assert [mark.sequence for mark in store.marks_for(ingestion_id)] == [0]


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------


class TestMark:
    def test_added_entities_are_tagged_copies(
        self, store: InMemoryStateStore, connection: RecordingConnection
    ) -> None:
        page = [deferred("a")]
        provider = FakeProvider([page], name="catalog-x")
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        executor.run_burst(ingestion_id, threading.Event())

        added = connection.mutations[0].added[0]
        assert added.entity["metadata"]["annotations"][INCREMENTAL_PROVIDER_ANNOTATION] == "catalog-x"
        assert "annotations" not in page[0].entity["metadata"]

    def test_mark_entities_recorded_before_delta(
        self, store: InMemoryStateStore, connection: RecordingConnection
    ) -> None:
        provider = FakeProvider([[deferred("a"), deferred("b")]])
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        executor.run_burst(ingestion_id, threading.Event())

        mark = store.marks_for(ingestion_id)[0]
        assert store.mark_refs[mark.id] == ["component:default/a", "component:default/b"]
        assert store.calls.index("create_mark") < store.calls.index("create_mark_entities")

    def test_final_page_has_no_removals(self, connection: RecordingConnection) -> None:
        class RemovingStore(InMemoryStateStore):
            def compute_removed(self, provider_name, ingestion_id):
                super().compute_removed(provider_name, ingestion_id)
                return [RemovedEntity(entity_ref="component:default/gone")]

        store = RemovingStore(MutableClock())
        provider = FakeProvider([[deferred("a")], [deferred("b")]])
        ingestion_id = _start(store, provider)
        executor = BurstExecutor(provider=provider, manager=store, connection=connection)

        executor.run_burst(ingestion_id, threading.Event())

        assert connection.mutations[0].removed == [RemovedEntity(entity_ref="component:default/gone")]
        assert connection.mutations[1].removed == []
        assert store.calls.count("compute_removed") == 1

    def test_delta_type(self, store: InMemoryStateStore, connection: RecordingConnection) -> None:
        provider = FakeProvider([[deferred("a")]])
        ingestion_id = _start(store, provider)
        BurstExecutor(provider=provider, manager=store, connection=connection).run_burst(
            ingestion_id, threading.Event()
        )
        assert connection.mutations[0].type == "delta"
