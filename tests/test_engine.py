"""
tests/test_engine.py

Lifecycle transitions of IncrementalIngestionEngine, one tick at a time.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta

import pytest

from incremental.base import IngestionStatus, NextAction
from incremental.engine import IncrementalIngestionEngine, truncate_error
from incremental.errors import IngestionCancelledError
from tests.fakes import (
    FakeProvider,
    InMemoryStateStore,
    MutableClock,
    RecordingConnection,
    deferred,
)

REST = timedelta(hours=24)


@pytest.fixture()
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture()
def store(clock: MutableClock) -> InMemoryStateStore:
    return InMemoryStateStore(clock)


def _engine(
    provider: FakeProvider,
    store: InMemoryStateStore,
    clock: MutableClock,
    connection: RecordingConnection | None = None,
) -> IncrementalIngestionEngine:
    return IncrementalIngestionEngine(
        provider=provider,
        manager=store,
        connection=connection or RecordingConnection(),
        rest_length=REST,
        clock=clock,
    )


def _only_record(store: InMemoryStateStore, name: str = "inventory"):
    records = store.records_for(name)
    assert len(records) == 1
    return records[0]


# ---------------------------------------------------------------------------
# ingest
# ---------------------------------------------------------------------------


class TestIngest:
    def test_first_tick_creates_record_and_bursts(self, store, clock) -> None:
        engine = _engine(FakeProvider([[deferred("a")]]), store, clock)

        engine.tick(threading.Event())

        record = _only_record(store)
        assert record.next_action == NextAction.REST
        assert record.status == IngestionStatus.RESTING
        assert record.next_action_at == clock.now + REST
        assert record.attempts == 0

    def test_unfinished_burst_goes_interstitial(self, store, clock) -> None:
        signal = threading.Event()
        provider = FakeProvider([[deferred("a")], [deferred("b")]], after_page=lambda i: signal.set())
        engine = _engine(provider, store, clock)

        engine.tick(signal)

        record = _only_record(store)
        assert record.next_action == NextAction.INGEST
        assert record.status == IngestionStatus.INTERSTITIAL

    def test_interstitial_resets_attempts(self, store, clock) -> None:
        signal = threading.Event()
        provider = FakeProvider([[deferred("a")], [deferred("b")]], after_page=lambda i: signal.set())
        engine = _engine(provider, store, clock)
        record = store.create_provider_ingestion_record("inventory")
        store.force(record.ingestion_id, attempts=2)

        engine.tick(signal)

        assert store.record(record.ingestion_id).attempts == 0

    def test_failure_schedules_backoff(self, store, clock) -> None:
        provider = FakeProvider([[deferred("a")]], failures={0: RuntimeError("inventory down")})
        engine = _engine(provider, store, clock)

        engine.tick(threading.Event())

        record = _only_record(store)
        assert record.next_action == NextAction.BACKOFF
        assert record.status == IngestionStatus.BACKING_OFF
        assert record.attempts == 1
        assert record.next_action_at == clock.now + timedelta(minutes=1)
        assert record.last_error == "RuntimeError: inventory down"

    def test_repeated_failures_escalate_backoff(self, store, clock) -> None:
        provider = FakeProvider(
            [[deferred("a")]],
            failures={0: RuntimeError("down")},
        )
        engine = _engine(provider, store, clock)
        record = store.create_provider_ingestion_record("inventory")
        store.force(record.ingestion_id, attempts=2)

        engine.tick(threading.Event())

        current = store.record(record.ingestion_id)
        assert current.attempts == 3
        assert current.next_action_at == clock.now + timedelta(minutes=30)

    def test_store_failure_during_burst_backs_off(self, store, clock) -> None:
        class FailingConnection(RecordingConnection):
            def apply_mutation(self, mutation):
                raise ConnectionError("catalog unavailable")

        engine = _engine(FakeProvider([[deferred("a")]]), store, clock, FailingConnection())

        engine.tick(threading.Event())

        record = _only_record(store)
        assert record.next_action == NextAction.BACKOFF
        assert "catalog unavailable" in record.last_error

    def test_cancellation_routes_to_cancel_without_attempt(self, store, clock) -> None:
        provider = FakeProvider(
            [[deferred("a")]],
            failures={0: IngestionCancelledError("source rotated")},
        )
        engine = _engine(provider, store, clock)

        engine.tick(threading.Event())

        record = _only_record(store)
        assert record.next_action == NextAction.CANCEL
        assert record.status == IngestionStatus.CANCELING
        assert record.last_error == "source rotated"
        assert record.attempts == 0
        assert "set_provider_backoff" not in store.calls


# ---------------------------------------------------------------------------
# rest / backoff / cancel
# ---------------------------------------------------------------------------


class TestWaitingActions:
    def test_rest_continues_until_due(self, store, clock) -> None:
        engine = _engine(FakeProvider([[deferred("a")]]), store, clock)
        engine.tick(threading.Event())
        before = _only_record(store)
        calls = len(store.calls)

        for _ in range(3):
            clock.advance(timedelta(hours=1))
            engine.tick(threading.Event())

        assert _only_record(store) == before
        assert "set_provider_complete" not in store.calls[calls:]

    def test_rest_at_exact_deadline_continues(self, store, clock) -> None:
        engine = _engine(FakeProvider([[deferred("a")]]), store, clock)
        engine.tick(threading.Event())
        clock.advance(REST)

        engine.tick(threading.Event())

        assert _only_record(store).next_action == NextAction.REST

    def test_rest_complete_closes_record(self, store, clock) -> None:
        engine = _engine(FakeProvider([[deferred("a")]]), store, clock)
        engine.tick(threading.Event())
        ingestion_id = _only_record(store).ingestion_id
        clock.advance(REST + timedelta(seconds=1))

        engine.tick(threading.Event())

        assert store.record(ingestion_id).status == IngestionStatus.COMPLETE
        assert store.record(ingestion_id).next_action == NextAction.DONE
        assert not store.is_open(ingestion_id)
        assert store.calls.index("clear_finished_ingestions") < store.calls.index("set_provider_complete")

    def test_backoff_waits_then_resumes(self, store, clock) -> None:
        provider = FakeProvider([[deferred("a")]], failures={0: RuntimeError("down")})
        engine = _engine(provider, store, clock)
        engine.tick(threading.Event())

        clock.advance(timedelta(seconds=30))
        engine.tick(threading.Event())
        assert _only_record(store).next_action == NextAction.BACKOFF

        clock.advance(timedelta(seconds=31))
        engine.tick(threading.Event())
        record = _only_record(store)
        assert record.next_action == NextAction.INGEST
        assert record.attempts == 1

        engine.tick(threading.Event())
        assert _only_record(store).next_action == NextAction.REST

    def test_cancel_closes_and_restarts(self, store, clock) -> None:
        provider = FakeProvider(
            [[deferred("a")]],
            failures={0: IngestionCancelledError()},
        )
        engine = _engine(provider, store, clock)
        engine.tick(threading.Event())
        canceled_id = _only_record(store).ingestion_id

        engine.tick(threading.Event())
        assert store.record(canceled_id).status == IngestionStatus.CANCELED
        assert store.record(canceled_id).next_action == NextAction.CANCELED
        assert not store.is_open(canceled_id)

        engine.tick(threading.Event())
        current = store.get_current_ingestion_record("inventory")
        assert current is not None
        assert current.ingestion_id != canceled_id
        assert current.next_action == NextAction.REST


# ---------------------------------------------------------------------------
# Burst claim
# ---------------------------------------------------------------------------


class TestBurstClaim:
    def test_second_worker_skips_while_burst_in_flight(self, store, clock) -> None:
        other_provider = FakeProvider([[deferred("a")], [deferred("b")], [deferred("c")]])
        other_connection = RecordingConnection()
        other = _engine(other_provider, store, clock, other_connection)
        connection = RecordingConnection()
        provider = FakeProvider(
            [[deferred("a")], [deferred("b")], [deferred("c")]],
            after_page=lambda index: other.tick(threading.Event()) if index == 0 else None,
        )
        engine = _engine(provider, store, clock, connection)

        engine.tick(threading.Event())

        assert other_provider.requested_cursors == []
        assert other_connection.mutations == []
        assert provider.requested_cursors == [None, 1, 2]
        assert len(connection.mutations) == 3
        record = _only_record(store)
        assert record.next_action == NextAction.REST
        assert record.attempts == 0
        assert record.last_error is None
        assert "set_provider_backoff" not in store.calls
        assert [mark.sequence for mark in store.marks_for(record.ingestion_id)] == [0, 1, 2]

    def test_stale_ingest_read_cannot_claim_finished_ingestion(self, store, clock) -> None:
        engine = _engine(FakeProvider([[deferred("a")]]), store, clock)
        engine.tick(threading.Event())
        record = _only_record(store)

        assert store.set_provider_bursting(record.ingestion_id) is False
        assert store.record(record.ingestion_id).next_action == NextAction.REST

    def test_expired_claim_of_crashed_worker_is_taken_over(self, store, clock) -> None:
        provider = FakeProvider([[deferred("a")]])
        engine = _engine(provider, store, clock)
        record = store.create_provider_ingestion_record("inventory")
        assert store.set_provider_bursting(record.ingestion_id) is True

        engine.tick(threading.Event())
        assert provider.requested_cursors == []
        assert store.record(record.ingestion_id).next_action == NextAction.INGEST

        clock.advance(timedelta(minutes=11))
        engine.tick(threading.Event())
        assert provider.requested_cursors == [None]
        assert store.record(record.ingestion_id).next_action == NextAction.REST
        assert store.lease_of(record.ingestion_id) is None

    def test_claim_released_between_ticks(self, store, clock) -> None:
        signal = threading.Event()
        provider = FakeProvider([[deferred("a")], [deferred("b")]], after_page=lambda i: signal.set())
        engine = _engine(provider, store, clock)

        engine.tick(signal)
        record = _only_record(store)
        assert record.status == IngestionStatus.INTERSTITIAL
        assert store.lease_of(record.ingestion_id) is None

        signal = threading.Event()
        engine.tick(signal)
        assert provider.requested_cursors == [None, 1]


# ---------------------------------------------------------------------------
# Defensive paths
# ---------------------------------------------------------------------------


class TestTick:
    def test_unknown_action_logged(self, store, clock, caplog) -> None:
        engine = _engine(FakeProvider([[deferred("a")]]), store, clock)
        record = store.create_provider_ingestion_record("inventory")
        store.force(record.ingestion_id, next_action="reindex")

        with caplog.at_level(logging.ERROR, logger="incremental.engine"):
            engine.tick(threading.Event())

        assert "unknown action 'reindex'" in caplog.text
        assert store.record(record.ingestion_id).next_action == "reindex"

    def test_duplicate_record_is_logged_not_raised(self, store, clock, caplog) -> None:
        class RacingStore(InMemoryStateStore):
            def get_current_ingestion_record(self, provider_name):
                return None

            def create_provider_ingestion_record(self, provider_name):
                return None

        engine = _engine(FakeProvider([[deferred("a")]]), RacingStore(clock), clock)

        with caplog.at_level(logging.ERROR, logger="incremental.engine"):
            engine.tick(threading.Event())

        assert "duplicate ingestion record" in caplog.text

    def test_store_read_failure_propagates(self, store, clock) -> None:
        class BrokenStore(InMemoryStateStore):
            def get_current_ingestion_record(self, provider_name):
                raise RuntimeError("db gone")

        engine = _engine(FakeProvider([[deferred("a")]]), BrokenStore(clock), clock)

        with pytest.raises(RuntimeError, match="db gone"):
            engine.tick(threading.Event())

    def test_provider_name_comes_from_provider(self, store, clock) -> None:
        engine = _engine(FakeProvider([[]], name="ldap"), store, clock)
        assert engine.provider_name == "ldap"


class TestTruncateError:
    def test_exception_rendered_with_type(self) -> None:
        assert truncate_error(ValueError("bad")) == "ValueError: bad"

    def test_long_text_capped(self) -> None:
        assert len(truncate_error("x" * 2000)) == 700
