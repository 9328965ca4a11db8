"""
app/scheduler/jobs.py

APScheduler wiring that drives incremental ingestion ticks.

Every configured provider gets one ``interval`` job firing every
``INCREMENTAL_BURST_INTERVAL_SECONDS``. Each run hands the engine a fresh
cancellation signal that is set once ``INCREMENTAL_BURST_LENGTH_SECONDS``
elapses, which keeps bursts bounded: the burst loop observes the signal
between pages and stops, leaving the ingestion interstitial until the next
tick.

Lifecycle
----------
Call ``build_scheduler()`` once to get a configured ``BackgroundScheduler``.
Start it on app boot. On shutdown, call ``TickSignals.cancel_all()`` before
``scheduler.shutdown(wait=True)`` so in-flight bursts stop at the next page
boundary.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from app.config import IncrementalIngestionSettings, get_incremental_ingestion_settings
from app.services.incremental_ingestion_service import (
    IncrementalIngestionService,
    get_incremental_ingestion_service,
)
from incremental.engine import IncrementalIngestionEngine

logger = logging.getLogger(__name__)


class TickSignals:
    """
    Tracks the cancellation signals of in-flight ticks.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._signals: set[threading.Event] = set()
        self._closed = False

    @contextmanager
    def open(self, burst_length: timedelta) -> Iterator[threading.Event]:
        """
        Yield a signal that is set after ``burst_length`` or on ``cancel_all``.
        """

        signal = threading.Event()
        timer = threading.Timer(burst_length.total_seconds(), signal.set)
        timer.daemon = True
        with self._lock:
            if self._closed:
                signal.set()
            self._signals.add(signal)
        timer.start()
        try:
            yield signal
        finally:
            timer.cancel()
            with self._lock:
                self._signals.discard(signal)

    def cancel_all(self) -> int:
        """
        Set every live signal and refuse to hand out unset ones afterwards.
        """

        with self._lock:
            self._closed = True
            for signal in self._signals:
                signal.set()
            return len(self._signals)


def run_provider_tick(
    engine: IncrementalIngestionEngine,
    signals: TickSignals,
    burst_length: timedelta,
) -> None:
    """
    Run one tick for ``engine``. Failures propagate to APScheduler, which
    logs them and keeps the job scheduled.
    """

    with signals.open(burst_length) as signal:
        engine.tick(signal)


def build_scheduler(
    *,
    service: IncrementalIngestionService | None = None,
    settings: IncrementalIngestionSettings | None = None,
    signals: TickSignals | None = None,
) -> BackgroundScheduler:
    """
    Build the scheduler with one tick job per configured provider.

    Returns a configured but *not yet started* ``BackgroundScheduler``.
    ``max_instances=1`` keeps a process from overlapping ticks of the same
    provider; cross-process exclusion is the state store's job.
    """

    service = service or get_incremental_ingestion_service()
    settings = settings or get_incremental_ingestion_settings()
    signals = signals or TickSignals()

    scheduler = BackgroundScheduler(timezone="UTC")
    for engine in service.engines:
        scheduler.add_job(
            run_provider_tick,
            trigger="interval",
            seconds=settings.burst_interval_seconds,
            args=[engine, signals, settings.burst_length],
            id=f"incremental_tick:{engine.provider_name}",
            name=f"Incremental ingestion tick ({engine.provider_name})",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(tz=timezone.utc),
        )
        logger.info(
            "Scheduler: registered incremental tick provider=%s interval_seconds=%s "
            "burst_length_seconds=%s",
            engine.provider_name,
            settings.burst_interval_seconds,
            settings.burst_length_seconds,
        )
    return scheduler
