"""
incremental/backoff.py

Backoff table used after failed ingestion bursts.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

DEFAULT_BACKOFF: tuple[timedelta, ...] = (
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=30),
    timedelta(hours=3),
)


def normalize_backoff(table: Sequence[timedelta] | None) -> tuple[timedelta, ...]:
    """
    Return ``table`` as a tuple, or the default table when none is given.

    Raises:
        ValueError: If the table is empty or holds a negative duration.
    """

    if table is None:
        return DEFAULT_BACKOFF
    normalized = tuple(table)
    if not normalized:
        raise ValueError("Backoff table must contain at least one duration.")
    if any(entry < timedelta(0) for entry in normalized):
        raise ValueError("Backoff durations must not be negative.")
    return normalized


def backoff_delay(attempts: int, table: Sequence[timedelta] = DEFAULT_BACKOFF) -> timedelta:
    """
    Look up the wait before the next attempt.

    ``attempts`` counts consecutive failures before the current one. The last
    entry of the table is reused once ``attempts`` runs past its end.
    """

    if not table:
        raise ValueError("Backoff table must contain at least one duration.")
    index = min(max(0, attempts), len(table) - 1)
    return table[index]
