"""
incremental/errors.py

Exceptions raised by the incremental ingestion engine and its collaborators.
"""

from __future__ import annotations


class IncrementalIngestionError(Exception):
    """Base exception for incremental ingestion failures."""


class IngestionCancelledError(IncrementalIngestionError):
    """
    Raised by a provider (or anything running inside a burst) to stop the
    current ingestion and restart it from scratch.

    The engine routes this error to the ``cancel`` action instead of backoff,
    and never counts it as a failed attempt.
    """

    def __init__(self, reason: str = "CANCEL") -> None:
        self.reason = reason
        super().__init__(reason)
