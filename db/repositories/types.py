"""
Typed DTOs returned by the incremental ingestion repositories.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProviderPurgeSummary:
    """
    Row counts removed by a provider purge.
    """

    provider_name: str
    ingestions: int
    marks: int
    mark_entities: int


@dataclass(frozen=True)
class IngestionHealth:
    """
    Providers that hold more than one active ingestion record.
    """

    duplicate_providers: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.duplicate_providers
