"""
Schemas for incremental ingestion admin endpoints.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class IngestionHealthResponse(BaseModel):
    healthy: bool
    duplicate_providers: list[str] = Field(default_factory=list)


class ProviderListResponse(BaseModel):
    providers: list[str] = Field(default_factory=list)


class ProviderStatusResponse(BaseModel):
    provider_name: str
    ingestion_id: UUID | None = None
    status: str | None = None
    next_action: str | None = None
    next_action_at: datetime | None = None
    attempts: int = 0
    last_error: str | None = None


class ProviderActionResponse(BaseModel):
    provider_name: str
    accepted: bool
    ingestion_id: UUID | None = None
    message: str


class ProviderPurgeResponse(BaseModel):
    provider_name: str
    ingestions: int
    marks: int
    mark_entities: int


class IngestionMarkResponse(BaseModel):
    id: UUID
    sequence: int
    cursor: Any = None


class ProviderMarksResponse(BaseModel):
    provider_name: str
    ingestion_id: UUID | None = None
    marks: list[IngestionMarkResponse] = Field(default_factory=list)
