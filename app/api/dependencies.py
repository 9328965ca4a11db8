"""
app/api/dependencies.py

Shared FastAPI dependencies for the admin endpoints.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Path, status

from app.services.incremental_ingestion_service import (
    IncrementalIngestionService,
    UnknownProviderError,
    get_incremental_ingestion_service,
)


def get_known_provider(
    provider_name: str = Path(..., min_length=1, description="Incremental provider name"),
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> str:
    """
    Reject provider names that are not configured on this deployment.
    """

    try:
        service.get_engine(provider_name)
    except UnknownProviderError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return provider_name
