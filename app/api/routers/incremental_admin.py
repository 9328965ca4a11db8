"""
Administrative endpoints for incremental ingestion providers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_known_provider
from app.schemas.incremental_admin import (
    IngestionHealthResponse,
    IngestionMarkResponse,
    ProviderActionResponse,
    ProviderListResponse,
    ProviderMarksResponse,
    ProviderPurgeResponse,
    ProviderStatusResponse,
)
from app.services.incremental_ingestion_service import (
    IncrementalIngestionService,
    get_incremental_ingestion_service,
)

router = APIRouter(prefix="/incremental", tags=["incremental-ingestion"])


@router.get("/health", response_model=IngestionHealthResponse)
def get_health(
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> IngestionHealthResponse:
    health = service.health()
    return IngestionHealthResponse(
        healthy=health.healthy,
        duplicate_providers=health.duplicate_providers,
    )


@router.get("/providers", response_model=ProviderListResponse)
def list_providers(
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> ProviderListResponse:
    return ProviderListResponse(providers=service.list_providers())


@router.get("/providers/{provider_name}", response_model=ProviderStatusResponse)
def get_provider_status(
    provider_name: str = Depends(get_known_provider),
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> ProviderStatusResponse:
    record = service.get_status(provider_name)
    if record is None:
        return ProviderStatusResponse(provider_name=provider_name)
    return ProviderStatusResponse(
        provider_name=provider_name,
        ingestion_id=record.ingestion_id,
        status=record.status,
        next_action=record.next_action,
        next_action_at=record.next_action_at,
        attempts=record.attempts,
        last_error=record.last_error,
    )


@router.post(
    "/providers/{provider_name}/trigger",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ProviderActionResponse,
)
def trigger_provider(
    provider_name: str = Depends(get_known_provider),
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> ProviderActionResponse:
    triggered = service.trigger(provider_name)
    message = (
        "Next action will run on the next tick."
        if triggered
        else "No active ingestion; one will be created on the next tick."
    )
    return ProviderActionResponse(provider_name=provider_name, accepted=triggered, message=message)


@router.post(
    "/providers/{provider_name}/cancel",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ProviderActionResponse,
)
def cancel_provider(
    provider_name: str = Depends(get_known_provider),
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> ProviderActionResponse:
    ingestion_id = service.cancel(provider_name)
    if ingestion_id is None:
        return ProviderActionResponse(
            provider_name=provider_name,
            accepted=False,
            message="No active ingestion to cancel.",
        )
    return ProviderActionResponse(
        provider_name=provider_name,
        accepted=True,
        ingestion_id=ingestion_id,
        message="Ingestion will be canceled and restarted on the next tick.",
    )


@router.delete("/providers/{provider_name}", response_model=ProviderPurgeResponse)
def purge_provider(
    provider_name: str = Depends(get_known_provider),
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> ProviderPurgeResponse:
    summary = service.purge(provider_name)
    return ProviderPurgeResponse(
        provider_name=summary.provider_name,
        ingestions=summary.ingestions,
        marks=summary.marks,
        mark_entities=summary.mark_entities,
    )


@router.get("/providers/{provider_name}/marks", response_model=ProviderMarksResponse)
def list_provider_marks(
    provider_name: str = Depends(get_known_provider),
    service: IncrementalIngestionService = Depends(get_incremental_ingestion_service),
) -> ProviderMarksResponse:
    record, marks = service.get_marks(provider_name)
    return ProviderMarksResponse(
        provider_name=provider_name,
        ingestion_id=record.ingestion_id if record is not None else None,
        marks=[
            IngestionMarkResponse(id=mark.id, sequence=mark.sequence, cursor=mark.cursor)
            for mark in marks
        ],
    )
