"""
app/schemas package marker.
"""

from app.schemas.incremental_admin import (
    IngestionHealthResponse,
    IngestionMarkResponse,
    ProviderActionResponse,
    ProviderListResponse,
    ProviderMarksResponse,
    ProviderPurgeResponse,
    ProviderStatusResponse,
)

__all__ = [
    "IngestionHealthResponse",
    "IngestionMarkResponse",
    "ProviderActionResponse",
    "ProviderListResponse",
    "ProviderMarksResponse",
    "ProviderPurgeResponse",
    "ProviderStatusResponse",
]
