"""
app/services package marker.
"""

from app.services.incremental_ingestion_service import (
    IncrementalIngestionService,
    UnknownProviderError,
    build_incremental_ingestion_service,
    get_incremental_ingestion_service,
)

__all__ = [
    "IncrementalIngestionService",
    "UnknownProviderError",
    "build_incremental_ingestion_service",
    "get_incremental_ingestion_service",
]
