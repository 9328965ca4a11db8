"""
Repository layer exports.
"""

from db.repositories.catalog_entity_repository import CatalogEntityConnection
from db.repositories.incremental_ingestion_repository import IncrementalIngestionRepository
from db.repositories.types import IngestionHealth, ProviderPurgeSummary

__all__ = [
    "CatalogEntityConnection",
    "IncrementalIngestionRepository",
    "IngestionHealth",
    "ProviderPurgeSummary",
]
