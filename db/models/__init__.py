"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.catalog_entity import CatalogEntityRecord
from db.models.ingestion import Ingestion, IngestionMarkEntity, IngestionMarkRecord

__all__ = [
    "CatalogEntityRecord",
    "Ingestion",
    "IngestionMarkEntity",
    "IngestionMarkRecord",
]
