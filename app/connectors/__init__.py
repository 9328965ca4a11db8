"""
app/connectors package marker.
"""

from app.connectors.base import BaseInventoryConnector, ConnectorRequestError
from app.connectors.paged_inventory_connector import PagedInventoryConnector

__all__ = [
    "BaseInventoryConnector",
    "ConnectorRequestError",
    "PagedInventoryConnector",
]
