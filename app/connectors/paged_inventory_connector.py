"""
app/connectors/paged_inventory_connector.py

Connector for inventories exposed as cursor-paged JSON endpoints.

Expected response shape::

    {
        "items": [{"kind": "Component", "metadata": {"name": "..."}, ...}],
        "nextCursor": "opaque-token" | null,
        "canceled": false
    }
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from app.config import ExternalHTTPSettings, InventorySource
from app.connectors.base import BaseInventoryConnector, ConnectorRequestError
from incremental.base import DeferredEntity, EntityIteratorResult
from incremental.errors import IngestionCancelledError

logger = logging.getLogger(__name__)


class PagedInventoryConnector(BaseInventoryConnector):
    """
    Pages through ``source.base_url`` with ``limit``/``cursor`` query params.
    """

    def __init__(
        self,
        *,
        source: InventorySource,
        http_settings: ExternalHTTPSettings,
        page_size: int = 100,
        bearer_token: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(provider_name=source.name, http_settings=http_settings, **kwargs)
        self._base_url = source.base_url
        self._page_size = max(1, page_size)
        self._bearer_token = bearer_token

    @property
    def location_key(self) -> str:
        return f"url:{self._base_url}"

    def next(self, context: requests.Session, cursor: Any = None) -> EntityIteratorResult:
        params: dict[str, Any] = {"limit": self._page_size}
        if cursor is not None:
            params["cursor"] = cursor
        headers = {"Accept": "application/json"}
        if self._bearer_token:
            headers["Authorization"] = f"Bearer {self._bearer_token}"

        payload = self._request_json(
            context,
            method="GET",
            url=self._base_url,
            params=params,
            headers=headers,
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
            raise ConnectorRequestError(f"{self.provider_name}: unexpected inventory payload shape.")

        if payload.get("canceled"):
            raise IngestionCancelledError(
                str(payload.get("reason") or f"{self.provider_name}: inventory requested cancel")
            )

        entities: list[DeferredEntity] = []
        skipped = 0
        for index, item in enumerate(payload["items"]):
            if not _is_entity(item):
                skipped += 1
                logger.warning(
                    "Skipping malformed inventory item provider=%s index=%s",
                    self.provider_name,
                    index,
                )
                continue
            entities.append(DeferredEntity(entity=item, location_key=self.location_key))

        next_cursor = payload.get("nextCursor")
        logger.debug(
            "Fetched inventory page provider=%s entities=%d skipped=%d next_cursor=%s",
            self.provider_name,
            len(entities),
            skipped,
            next_cursor,
        )
        return EntityIteratorResult(
            entities=entities,
            cursor=next_cursor,
            done=next_cursor is None,
        )


def _is_entity(item: Any) -> bool:
    if not isinstance(item, dict) or not item.get("kind"):
        return False
    metadata = item.get("metadata")
    return isinstance(metadata, dict) and bool(metadata.get("name"))
