"""
app/connectors/base.py

Base incremental provider over a paged HTTP inventory, with shared HTTP
mechanics (retries, exponential backoff, rate limiting).
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, TypeVar

import requests

from app.config import ExternalHTTPSettings
from incremental.base import EntityIteratorResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class ConnectorRequestError(RuntimeError):
    """
    Raised when a connector cannot fetch a page after retries.
    """


class BaseInventoryConnector(ABC):
    """
    Incremental entity provider backed by one HTTP session per burst.

    ``around`` opens a ``requests.Session``, hands it to the burst as the
    fetch context and closes it on every exit path.
    """

    def __init__(
        self,
        *,
        provider_name: str,
        http_settings: ExternalHTTPSettings,
        session_factory: Callable[[], requests.Session] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider_name = provider_name
        self._session_factory = session_factory or requests.Session
        self._sleep = sleep
        self._timeout_seconds = http_settings.timeout_seconds
        self._max_retries = http_settings.max_retries
        self._backoff_initial_seconds = http_settings.backoff_initial_seconds
        self._backoff_multiplier = http_settings.backoff_multiplier
        self._min_request_interval_seconds = (
            1.0 / http_settings.rate_limit_per_second if http_settings.rate_limit_per_second > 0 else 0.0
        )
        self._last_request_monotonic: float = 0.0

    def get_provider_name(self) -> str:
        return self.provider_name

    def around(self, burst: Callable[[requests.Session], T]) -> T:
        session = self._session_factory()
        logger.debug("Connector session opened provider=%s", self.provider_name)
        try:
            return burst(session)
        finally:
            session.close()
            logger.debug("Connector session closed provider=%s", self.provider_name)

    @abstractmethod
    def next(self, context: requests.Session, cursor: Any = None) -> EntityIteratorResult:
        """
        Fetch the page that follows ``cursor`` (the first page when None).
        """

    def _request_json(
        self,
        session: requests.Session,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Execute an HTTP request and return parsed JSON with retry support.
        """

        response = self._request(session, method=method, url=url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as exc:
            raise ConnectorRequestError(f"{self.provider_name}: response was not valid JSON.") from exc

    def _request(
        self,
        session: requests.Session,
        *,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """
        Execute an HTTP request with rate limiting and exponential backoff.
        """

        last_error: Exception | None = None
        for attempt in range(self._max_retries + 1):
            self._apply_rate_limit()
            try:
                response = session.request(
                    method=method,
                    url=url,
                    params=params,
                    headers=headers,
                    timeout=self._timeout_seconds,
                )
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise requests.HTTPError(
                        f"Retryable HTTP status code: {response.status_code}",
                        response=response,
                    )
                response.raise_for_status()
                return response
            except requests.HTTPError as exc:
                last_error = exc
                status_code = exc.response.status_code if exc.response is not None else None
                if status_code not in RETRYABLE_STATUS_CODES:
                    logger.error(
                        "Connector request failed provider=%s status=%s url=%s error=%s",
                        self.provider_name,
                        status_code,
                        url,
                        exc,
                    )
                    raise ConnectorRequestError(
                        f"{self.provider_name}: non-retryable request failure (status={status_code})."
                    ) from exc
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = exc

            if attempt >= self._max_retries:
                break

            backoff_seconds = self._backoff_initial_seconds * (self._backoff_multiplier**attempt)
            logger.warning(
                "Connector request retry provider=%s attempt=%s/%s wait_seconds=%.2f url=%s",
                self.provider_name,
                attempt + 1,
                self._max_retries,
                backoff_seconds,
                url,
            )
            self._sleep(backoff_seconds)

        logger.error(
            "Connector request exhausted retries provider=%s url=%s error=%s",
            self.provider_name,
            url,
            last_error,
        )
        raise ConnectorRequestError(f"{self.provider_name}: request failed after retries.") from last_error

    def _apply_rate_limit(self) -> None:
        """
        Enforce minimum interval between outbound requests.
        """

        if self._min_request_interval_seconds <= 0:
            return

        now = time.monotonic()
        remaining = self._min_request_interval_seconds - (now - self._last_request_monotonic)
        if remaining > 0:
            self._sleep(remaining)
        self._last_request_monotonic = time.monotonic()
