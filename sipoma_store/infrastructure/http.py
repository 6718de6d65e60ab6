"""
Asynchronous HTTP transport for the hosted backend.

Thin wrapper over ``httpx.AsyncClient`` that stamps the project key on every
request and maps transport and status failures onto the store's error
taxonomy. Callers above this layer never see ``httpx`` exceptions.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Optional

import httpx

from sipoma_store.errors import QueryError, from_exception, from_response
from sipoma_store.utils.logging import get_logger

log = get_logger(__name__)


class AsyncHttpClient:
    """Shared ``httpx.AsyncClient`` owner with typed error mapping."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: float = 10.0,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._api_key = api_key
        default_headers = {"apikey": api_key}
        default_headers.update(headers or {})
        self._client = client or httpx.AsyncClient(
            timeout=timeout_seconds,
            headers=default_headers,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close underlying transport resources when owned."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AsyncHttpClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        token: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Issue one request and raise a ``StoreError`` on failure.

        ``token`` is sent as the bearer credential; without it the project key
        is used, which is what the backend expects for anonymous access.
        """
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("apikey", self._api_key)
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        elif "Authorization" not in headers:
            headers["Authorization"] = f"Bearer {self._api_key}"

        log.debug("request", extra={"method": method, "url": url})
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.RequestError as exc:
            log.debug("request failed", extra={"method": method, "url": url, "error": str(exc)})
            raise from_exception(exc) from exc

        if response.is_error:
            raise from_response(response)
        return response

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Issue one request and decode JSON from a successful response."""
        response = await self.request(method, url, **kwargs)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise QueryError(
                message=f"Invalid JSON response for {method} {url}",
                status_code=response.status_code,
            ) from exc


__all__ = ["AsyncHttpClient"]
