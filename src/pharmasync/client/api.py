"""HTTP client for the hosted backend's REST interface.

This module provides:
- RemoteStore: Protocol the sync engine and backup pipeline depend on
- RestClient: Async PostgREST client implementing RemoteStore

Rows in every client table are keyed by (client_id, local_id). Writes
are upserts on that key, deletes only set ``deleted_at``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from pharmasync.core.config import RemoteConfig

logger = logging.getLogger(__name__)

UPSERT_CONFLICT_TARGET = "client_id,local_id"


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed or row-level security rejected the request."""


class ConflictError(APIError):
    """Uniqueness or foreign key constraint violated."""


class NotFoundError(APIError):
    """Table or resource not found."""


class RemoteStore(Protocol):
    """Upsert-capable table API keyed by (client_id, local_id)."""

    async def upsert(self, table: str, rows: list[dict[str, Any]]) -> None: ...

    async def soft_delete(
        self, table: str, client_id: str, local_id: str, deleted_at: str
    ) -> None: ...

    async def select_active(self, table: str, client_id: str) -> list[dict[str, Any]]: ...


def _error_detail(response: httpx.Response) -> str:
    """Extract a readable message from an error response."""
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(data, dict):
        return str(data.get("message") or data.get("detail") or data.get("error") or data)
    return str(data)


class RestClient:
    """Async HTTP client for the backend REST API."""

    def __init__(
        self,
        config: RemoteConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            config: Remote configuration with URL, key and timeout.
            transport: Optional transport override (used by tests).
        """
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.rest_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            headers={
                "apikey": config.api_key,
                "Authorization": f"Bearer {config.api_key}",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RestClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the matching APIError for an error response."""
        if response.status_code in (401, 403):
            raise AuthenticationError(_error_detail(response), response.status_code)
        if response.status_code == 404:
            raise NotFoundError(_error_detail(response), 404)
        if response.status_code == 409:
            raise ConflictError(_error_detail(response), 409)
        if response.status_code >= 400:
            raise APIError(_error_detail(response), response.status_code)
        return response

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to APIError."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise APIError(f"{type(e).__name__}: {e}") from e
        return self._handle_response(response)

    # === Table operations ===

    async def upsert(self, table: str, rows: list[dict[str, Any]]) -> None:
        """Insert or update rows, resolving duplicates on (client_id, local_id).

        Args:
            table: Remote table name.
            rows: Rows to write; each must carry client_id and local_id.
        """
        if not rows:
            return
        await self._request(
            "POST",
            f"/{table}",
            params={"on_conflict": UPSERT_CONFLICT_TARGET},
            json=rows,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug("Upserted %d rows into %s", len(rows), table)

    async def soft_delete(
        self,
        table: str,
        client_id: str,
        local_id: str,
        deleted_at: str,
    ) -> None:
        """Mark a row as deleted without removing it.

        Args:
            table: Remote table name.
            client_id: Owning client.
            local_id: Local identifier of the record.
            deleted_at: ISO timestamp stored in deleted_at.
        """
        await self._request(
            "PATCH",
            f"/{table}",
            params={"client_id": f"eq.{client_id}", "local_id": f"eq.{local_id}"},
            json={"deleted_at": deleted_at},
            headers={"Prefer": "return=minimal"},
        )
        logger.debug("Soft-deleted %s:%s", table, local_id)

    async def select_active(self, table: str, client_id: str) -> list[dict[str, Any]]:
        """List the client's rows that are not soft-deleted.

        Args:
            table: Remote table name.
            client_id: Owning client.

        Returns:
            Row dictionaries as returned by the backend.
        """
        response = await self._request(
            "GET",
            f"/{table}",
            params={
                "client_id": f"eq.{client_id}",
                "deleted_at": "is.null",
                "select": "*",
            },
        )
        result: list[dict[str, Any]] = response.json()
        return result
