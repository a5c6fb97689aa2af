"""
Remote store client.

The sync engine talks to the remote relational store through the RemoteStore
protocol. RestRemoteStore implements it over a PostgREST-style HTTP API
(``/rest/v1/<table>`` plus ``/auth/v1/user`` for identity).

The client is constructed explicitly and passed to the engines; there is no
module-level instance.

Usage:
    remote = RestRemoteStore('https://example.supabase.co', api_key, access_token=token)
    rows = await remote.select('txns')
    await remote.upsert('txns', payload)
    await remote.aclose()
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from logbook.errors import ConnectivityError, RemoteError

logger = logging.getLogger(__name__)

# Statuses worth retrying; every other 4xx is a rejection
RETRYABLE_STATUSES = {408, 425, 429}


@runtime_checkable
class RemoteStore(Protocol):
    """Operations the sync engine needs from the remote store."""

    async def select(
        self, table: str, since: Optional[str] = None, filters: Optional[dict[str, Any]] = None
    ) -> list[dict]:
        """All rows of a table, optionally updated after ``since`` and matching equality filters."""
        ...

    async def upsert(self, table: str, row: dict, on_conflict: str = "id") -> dict:
        """Insert or replace a row keyed by ``on_conflict``."""
        ...

    async def insert(self, table: str, row: dict) -> dict:
        """Insert a row and return it as stored."""
        ...

    async def update(self, table: str, row_id: str, patch: dict) -> None:
        """Patch the row with the given id."""
        ...

    async def delete(self, table: str, row_id: str) -> None:
        """Hard-delete the row with the given id."""
        ...

    async def current_user_id(self) -> Optional[str]:
        """Id of the authenticated principal, or None."""
        ...

    async def ping(self) -> bool:
        """True if the remote store is reachable."""
        ...


def _normalize_url(url: str) -> str:
    return url.rstrip("/")


class RestRemoteStore:
    """RemoteStore over a PostgREST-style HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = _normalize_url(base_url)
        self._api_key = api_key
        self._access_token = access_token
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, prefer: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _table_url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise ConnectivityError(f"{method} {url}: {e}") from e

        if response.status_code >= 400:
            raise RemoteError(
                f"{method} {url} -> {response.status_code}: {self._error_message(response)}",
                status=response.status_code,
                retryable=response.status_code >= 500 or response.status_code in RETRYABLE_STATUSES,
            )
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(payload, dict):
            return str(payload.get("message") or payload.get("error") or payload)
        return str(payload)

    @staticmethod
    def _first(payload: Any, fallback: dict) -> dict:
        if isinstance(payload, list):
            return payload[0] if payload else fallback
        if isinstance(payload, dict):
            return payload
        return fallback

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    async def select(
        self, table: str, since: Optional[str] = None, filters: Optional[dict[str, Any]] = None
    ) -> list[dict]:
        params: dict[str, Any] = {"select": "*"}
        if since:
            params["updated_at"] = f"gt.{since}"
        for column, value in (filters or {}).items():
            params[column] = "is.null" if value is None else f"eq.{value}"
        response = await self._request("GET", self._table_url(table), params=params, headers=self._headers())
        data = response.json()
        if not isinstance(data, list):
            raise RemoteError(f"select {table}: expected a list, got {type(data).__name__}", retryable=False)
        return data

    async def upsert(self, table: str, row: dict, on_conflict: str = "id") -> dict:
        response = await self._request(
            "POST",
            self._table_url(table),
            params={"on_conflict": on_conflict},
            json=[row],
            headers=self._headers("resolution=merge-duplicates,return=representation"),
        )
        return self._first(response.json() if response.content else None, row)

    async def insert(self, table: str, row: dict) -> dict:
        response = await self._request(
            "POST",
            self._table_url(table),
            json=[row],
            headers=self._headers("return=representation"),
        )
        return self._first(response.json() if response.content else None, row)

    async def update(self, table: str, row_id: str, patch: dict) -> None:
        await self._request(
            "PATCH",
            self._table_url(table),
            params={"id": f"eq.{row_id}"},
            json=patch,
            headers=self._headers("return=minimal"),
        )

    async def delete(self, table: str, row_id: str) -> None:
        await self._request(
            "DELETE",
            self._table_url(table),
            params={"id": f"eq.{row_id}"},
            headers=self._headers("return=minimal"),
        )

    # -------------------------------------------------------------------------
    # Identity and reachability
    # -------------------------------------------------------------------------

    async def current_user_id(self) -> Optional[str]:
        if not self._access_token:
            return None
        try:
            response = await self._request("GET", f"{self.base_url}/auth/v1/user", headers=self._headers())
        except RemoteError as e:
            if e.status in (401, 403):
                logger.warning(f"Access token rejected: {e}")
                return None
            raise
        return response.json().get("id")

    async def ping(self) -> bool:
        try:
            response = await self._client.get(f"{self.base_url}/rest/v1/", headers=self._headers())
        except httpx.TransportError as e:
            logger.debug(f"Remote unreachable: {e}")
            return False
        return response.status_code < 500
