"""HTTP client for the remote relational store and its object storage.

This module provides:
- RemoteStore: Async client of the REST endpoint (one resource per table)
  and the object storage endpoint of the document bucket
- AuthSession: Result of a password sign-in

HTTP failures are mapped to casesync.core.errors exceptions:

| Response                           | Exception             |
|------------------------------------|-----------------------|
| 401, 403                           | PermissionDeniedError |
| 404, PGRST205, 42P01 on a table    | UninitializedError    |
| 404 on a storage object            | NotFoundError         |
| 408, 429, 5xx, transport failure   | TransientError        |
| any other 4xx                      | SyncError (unknown)   |
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from casesync.client.sync.types import TOMBSTONE_TABLE, Tombstone
from casesync.core.config import RemoteConfig
from casesync.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    SyncError,
    TransientError,
    UninitializedError,
)
from casesync.core.schemas import TABLE_RECORDS, UNOWNED_TABLES

logger = logging.getLogger(__name__)

MISSING_TABLE_CODES = frozenset({"PGRST205", "42P01"})
TRANSIENT_STATUS_CODES = frozenset({408, 429})


@dataclass
class AuthSession:
    """An authenticated user session."""

    user_id: str
    access_token: str
    refresh_token: str | None = None
    email: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthSession:
        """Create from the token endpoint response."""
        user = data.get("user") or {}
        return cls(
            user_id=str(user["id"]),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            email=user.get("email"),
        )


def _error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _in_filter(values: list[str]) -> str:
    quoted = ",".join('"' + value.replace('"', '\\"') + '"' for value in values)
    return f"in.({quoted})"


class RemoteStore:
    """Async HTTP client of the remote store.

    Writes are scoped to the effective owner set with bind_owner().
    """

    def __init__(
        self,
        config: RemoteConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the remote store client.

        Args:
            config: Remote endpoint configuration.
            transport: Optional transport (used by tests).
        """
        self._config = config
        self.owner_id: str | None = None
        self._client = httpx.AsyncClient(
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
            headers={
                "apikey": config.api_key,
                "Authorization": f"Bearer {config.access_token or config.api_key}",
            },
        )

    @property
    def config(self) -> RemoteConfig:
        """Get the remote configuration."""
        return self._config

    def bind_owner(self, owner_id: str) -> None:
        """Scope writes and deletions to an owner."""
        self.owner_id = owner_id

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RemoteStore:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to TransientError."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientError(f"Request to {url} timed out") from e
        except httpx.RequestError as e:
            raise TransientError(f"Network error: {e}") from e

    def _handle_response(
        self,
        response: httpx.Response,
        *,
        table: str | None = None,
        object_path: str | None = None,
    ) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        status = response.status_code
        if status < 400:
            return response

        body = _error_body(response)
        detail = body.get("message") or body.get("error") or response.reason_phrase or "Unknown error"

        if status in (401, 403):
            raise PermissionDeniedError(f"Permission denied: {detail}", status)
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise TransientError(f"Remote service unavailable ({status}): {detail}", status)
        if object_path is not None and (
            status == 404 or str(body.get("statusCode")) == "404" or body.get("error") == "not_found"
        ):
            raise NotFoundError(f"Object not found: {object_path}", 404)
        if table is not None and (status == 404 or body.get("code") in MISSING_TABLE_CODES):
            raise UninitializedError(f"Remote table '{table}' does not exist", status)
        raise SyncError(detail, status)

    def _table_url(self, table: str) -> str:
        return f"{self._config.rest_url}/{table}"

    def _object_url(self, path: str) -> str:
        return f"{self._config.storage_url}/{path.lstrip('/')}"

    # === Health and schema ===

    async def health_check(self) -> bool:
        """Check if the remote store is reachable.

        Returns:
            True if the REST endpoint answers.
        """
        try:
            response = await self._client.get(f"{self._config.rest_url}/", timeout=10.0)
            return response.status_code < 500
        except httpx.RequestError:
            return False

    async def check_schema(self) -> None:
        """Verify that the remote tables exist by probing ``profiles``.

        Raises:
            UninitializedError: If the table is missing.
        """
        response = await self._request(
            "HEAD",
            self._table_url("profiles"),
            params={"select": "id"},
            headers={"Prefer": "count=exact"},
        )
        self._handle_response(response, table="profiles")

    # === Records ===

    async def fetch(self, table: str) -> list[dict[str, Any]]:
        """Fetch every row of a table visible to the user.

        Args:
            table: Wire name of the table.

        Returns:
            Raw rows.
        """
        response = await self._request("GET", self._table_url(table), params={"select": "*"})
        rows = self._handle_response(response, table=table).json()
        logger.debug(f"Fetched {len(rows)} rows from {table}")
        return rows

    async def fetch_tombstones(self, since: datetime) -> list[Tombstone]:
        """Fetch deletions recorded since the given time.

        Args:
            since: Start of the tombstone window.

        Returns:
            Tombstones, malformed rows skipped.
        """
        response = await self._request(
            "GET",
            self._table_url(TOMBSTONE_TABLE),
            params={"select": "*", "deleted_at": f"gte.{since.isoformat()}"},
        )
        rows = self._handle_response(response, table=TOMBSTONE_TABLE).json()

        tombstones = []
        for row in rows:
            try:
                tombstones.append(Tombstone.from_dict(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed tombstone {row!r}: {e}")
        return tombstones

    async def upsert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Insert or update rows.

        Args:
            table: Wire name of the table.
            rows: Rows in wire form.

        Returns:
            Rows as stored by the remote store.
        """
        if not rows:
            return []
        response = await self._request(
            "POST",
            self._table_url(table),
            params={"on_conflict": TABLE_RECORDS[table].key_field},
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
            json=rows,
        )
        return self._handle_response(response, table=table).json()

    async def delete(self, table: str, ids: list[str]) -> None:
        """Delete rows, recording a tombstone for each first.

        Args:
            table: Wire name of the table.
            ids: Ids (assistant names for assistants) of the rows.
        """
        if not ids:
            return
        tombstones = [{"table_name": table, "record_id": i, "user_id": self.owner_id} for i in ids]
        response = await self._request(
            "POST",
            self._table_url(TOMBSTONE_TABLE),
            headers={"Prefer": "return=minimal"},
            json=tombstones,
        )
        self._handle_response(response, table=TOMBSTONE_TABLE)

        params = {TABLE_RECORDS[table].key_field: _in_filter(ids)}
        if table not in UNOWNED_TABLES and self.owner_id:
            params["user_id"] = f"eq.{self.owner_id}"
        response = await self._request("DELETE", self._table_url(table), params=params)
        self._handle_response(response, table=table)
        logger.debug(f"Deleted {len(ids)} rows from {table}")

    # === Objects ===

    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> None:
        """Store a binary object, replacing any existing one."""
        response = await self._request(
            "POST",
            self._object_url(path),
            content=data,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "x-upsert": "true",
            },
        )
        self._handle_response(response)

    async def download(self, path: str) -> bytes:
        """Fetch a binary object.

        Raises:
            NotFoundError: If the object does not exist.
        """
        response = await self._request("GET", self._object_url(path))
        return self._handle_response(response, object_path=path).content

    async def remove(self, paths: list[str]) -> None:
        """Delete binary objects. Missing objects are ignored."""
        if not paths:
            return
        response = await self._request("DELETE", self._config.storage_url, json={"prefixes": paths})
        self._handle_response(response)

    # === Authentication ===

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Sign in with email and password.

        Returns:
            The authenticated session.

        Raises:
            PermissionDeniedError: If the credentials are rejected.
        """
        response = await self._request(
            "POST",
            f"{self._config.auth_url}/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if response.status_code in (400, 401):
            raise PermissionDeniedError("Invalid email or password", response.status_code)
        return AuthSession.from_dict(self._handle_response(response).json())
