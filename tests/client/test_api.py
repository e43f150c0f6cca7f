"""Tests for the remote store HTTP client."""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime

import httpx
import pytest

from casesync.client.api import AuthSession, RemoteStore
from casesync.core.config import RemoteConfig
from casesync.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    SyncError,
    TransientError,
    UninitializedError,
)

BASE = "https://test.example"
REST = f"{BASE}/rest/v1"
STORAGE = f"{BASE}/storage/v1/object/documents"


def make_config(access_token: str | None = "user-jwt") -> RemoteConfig:
    """Create a RemoteConfig for testing."""
    return RemoteConfig(url=BASE, api_key="anon-key", access_token=access_token)


def table_url(table: str) -> re.Pattern[str]:
    """Match a table endpoint with any query string."""
    return re.compile(rf"{re.escape(REST)}/{table}(\?.*)?$")


class TestAuthSession:
    """Tests for AuthSession dataclass."""

    def test_from_dict(self) -> None:
        """Should create AuthSession from the token response."""
        session = AuthSession.from_dict(
            {
                "access_token": "jwt",
                "refresh_token": "refresh",
                "user": {"id": "u1", "email": "lawyer@example.com"},
            }
        )

        assert session.user_id == "u1"
        assert session.access_token == "jwt"
        assert session.refresh_token == "refresh"
        assert session.email == "lawyer@example.com"


class TestHeaders:
    """Tests for authentication headers."""

    @pytest.mark.asyncio
    async def test_sends_api_key_and_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should send the API key and the user's bearer token."""
        httpx_mock.add_response(url=table_url("clients"), json=[])

        async with RemoteStore(make_config()) as remote:
            await remote.fetch("clients")

        request = httpx_mock.get_request()
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer user-jwt"

    @pytest.mark.asyncio
    async def test_falls_back_to_api_key(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should use the API key as bearer token when signed out."""
        httpx_mock.add_response(url=table_url("clients"), json=[])

        async with RemoteStore(make_config(access_token=None)) as remote:
            await remote.fetch("clients")

        assert httpx_mock.get_request().headers["Authorization"] == "Bearer anon-key"


class TestErrorMapping:
    """Tests for HTTP error mapping."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_permission_denied(self, httpx_mock, status: int) -> None:  # type: ignore[no-untyped-def]
        """Should raise PermissionDeniedError on refusal."""
        httpx_mock.add_response(url=table_url("clients"), status_code=status, json={"message": "JWT expired"})

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(PermissionDeniedError, match="JWT expired"):
                await remote.fetch("clients")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [408, 429, 500, 503])
    async def test_transient(self, httpx_mock, status: int) -> None:  # type: ignore[no-untyped-def]
        """Should raise TransientError on timeouts, rate limits and 5xx."""
        httpx_mock.add_response(url=table_url("clients"), status_code=status)

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(TransientError):
                await remote.fetch("clients")

    @pytest.mark.asyncio
    async def test_missing_table(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise UninitializedError when a table does not exist."""
        httpx_mock.add_response(
            url=table_url("clients"),
            status_code=404,
            json={"code": "PGRST205", "message": "Could not find the table 'public.clients'"},
        )

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(UninitializedError, match="clients"):
                await remote.fetch("clients")

    @pytest.mark.asyncio
    async def test_missing_relation_code(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise UninitializedError for an undefined relation."""
        httpx_mock.add_response(url=table_url("cases"), status_code=400, json={"code": "42P01"})

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(UninitializedError):
                await remote.fetch("cases")

    @pytest.mark.asyncio
    async def test_other_client_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise a plain SyncError for other 4xx responses."""
        httpx_mock.add_response(url=table_url("clients"), status_code=400, json={"message": "bad filter"})

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(SyncError, match="bad filter") as exc_info:
                await remote.fetch("clients")

        assert type(exc_info.value) is SyncError
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_network_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise TransientError on connection failures."""
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"), url=table_url("clients"))

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(TransientError, match="Network error"):
                await remote.fetch("clients")

    @pytest.mark.asyncio
    async def test_timeout(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise TransientError on timeouts."""
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"), url=table_url("clients"))

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(TransientError, match="timed out"):
                await remote.fetch("clients")


class TestRecords:
    """Tests for record operations."""

    @pytest.mark.asyncio
    async def test_health_check(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should report reachability."""
        httpx_mock.add_response(url=f"{REST}/", status_code=200)
        httpx_mock.add_exception(httpx.ConnectError("down"), url=f"{REST}/")

        async with RemoteStore(make_config()) as remote:
            assert await remote.health_check() is True
            assert await remote.health_check() is False

    @pytest.mark.asyncio
    async def test_check_schema(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should probe the profiles table."""
        httpx_mock.add_response(url=table_url("profiles"), method="HEAD", status_code=200)

        async with RemoteStore(make_config()) as remote:
            await remote.check_schema()

        assert httpx_mock.get_request().url.params["select"] == "id"

    @pytest.mark.asyncio
    async def test_check_schema_missing(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise UninitializedError when the schema is missing."""
        httpx_mock.add_response(url=table_url("profiles"), method="HEAD", status_code=404)

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(UninitializedError):
                await remote.check_schema()

    @pytest.mark.asyncio
    async def test_fetch(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return every row of a table."""
        rows = [{"id": "c1", "name": "Ali"}, {"id": "c2", "name": "Mona"}]
        httpx_mock.add_response(url=table_url("clients"), method="GET", json=rows)

        async with RemoteStore(make_config()) as remote:
            assert await remote.fetch("clients") == rows

        assert httpx_mock.get_request().url.params["select"] == "*"

    @pytest.mark.asyncio
    async def test_fetch_tombstones(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should parse tombstones since a time and skip malformed rows."""
        httpx_mock.add_response(
            url=table_url("sync_deletions"),
            json=[
                {"table_name": "clients", "record_id": "c1", "deleted_at": "2025-01-02T10:00:00+00:00"},
                {"table_name": "cases", "record_id": 7, "deleted_at": "2025-01-03T10:00:00"},
                {"table_name": "cases"},
            ],
        )
        since = datetime(2025, 1, 1, tzinfo=UTC)

        async with RemoteStore(make_config()) as remote:
            tombstones = await remote.fetch_tombstones(since)

        assert [(t.table, t.record_id) for t in tombstones] == [("clients", "c1"), ("cases", "7")]
        assert tombstones[1].deleted_at == datetime(2025, 1, 3, 10, 0, tzinfo=UTC)
        assert httpx_mock.get_request().url.params["deleted_at"] == f"gte.{since.isoformat()}"

    @pytest.mark.asyncio
    async def test_upsert(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should upsert on the key column and return the stored rows."""
        stored = [{"id": "c1", "name": "Ali", "user_id": "owner-1"}]
        httpx_mock.add_response(url=table_url("clients"), method="POST", json=stored)

        async with RemoteStore(make_config()) as remote:
            result = await remote.upsert("clients", [{"id": "c1", "name": "Ali", "user_id": "owner-1"}])

        assert result == stored
        request = httpx_mock.get_request()
        assert request.url.params["on_conflict"] == "id"
        assert "resolution=merge-duplicates" in request.headers["Prefer"]
        assert json.loads(request.content) == stored

    @pytest.mark.asyncio
    async def test_upsert_assistants_on_name(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should upsert assistants on their name."""
        httpx_mock.add_response(url=table_url("assistants"), method="POST", json=[])

        async with RemoteStore(make_config()) as remote:
            await remote.upsert("assistants", [{"name": "سارة"}])

        assert httpx_mock.get_request().url.params["on_conflict"] == "name"

    @pytest.mark.asyncio
    async def test_upsert_nothing(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should not send a request for an empty batch."""
        async with RemoteStore(make_config()) as remote:
            assert await remote.upsert("clients", []) == []

        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_delete_records_tombstones(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should record tombstones, then delete the owner's rows."""
        httpx_mock.add_response(url=table_url("sync_deletions"), method="POST", status_code=201)
        httpx_mock.add_response(url=table_url("clients"), method="DELETE", status_code=204)

        async with RemoteStore(make_config()) as remote:
            remote.bind_owner("owner-1")
            await remote.delete("clients", ["c1", "c2"])

        tombstone_request, delete_request = httpx_mock.get_requests()
        assert json.loads(tombstone_request.content) == [
            {"table_name": "clients", "record_id": "c1", "user_id": "owner-1"},
            {"table_name": "clients", "record_id": "c2", "user_id": "owner-1"},
        ]
        assert delete_request.url.params["id"] == 'in.("c1","c2")'
        assert delete_request.url.params["user_id"] == "eq.owner-1"


class TestObjects:
    """Tests for object storage operations."""

    @pytest.mark.asyncio
    async def test_upload(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should upload the payload with its content type."""
        httpx_mock.add_response(url=f"{STORAGE}/owner-1/k1/d1.pdf", method="POST", json={"Key": "x"})

        async with RemoteStore(make_config()) as remote:
            await remote.upload("owner-1/k1/d1.pdf", b"%PDF", "application/pdf")

        request = httpx_mock.get_request()
        assert request.content == b"%PDF"
        assert request.headers["Content-Type"] == "application/pdf"
        assert request.headers["x-upsert"] == "true"

    @pytest.mark.asyncio
    async def test_download(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return the object bytes."""
        httpx_mock.add_response(url=f"{STORAGE}/owner-1/k1/d1.pdf", method="GET", content=b"%PDF")

        async with RemoteStore(make_config()) as remote:
            assert await remote.download("owner-1/k1/d1.pdf") == b"%PDF"

    @pytest.mark.asyncio
    async def test_download_missing(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise NotFoundError for a missing object."""
        httpx_mock.add_response(
            url=f"{STORAGE}/owner-1/k1/d1.pdf",
            status_code=400,
            json={"statusCode": "404", "error": "not_found", "message": "Object not found"},
        )

        async with RemoteStore(make_config()) as remote:
            with pytest.raises(NotFoundError):
                await remote.download("owner-1/k1/d1.pdf")

    @pytest.mark.asyncio
    async def test_remove(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should remove objects by prefix."""
        httpx_mock.add_response(url=STORAGE, method="DELETE", json=[])

        async with RemoteStore(make_config()) as remote:
            await remote.remove(["owner-1/k1/d1.pdf"])

        assert json.loads(httpx_mock.get_request().content) == {"prefixes": ["owner-1/k1/d1.pdf"]}


class TestSignIn:
    """Tests for password sign-in."""

    @pytest.mark.asyncio
    async def test_sign_in(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should return the session of the user."""
        httpx_mock.add_response(
            url=f"{BASE}/auth/v1/token?grant_type=password",
            method="POST",
            json={"access_token": "jwt", "user": {"id": "u1", "email": "a@example.com"}},
        )

        async with RemoteStore(make_config(access_token=None)) as remote:
            session = await remote.sign_in("a@example.com", "secret")

        assert session.user_id == "u1"
        assert session.access_token == "jwt"
        assert json.loads(httpx_mock.get_request().content) == {"email": "a@example.com", "password": "secret"}

    @pytest.mark.asyncio
    async def test_invalid_credentials(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Should raise PermissionDeniedError for wrong credentials."""
        httpx_mock.add_response(
            url=f"{BASE}/auth/v1/token?grant_type=password",
            status_code=400,
            json={"error": "invalid_grant"},
        )

        async with RemoteStore(make_config(access_token=None)) as remote:
            with pytest.raises(PermissionDeniedError, match="Invalid email or password"):
                await remote.sign_in("a@example.com", "wrong")
