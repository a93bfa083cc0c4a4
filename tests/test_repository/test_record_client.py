"""
Tests for openmkt.repository.client.

Tests cover:
- Anonymous listRecords / getRecord against a resolved host
- Bounded list limits
- Typed errors for unresolved identities, rate limits and unreachable hosts
- Session-backed createRecord / putRecord / deleteRecord / uploadBlob
"""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import COLLECTION, DIRECTORY, did_document, listing_record
from openmkt.identity.resolver import IdentityResolver
from openmkt.models.session import ClassicSession
from openmkt.repository.client import (
    RecordOwnershipError,
    RecordStoreClient,
    UnresolvedIdentityError,
)
from openmkt.security.session_manager import SessionManager
from openmkt.security.tokens import NotAuthenticatedError
from openmkt.xrpc import HostUnreachableError, RateLimitError, XrpcError

BOB_HOST = "https://bob.host"


def _client(http, settings, manager=None) -> RecordStoreClient:
    return RecordStoreClient(http, IdentityResolver(http, settings), settings, manager)


def _session(**overrides) -> ClassicSession:
    values = {
        "did": "did:plc:me",
        "handle": "me.test",
        "pds_url": "https://my.host",
        "access_jwt": "access-1",
        "refresh_jwt": "refresh-1",
        "expires_at": datetime.now(UTC) + timedelta(hours=1),
    }
    values.update(overrides)
    return ClassicSession(**values)


# =============================================================================
# Reads
# =============================================================================


class TestListRecords:
    """Tests for listRecords."""

    @pytest.mark.asyncio
    async def test_lists_records_on_resolved_host(self, settings, hosts, http):
        hosts.add_json("GET", f"{DIRECTORY}/did:plc:bob", did_document("did:plc:bob", pds=BOB_HOST))
        url = f"{BOB_HOST}/xrpc/com.atproto.repo.listRecords"
        hosts.add_json("GET", url, {"records": [listing_record("did:plc:bob", "a1")]})

        records = await _client(http, settings).list_records("did:plc:bob")

        assert [r.uri for r in records] == [f"at://did:plc:bob/{COLLECTION}/a1"]
        params = hosts.calls_to(url)[0].url.params
        assert params["repo"] == "did:plc:bob"
        assert params["collection"] == COLLECTION
        assert params["limit"] == "100"

    @pytest.mark.asyncio
    async def test_limit_is_bounded(self, settings, hosts, http):
        url = f"{BOB_HOST}/xrpc/com.atproto.repo.listRecords"
        hosts.add_json("GET", url, {"records": []})

        await _client(http, settings).list_records("did:plc:bob", limit=5000, host=BOB_HOST)

        assert hosts.calls_to(url)[0].url.params["limit"] == "100"

    @pytest.mark.asyncio
    async def test_single_page_only(self, settings, hosts, http):
        """A cursor in the response is not followed."""
        url = f"{BOB_HOST}/xrpc/com.atproto.repo.listRecords"
        hosts.add_json("GET", url, {"records": [], "cursor": "next"})

        await _client(http, settings).list_records("did:plc:bob", host=BOB_HOST)

        assert len(hosts.calls_to(url)) == 1

    @pytest.mark.asyncio
    async def test_empty_repository(self, settings, hosts, http):
        hosts.add_json("GET", f"{BOB_HOST}/xrpc/com.atproto.repo.listRecords", {"records": []})

        assert await _client(http, settings).list_records("did:plc:bob", host=BOB_HOST) == []

    @pytest.mark.asyncio
    async def test_skips_invalid_envelopes(self, settings, hosts, http):
        hosts.add_json(
            "GET",
            f"{BOB_HOST}/xrpc/com.atproto.repo.listRecords",
            {"records": [{"cid": "x"}, listing_record("did:plc:bob", "ok")]},
        )
        records = await _client(http, settings).list_records("did:plc:bob", host=BOB_HOST)
        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_unresolved_identity(self, settings, hosts, http):
        hosts.add_json("GET", f"{DIRECTORY}/did:plc:alice", did_document("did:plc:alice"))

        with pytest.raises(UnresolvedIdentityError) as exc_info:
            await _client(http, settings).list_records("did:plc:alice")
        assert exc_info.value.did == "did:plc:alice"

    @pytest.mark.asyncio
    async def test_rate_limit_carries_reset(self, settings, hosts, http):
        reset = int((datetime.now(UTC) + timedelta(minutes=5)).timestamp())
        hosts.add_json(
            "GET",
            f"{BOB_HOST}/xrpc/com.atproto.repo.listRecords",
            {"error": "RateLimitExceeded"},
            status=429,
            headers={"RateLimit-Reset": str(reset)},
        )
        with pytest.raises(RateLimitError) as exc_info:
            await _client(http, settings).list_records("did:plc:bob", host=BOB_HOST)

        assert exc_info.value.reset_at == datetime.fromtimestamp(reset, tz=UTC)
        assert exc_info.value.retry_after > 0
        assert len(hosts.calls) == 1

    @pytest.mark.asyncio
    async def test_forbidden_is_xrpc_error(self, settings, hosts, http):
        hosts.add_json(
            "GET",
            f"{BOB_HOST}/xrpc/com.atproto.repo.listRecords",
            {"error": "Forbidden"},
            status=403,
        )
        with pytest.raises(XrpcError) as exc_info:
            await _client(http, settings).list_records("did:plc:bob", host=BOB_HOST)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_timeout_is_host_unreachable(self, settings):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(slow)) as http:
            with pytest.raises(HostUnreachableError) as exc_info:
                await _client(http, settings).list_records("did:plc:bob", host=BOB_HOST)
        assert exc_info.value.reason == "timeout"


class TestGetRecord:
    """Tests for getRecord."""

    @pytest.mark.asyncio
    async def test_returns_record(self, settings, hosts, http):
        hosts.add_json(
            "GET",
            f"{BOB_HOST}/xrpc/com.atproto.repo.getRecord",
            listing_record("did:plc:bob", "a1"),
        )
        record = await _client(http, settings).get_record("did:plc:bob", COLLECTION, "a1", host=BOB_HOST)
        assert record.cid == "bafyreia1"

    @pytest.mark.asyncio
    async def test_record_not_found_returns_none(self, settings, hosts, http):
        hosts.add_json(
            "GET",
            f"{BOB_HOST}/xrpc/com.atproto.repo.getRecord",
            {"error": "RecordNotFound", "message": "Could not locate record"},
            status=400,
        )
        assert await _client(http, settings).get_record("did:plc:bob", COLLECTION, "x", host=BOB_HOST) is None


# =============================================================================
# Writes
# =============================================================================


class TestWrites:
    """Tests for session-backed writes."""

    def _manager(self, http, settings, session=None) -> SessionManager:
        manager = SessionManager(http, settings)
        manager.establish(session or _session())
        return manager

    @pytest.mark.asyncio
    async def test_create_record_uses_session_repo(self, settings, hosts, http):
        url = "https://my.host/xrpc/com.atproto.repo.createRecord"
        hosts.add_json("POST", url, {"uri": f"at://did:plc:me/{COLLECTION}/new", "cid": "c1"})
        client = _client(http, settings, self._manager(http, settings))

        ref = await client.put_record(COLLECTION, {"title": "x"})

        assert ref.uri == f"at://did:plc:me/{COLLECTION}/new"
        request = hosts.calls_to(url)[0]
        assert request.headers["Authorization"] == "Bearer access-1"
        body = json.loads(request.content)
        assert body["repo"] == "did:plc:me"
        assert "rkey" not in body

    @pytest.mark.asyncio
    async def test_put_record_with_rkey(self, settings, hosts, http):
        url = "https://my.host/xrpc/com.atproto.repo.putRecord"
        hosts.add_json("POST", url, {"uri": f"at://did:plc:me/{COLLECTION}/k1", "cid": "c2"})
        client = _client(http, settings, self._manager(http, settings))

        await client.put_record(COLLECTION, {"title": "x"}, rkey="k1")

        assert json.loads(hosts.calls_to(url)[0].content)["rkey"] == "k1"

    @pytest.mark.asyncio
    async def test_write_without_session_fails(self, settings, http):
        client = _client(http, settings, SessionManager(http, settings))
        with pytest.raises(NotAuthenticatedError):
            await client.put_record(COLLECTION, {"title": "x"})

    @pytest.mark.asyncio
    async def test_server_rejection_is_surfaced(self, settings, hosts, http):
        hosts.add_json(
            "POST",
            "https://my.host/xrpc/com.atproto.repo.createRecord",
            {"error": "InvalidRequest", "message": "Record/title must not be empty"},
            status=400,
        )
        client = _client(http, settings, self._manager(http, settings))
        with pytest.raises(XrpcError):
            await client.put_record(COLLECTION, {"title": ""})

    @pytest.mark.asyncio
    async def test_delete_own_record(self, settings, hosts, http):
        url = "https://my.host/xrpc/com.atproto.repo.deleteRecord"
        hosts.add_json("POST", url, {})
        client = _client(http, settings, self._manager(http, settings))

        await client.delete_record(f"at://did:plc:me/{COLLECTION}/k1")

        body = json.loads(hosts.calls_to(url)[0].content)
        assert body == {"repo": "did:plc:me", "collection": COLLECTION, "rkey": "k1"}

    @pytest.mark.asyncio
    async def test_delete_foreign_record_refused(self, settings, hosts, http):
        client = _client(http, settings, self._manager(http, settings))

        with pytest.raises(RecordOwnershipError):
            await client.delete_record(f"at://did:plc:someone/{COLLECTION}/k1")
        assert hosts.calls == []

    @pytest.mark.asyncio
    async def test_upload_blob(self, settings, hosts, http):
        url = "https://my.host/xrpc/com.atproto.repo.uploadBlob"
        hosts.add_json("POST", url, {
            "blob": {"$type": "blob", "ref": {"$link": "bafkblob"}, "mimeType": "image/png", "size": 3}
        })
        client = _client(http, settings, self._manager(http, settings))

        blob = await client.upload_blob(b"png", "image/png")

        assert blob.cid == "bafkblob"
        request = hosts.calls_to(url)[0]
        assert request.headers["Content-Type"] == "image/png"
        assert request.content == b"png"

    @pytest.mark.asyncio
    async def test_write_goes_through_manager(self, settings):
        """Writes ask the manager for the session and use its request()."""
        manager = MagicMock(spec=SessionManager)
        manager.require_session = AsyncMock(return_value=_session())
        manager.request = AsyncMock(return_value=httpx.Response(
            200,
            json={"uri": f"at://did:plc:me/{COLLECTION}/r", "cid": "c"},
            request=httpx.Request("POST", "https://my.host/xrpc/com.atproto.repo.createRecord"),
        ))
        client = RecordStoreClient(MagicMock(), MagicMock(), settings, manager)

        await client.put_record(COLLECTION, {"title": "x"})

        method, url = manager.request.call_args.args
        assert method == "POST"
        assert url == "https://my.host/xrpc/com.atproto.repo.createRecord"
