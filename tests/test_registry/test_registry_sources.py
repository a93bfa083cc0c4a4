"""
Tests for openmkt.registry.storage and openmkt.registry.verified.
"""

from datetime import UTC, datetime

import httpx
import pytest

from conftest import APPVIEW
from openmkt.registry.storage import LocalIdentityStore
from openmkt.registry.verified import VerifiedSellerSource
from openmkt.xrpc import XrpcError

FOLLOWS_URL = f"{APPVIEW}/xrpc/app.bsky.graph.getFollows"


class TestLocalIdentityStore:
    """Tests for the local identity file."""

    def test_round_trip(self, tmp_path):
        store = LocalIdentityStore(tmp_path / "nested" / "dids.json")
        seen = datetime(2025, 3, 1, tzinfo=UTC)

        store.save({"did:plc:a": seen})

        assert store.load() == {"did:plc:a": seen}

    def test_missing_file_is_empty(self, tmp_path):
        assert LocalIdentityStore(tmp_path / "absent.json").load() == {}

    def test_corrupt_file_is_empty(self, tmp_path):
        path = tmp_path / "dids.json"
        path.write_text("{not json")

        assert LocalIdentityStore(path).load() == {}

    def test_no_path_is_memory_only(self):
        store = LocalIdentityStore(None)
        store.save({"did:plc:a": datetime.now(UTC)})
        assert store.load() == {}


class TestVerifiedSellerSource:
    """Tests for the follow-graph source."""

    @pytest.mark.asyncio
    async def test_fetches_follows(self, settings, hosts, http):
        hosts.add_json("GET", FOLLOWS_URL, {
            "subject": {"did": "did:plc:bot"},
            "follows": [{"did": "did:plc:s1", "handle": "s1.test"}, {"did": "did:plc:s2"}],
        })

        dids = await VerifiedSellerSource(http, settings).fetch()

        assert dids == ["did:plc:s1", "did:plc:s2"]
        params = hosts.calls_to(FOLLOWS_URL)[0].url.params
        assert params["actor"] == "registry.openmkt.test"
        assert params["limit"] == "100"

    @pytest.mark.asyncio
    async def test_follows_cursor_pages(self, settings, hosts, http):
        def page(request):
            if request.url.params.get("cursor") == "p2":
                return httpx.Response(200, json={"follows": [{"did": "did:plc:s2"}]})
            return httpx.Response(200, json={"follows": [{"did": "did:plc:s1"}], "cursor": "p2"})

        hosts.add("GET", FOLLOWS_URL, page)

        dids = await VerifiedSellerSource(http, settings).fetch()

        assert dids == ["did:plc:s1", "did:plc:s2"]

    @pytest.mark.asyncio
    async def test_unconfigured_returns_empty(self, settings, hosts, http):
        settings = settings.model_copy(update={"registry_bot_actor": None})

        assert await VerifiedSellerSource(http, settings).fetch() == []
        assert hosts.calls == []

    @pytest.mark.asyncio
    async def test_upstream_error_raises(self, settings, hosts, http):
        hosts.add_json("GET", FOLLOWS_URL, {"error": "InternalServerError"}, status=500)

        with pytest.raises(XrpcError):
            await VerifiedSellerSource(http, settings).fetch()
