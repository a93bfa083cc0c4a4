"""
Open Market - Test Fixtures

Shared pytest fixtures for all test modules. Remote hosts (directory, PDS,
AppView, authorization server, messaging service) are stood in for by an
httpx.MockTransport router.
"""

from __future__ import annotations

import inspect
import os
from collections.abc import Callable
from typing import Any

import httpx
import jwt
import pytest

os.environ["OPENMKT_APP_ENV"] = "testing"

from openmkt.config import Settings  # noqa: E402

DIRECTORY = "https://plc.test"
DEFAULT_PDS = "https://pds.test"
APPVIEW = "https://appview.test"
CDN = "https://cdn.test"
CHAT = "https://chat.test"
COLLECTION = "app.atprotomkt.marketplace.listing"

Handler = Callable[[httpx.Request], Any]


# =============================================================================
# Remote host router
# =============================================================================


class RemoteHosts:
    """
    Routes requests by (method, URL without query) and records every call.

    Handlers may be sync or async and must return an httpx.Response.
    Unrouted requests get a 404.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, url: str, handler: Handler) -> None:
        self.routes[(method.upper(), url)] = handler

    def add_json(
        self,
        method: str,
        url: str,
        body: Any,
        status: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.add(method, url, lambda request: httpx.Response(status, json=body, headers=headers))

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, str(request.url).split("?")[0])
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": "NotFound", "message": "no route"})
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def calls_to(self, url: str, method: str | None = None) -> list[httpx.Request]:
        return [
            r for r in self.calls
            if str(r.url).split("?")[0] == url and (method is None or r.method == method.upper())
        ]


# =============================================================================
# Document and record builders
# =============================================================================


def did_document(
    did: str,
    pds: str | None = None,
    handle: str | None = None,
) -> dict[str, Any]:
    """A DID document; omit `pds` for one without a repository service entry."""
    service = []
    if pds is not None:
        service.append({
            "id": "#atproto_pds",
            "type": "AtprotoPersonalDataServer",
            "serviceEndpoint": pds,
        })
    return {
        "@context": ["https://www.w3.org/ns/did/v1"],
        "id": did,
        "alsoKnownAs": [f"at://{handle}"] if handle else [],
        "service": service,
    }


def listing_value(title: str = "Oak table", **overrides: Any) -> dict[str, Any]:
    value: dict[str, Any] = {
        "$type": COLLECTION,
        "title": title,
        "description": "Solid oak, seats six",
        "price": "$250",
        "condition": "used",
        "category": "furniture",
        "location": {"state": "Oregon", "county": "Lane", "locality": "Eugene", "zipPrefix": "974"},
        "createdAt": "2025-03-01T12:00:00.000Z",
        "images": [
            {
                "$type": "blob",
                "ref": {"$link": "bafkreiimage1"},
                "mimeType": "image/jpeg",
                "size": 48213,
            }
        ],
    }
    value.update(overrides)
    return value


def listing_record(did: str, rkey: str, value: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "uri": f"at://{did}/{COLLECTION}/{rkey}",
        "cid": f"bafyrei{rkey}",
        "value": value if value is not None else listing_value(),
    }


def make_jwt(claims: dict[str, Any]) -> str:
    """HS256 JWT; the client only ever reads its claims."""
    return jwt.encode(claims, "test-secret-key-at-least-32-characters-long", algorithm="HS256")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing every host at the mock router."""
    return Settings(
        _env_file=None,
        app_env="testing",
        directory_url=DIRECTORY,
        default_pds_url=DEFAULT_PDS,
        appview_url=APPVIEW,
        cdn_url=CDN,
        chat_service_url=CHAT,
        seed_dids="did:plc:seed",
        registry_bot_actor="registry.openmkt.test",
        registry_storage_path=str(tmp_path / "marketplace-dids.json"),
        session_storage_path=str(tmp_path / "session.json"),
        request_timeout_seconds=2.0,
    )


@pytest.fixture
def hosts() -> RemoteHosts:
    return RemoteHosts()


@pytest.fixture
def http(hosts: RemoteHosts) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(hosts), follow_redirects=False)
