"""
Tests for openmkt.delegation.service_auth.
"""

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from openmkt.delegation.service_auth import (
    DelegationClient,
    DelegationDeniedError,
    DelegationError,
    DelegationRateLimitedError,
    DenialReason,
)
from openmkt.models.session import ClassicSession
from openmkt.security.session_manager import SessionManager
from openmkt.security.tokens import NotAuthenticatedError

MY_HOST = "https://my.host"
SERVICE_AUTH_URL = f"{MY_HOST}/xrpc/com.atproto.server.getServiceAuth"
CHAT_DID = "did:web:chat.test"


@pytest.fixture
def manager(http, settings) -> SessionManager:
    manager = SessionManager(http, settings)
    manager.establish(ClassicSession(
        did="did:plc:me",
        handle="me.test",
        pds_url=MY_HOST,
        access_jwt="access-1",
        refresh_jwt="refresh-1",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    ))
    return manager


class TestGetDelegatedToken:
    """Tests for DelegationClient.get_delegated_token."""

    @pytest.mark.asyncio
    async def test_token_bound_to_audience_and_operation(self, manager, settings, hosts):
        hosts.add_json("GET", SERVICE_AUTH_URL, {"token": "svc-token"})

        token = await DelegationClient(manager, settings).get_delegated_token(
            CHAT_DID, "chat.bsky.convo.sendMessage"
        )

        assert token.token == "svc-token"
        assert token.audience == CHAT_DID
        assert token.operation == "chat.bsky.convo.sendMessage"
        request = hosts.calls_to(SERVICE_AUTH_URL)[0]
        assert request.url.params["aud"] == CHAT_DID
        assert request.url.params["lxm"] == "chat.bsky.convo.sendMessage"
        assert request.headers["Authorization"] == "Bearer access-1"
        lifetime = token.expires_at - datetime.now(UTC)
        assert timedelta(0) < lifetime <= timedelta(seconds=settings.delegated_token_ttl_seconds)

    @pytest.mark.asyncio
    async def test_never_cached(self, manager, settings, hosts):
        hosts.add_json("GET", SERVICE_AUTH_URL, {"token": "svc-token"})
        client = DelegationClient(manager, settings)

        await client.get_delegated_token(CHAT_DID, "chat.bsky.convo.sendMessage")
        await client.get_delegated_token(CHAT_DID, "chat.bsky.convo.sendMessage")

        assert len(hosts.calls_to(SERVICE_AUTH_URL)) == 2

    @pytest.mark.asyncio
    async def test_scope_not_granted(self, manager, settings, hosts):
        hosts.add_json(
            "GET",
            SERVICE_AUTH_URL,
            {"error": "InvalidToken", "message": "Bad token scope"},
            status=403,
        )

        with pytest.raises(DelegationDeniedError) as exc_info:
            await DelegationClient(manager, settings).get_delegated_token(
                CHAT_DID, "chat.bsky.convo.sendMessage"
            )

        assert exc_info.value.reason == DenialReason.SCOPE_NOT_GRANTED
        assert exc_info.value.code == "scope_not_granted"

    @pytest.mark.asyncio
    async def test_failure_leaves_session_intact(self, manager, settings, hosts):
        hosts.add_json("GET", SERVICE_AUTH_URL, {"error": "AuthenticationRequired"}, status=401)

        with pytest.raises(DelegationError):
            await DelegationClient(manager, settings).get_delegated_token(
                CHAT_DID, "chat.bsky.convo.sendMessage"
            )

        assert manager.is_authenticated
        assert manager.current.did == "did:plc:me"

    @pytest.mark.asyncio
    async def test_unreachable_host(self, manager, settings, hosts):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        hosts.add("GET", SERVICE_AUTH_URL, refuse)

        with pytest.raises(DelegationError) as exc_info:
            await DelegationClient(manager, settings).get_delegated_token(
                CHAT_DID, "chat.bsky.convo.sendMessage"
            )
        assert exc_info.value.code == "unavailable"
        assert manager.is_authenticated

    @pytest.mark.asyncio
    async def test_rate_limit_carries_reset(self, manager, settings, hosts):
        hosts.add_json(
            "GET",
            SERVICE_AUTH_URL,
            {"error": "RateLimitExceeded"},
            status=429,
            headers={"RateLimit-Reset": "1900000000", "Retry-After": "30"},
        )

        with pytest.raises(DelegationRateLimitedError) as exc_info:
            await DelegationClient(manager, settings).get_delegated_token(
                CHAT_DID, "chat.bsky.convo.sendMessage"
            )

        assert exc_info.value.code == "rate_limited"
        assert exc_info.value.reset_at == datetime.fromtimestamp(1900000000, tz=UTC)
        assert exc_info.value.retry_after == 30.0
        assert manager.is_authenticated

    @pytest.mark.asyncio
    async def test_requires_session(self, http, settings, hosts):
        with pytest.raises(NotAuthenticatedError):
            await DelegationClient(SessionManager(http, settings), settings).get_delegated_token(
                CHAT_DID, "chat.bsky.convo.sendMessage"
            )
        assert hosts.calls == []
