"""
OAuth Authorization-Code Client (PKCE + DPoP)

Login state machine per attempt:

    START -> AUTHORIZING -> CALLBACK_RECEIVED -> EXCHANGING -> ESTABLISHED
                     (any state) -> FAILED

The authorization server is discovered from the user's handle:
handle -> DID -> PDS -> /.well-known/oauth-protected-resource ->
/.well-known/oauth-authorization-server.

Tokens returned by the exchange are bound to a DPoP key generated for that
session alone.
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from urllib.parse import urlencode

import httpx
import structlog
from pydantic import Field, ValidationError

from openmkt.config import Settings
from openmkt.identity.resolver import IdentityResolver, normalize_handle
from openmkt.models.base import OpenMktModel
from openmkt.models.session import DPoPSession
from openmkt.monitoring.metrics import token_refreshes_total
from openmkt.security.crypto import DPoPKey, PKCEPair, generate_pkce, generate_state
from openmkt.security.dpop import DPoPNonceCache, DPoPRequester
from openmkt.security.tokens import (
    AuthenticationError,
    AuthorizationServerError,
    AuthStateMismatchError,
    NonceRetryExhaustedError,
    TokenExchangeError,
    TokenRefreshError,
    expiry_from_lifetime,
    is_token_rejection,
)
from openmkt.xrpc import (
    HostUnreachableError,
    RateLimitError,
    XrpcError,
    error_body,
    raise_for_xrpc_status,
    send,
)

logger = structlog.get_logger(__name__)


class LoginState(str, Enum):
    START = "start"
    AUTHORIZING = "authorizing"
    CALLBACK_RECEIVED = "callback_received"
    EXCHANGING = "exchanging"
    ESTABLISHED = "established"
    FAILED = "failed"


class AuthorizationServerMetadata(OpenMktModel):
    """Subset of RFC 8414 metadata used by this client."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    pushed_authorization_request_endpoint: str | None = None
    dpop_signing_alg_values_supported: list[str] = Field(default_factory=list)


class OAuthTokens(OpenMktModel):
    """Token endpoint response."""

    access_token: str = Field(repr=False)
    token_type: str
    refresh_token: str | None = Field(default=None, repr=False)
    expires_in: int | None = None
    scope: str = ""
    sub: str


@dataclass
class LoginAttempt:
    """One interactive login, from redirect to callback."""

    handle: str
    state: str = field(default_factory=generate_state, repr=False)
    pkce: PKCEPair = field(default_factory=generate_pkce, repr=False)
    status: LoginState = LoginState.START
    did: str | None = None
    pds_url: str | None = None
    auth_server: str | None = None
    metadata: AuthorizationServerMetadata | None = None
    authorization_url: str | None = None
    error: str | None = None

    def fail(self, reason: str) -> None:
        self.status = LoginState.FAILED
        self.error = reason


class OAuthClient:
    """Runs the authorization-code handshake and refreshes DPoP-bound tokens."""

    PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
    AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"

    def __init__(
        self,
        http: httpx.AsyncClient,
        resolver: IdentityResolver,
        settings: Settings,
        nonces: DPoPNonceCache | None = None,
    ):
        self._http = http
        self._resolver = resolver
        self._settings = settings
        self.nonces = nonces or DPoPNonceCache()
        self._metadata: dict[str, AuthorizationServerMetadata] = {}

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover_authorization_server(self, handle: str) -> tuple[str, str, str]:
        """
        Find the authorization server for a handle.

        Returns:
            (did, pds_url, auth_server)

        Raises:
            IdentityResolutionError: handle does not resolve to a DID
        """
        did = await self._resolver.resolve_handle(handle)

        resolution = await self._resolver.resolve(did)
        pds_url = resolution.endpoint if resolution.resolved else None
        if pds_url is None:
            pds_url = self._settings.default_pds_url
            logger.info("oauth_pds_default", did=did, pds=pds_url)

        try:
            response = await send(self._http, "GET", f"{pds_url}{self.PROTECTED_RESOURCE_PATH}")
            raise_for_xrpc_status(response)
            servers = response.json().get("authorization_servers") or []
        except (XrpcError, HostUnreachableError, ValueError, AttributeError) as e:
            logger.warning("protected_resource_lookup_failed", pds=pds_url, error=str(e))
            servers = []

        auth_server = servers[0] if servers and isinstance(servers[0], str) else pds_url
        return did, pds_url, auth_server.rstrip("/")

    async def fetch_server_metadata(self, auth_server: str) -> AuthorizationServerMetadata:
        """
        Raises:
            AuthorizationServerError: metadata missing or invalid
        """
        cached = self._metadata.get(auth_server)
        if cached is not None:
            return cached

        url = f"{auth_server}{self.AUTHORIZATION_SERVER_PATH}"
        try:
            response = await send(self._http, "GET", url)
            raise_for_xrpc_status(response)
            metadata = AuthorizationServerMetadata.model_validate(response.json())
        except (XrpcError, HostUnreachableError, ValueError, ValidationError) as e:
            raise AuthorizationServerError(f"Authorization server metadata unavailable: {url}") from e

        if metadata.issuer.rstrip("/") != auth_server.rstrip("/"):
            raise AuthorizationServerError(
                f"Issuer mismatch: expected {auth_server}, got {metadata.issuer}"
            )

        self._metadata[auth_server] = metadata
        return metadata

    # =========================================================================
    # Handshake
    # =========================================================================

    async def begin_login(self, handle: str) -> LoginAttempt:
        """Discover the authorization server and build the redirect URL."""
        attempt = LoginAttempt(handle=normalize_handle(handle))

        try:
            attempt.did, attempt.pds_url, attempt.auth_server = (
                await self.discover_authorization_server(attempt.handle)
            )
            attempt.metadata = await self.fetch_server_metadata(attempt.auth_server)
        except AuthenticationError as e:
            attempt.fail(str(e))
            raise

        params = {
            "client_id": self._settings.oauth_client_id,
            "redirect_uri": self._settings.oauth_redirect_uri,
            "response_type": "code",
            "scope": self._settings.oauth_scope,
            "state": attempt.state,
            "code_challenge": attempt.pkce.challenge,
            "code_challenge_method": attempt.pkce.method,
            "login_hint": attempt.handle,
        }
        attempt.authorization_url = f"{attempt.metadata.authorization_endpoint}?{urlencode(params)}"
        attempt.status = LoginState.AUTHORIZING

        logger.info("oauth_login_started", handle=attempt.handle, auth_server=attempt.auth_server)
        return attempt

    async def complete_login(
        self,
        attempt: LoginAttempt,
        code: str,
        state: str,
        iss: str | None = None,
        issued_at: datetime | None = None,
    ) -> DPoPSession:
        """
        Exchange the callback code for a DPoP-bound session.

        A state mismatch fails the attempt without any token request.
        `issued_at` anchors the token expiry; it defaults to now.

        Raises:
            AuthStateMismatchError: callback state differs from the attempt's
            AuthorizationServerError: callback issuer differs from the attempt's
            TokenExchangeError: token endpoint rejected the code
            NonceRetryExhaustedError: token endpoint kept rejecting the proof
            RateLimitError, XrpcError: token endpoint rate-limited or failed
        """
        if attempt.status != LoginState.AUTHORIZING or attempt.metadata is None:
            raise AuthenticationError(f"Login attempt is not awaiting a callback ({attempt.status.value})")

        attempt.status = LoginState.CALLBACK_RECEIVED

        if not secrets.compare_digest(state.encode(), attempt.state.encode()):
            attempt.fail("state mismatch")
            logger.warning("oauth_state_mismatch", handle=attempt.handle)
            raise AuthStateMismatchError("OAuth callback state does not match this login attempt")

        if iss is not None and iss.rstrip("/") != attempt.metadata.issuer.rstrip("/"):
            attempt.fail("issuer mismatch")
            raise AuthorizationServerError(f"Callback issuer {iss} does not match {attempt.metadata.issuer}")

        attempt.status = LoginState.EXCHANGING
        key = DPoPKey.generate()

        try:
            tokens = await self._token_request(
                attempt.metadata,
                key,
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self._settings.oauth_redirect_uri,
                    "client_id": self._settings.oauth_client_id,
                    "code_verifier": attempt.pkce.verifier,
                },
            )
        except (TokenExchangeError, NonceRetryExhaustedError, XrpcError, HostUnreachableError) as e:
            attempt.fail(str(e))
            raise

        if attempt.did and tokens.sub != attempt.did:
            attempt.fail("subject mismatch")
            raise TokenExchangeError(f"Token subject {tokens.sub} does not match {attempt.did}")

        session = DPoPSession(
            did=tokens.sub,
            handle=attempt.handle,
            pds_url=attempt.pds_url or self._settings.default_pds_url,
            auth_server=attempt.auth_server or attempt.metadata.issuer,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type,
            scope=tokens.scope,
            expires_at=expiry_from_lifetime(tokens.expires_in, issued_at),
            dpop_key_pem=key.to_pem(),
        )
        attempt.status = LoginState.ESTABLISHED
        logger.info("oauth_login_established", did=session.did, scope=session.scope)
        return session

    async def refresh(self, session: DPoPSession, issued_at: datetime | None = None) -> DPoPSession:
        """
        Exchange the refresh token at the session's own authorization server.

        `issued_at` anchors the new expiry; it defaults to now.

        Raises:
            TokenRefreshError: no refresh token, or the server rejected it
            RateLimitError: token endpoint rate-limited the refresh
            XrpcError, HostUnreachableError: token endpoint failed
            AuthenticationError: metadata, nonce retry or response problems
                that leave the refresh token usable
        """
        if not session.refresh_token:
            token_refreshes_total.inc(kind="dpop", outcome="rejected")
            raise TokenRefreshError("Session has no refresh token")

        key = DPoPKey.from_pem(session.dpop_key_pem)
        try:
            metadata = await self.fetch_server_metadata(session.auth_server)
            tokens = await self._token_request(
                metadata,
                key,
                {
                    "grant_type": "refresh_token",
                    "refresh_token": session.refresh_token,
                    "client_id": self._settings.oauth_client_id,
                },
            )
        except TokenExchangeError as e:
            if is_token_rejection(e.status_code, e.error):
                token_refreshes_total.inc(kind="dpop", outcome="rejected")
                raise TokenRefreshError(f"Refresh rejected by {session.auth_server}: {e}") from e
            token_refreshes_total.inc(kind="dpop", outcome="failed")
            raise
        except RateLimitError:
            token_refreshes_total.inc(kind="dpop", outcome="rate_limited")
            raise
        except (AuthenticationError, XrpcError, HostUnreachableError):
            token_refreshes_total.inc(kind="dpop", outcome="failed")
            raise

        if tokens.sub != session.did:
            token_refreshes_total.inc(kind="dpop", outcome="rejected")
            raise TokenRefreshError(f"Refreshed token subject {tokens.sub} does not match {session.did}")

        token_refreshes_total.inc(kind="dpop", outcome="succeeded")
        return session.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or session.refresh_token,
                "scope": tokens.scope or session.scope,
                "expires_at": expiry_from_lifetime(tokens.expires_in, issued_at),
            }
        )

    async def _token_request(
        self,
        metadata: AuthorizationServerMetadata,
        key: DPoPKey,
        form: dict[str, str],
    ) -> OAuthTokens:
        requester = DPoPRequester(self._http, key, self.nonces)
        response = await requester.send("POST", metadata.token_endpoint, data=form)

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "oauth_token_endpoint_unavailable",
                status=response.status_code,
                grant_type=form.get("grant_type"),
            )
            raise_for_xrpc_status(response)

        if not response.is_success:
            body = error_body(response)
            logger.warning(
                "oauth_token_request_failed",
                status=response.status_code,
                error=body.get("error"),
                grant_type=form.get("grant_type"),
            )
            raise TokenExchangeError(
                body.get("error_description") or f"Token endpoint returned {response.status_code}",
                error=body.get("error"),
                status_code=response.status_code,
            )

        try:
            tokens = OAuthTokens.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenExchangeError("Malformed token response") from e

        if tokens.token_type.lower() != "dpop":
            raise TokenExchangeError(f"Expected a DPoP-bound token, got {tokens.token_type}")
        return tokens
