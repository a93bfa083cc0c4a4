"""
Session Manager

Owns the one current Session of this client instance and signs every
authenticated request with it.

- Classic sessions send `Authorization: Bearer <accessJwt>`.
- DPoP sessions send `Authorization: DPoP <token>` plus a proof, with the
  single nonce retry.
- Access tokens within `token_refresh_margin_seconds` of expiry are refreshed
  before the request is made. A rejected refresh token invalidates the
  session; it never degrades to anonymous access. Rate limits and host
  failures reach the caller with the session intact.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx
import structlog

from openmkt.config import Settings
from openmkt.models.base import utc_now
from openmkt.models.session import ClassicSession, DPoPSession
from openmkt.security.classic import ClassicAuthClient
from openmkt.security.crypto import DPoPKey
from openmkt.security.dpop import DPoPRequester
from openmkt.security.oauth import LoginAttempt, OAuthClient
from openmkt.security.session_store import SessionStore
from openmkt.security.tokens import (
    AuthenticationError,
    NotAuthenticatedError,
    TokenRefreshError,
    is_token_rejection,
)
from openmkt.xrpc import XrpcError, raise_for_xrpc_status, send, xrpc_url

logger = structlog.get_logger(__name__)

AnySession = ClassicSession | DPoPSession


class SessionManager:
    """Current session, its refresh lifecycle and request signing."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: Settings,
        oauth: OAuthClient | None = None,
        classic: ClassicAuthClient | None = None,
        store: SessionStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._http = http
        self._settings = settings
        self._oauth = oauth
        self._classic = classic or ClassicAuthClient(http, settings)
        self._store = store
        self._clock = clock

        self._session: AnySession | None = None
        self._requester: DPoPRequester | None = None
        self._refresh_task: asyncio.Task[AnySession] | None = None

    @property
    def current(self) -> AnySession | None:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    def establish(self, session: AnySession) -> None:
        """Make a session current and persist it."""
        self._activate(session)
        if self._store is not None:
            self._store.save(session)
        logger.info("session_established", did=session.did, kind=session.kind)

    def invalidate(self, reason: str = "") -> None:
        """Drop the current session and its persisted copy."""
        if self._session is not None:
            logger.warning("session_invalidated", did=self._session.did, reason=reason)
        self._session = None
        self._requester = None
        if self._store is not None:
            self._store.clear()

    # =========================================================================
    # Login / logout
    # =========================================================================

    async def login_with_password(
        self,
        identifier: str,
        password: str,
        pds_url: str | None = None,
    ) -> ClassicSession:
        session = await self._classic.login(identifier, password, pds_url)
        self.establish(session)
        return session

    def _require_oauth(self) -> OAuthClient:
        if self._oauth is None:
            raise AuthenticationError("OAuth is not configured for this client")
        return self._oauth

    async def begin_oauth_login(self, handle: str) -> LoginAttempt:
        return await self._require_oauth().begin_login(handle)

    async def complete_oauth_login(
        self,
        attempt: LoginAttempt,
        code: str,
        state: str,
        iss: str | None = None,
    ) -> DPoPSession:
        """Nothing is stored unless the handshake completes."""
        oauth = self._require_oauth()
        session = await oauth.complete_login(attempt, code, state, iss, issued_at=self._clock())
        self.establish(session)
        return session

    async def logout(self) -> None:
        self.invalidate("logout")
        if self._oauth is not None:
            self._oauth.nonces.clear()

    async def resume(self) -> AnySession | None:
        """
        Resume a persisted session without interactive login.

        The session is re-validated against its own originating host (PDS, and
        authorization server for refresh), never a default host. It only
        becomes current once validation succeeds. A rejected token clears the
        stored copy; any other failure leaves it for a later attempt.

        Returns:
            The resumed session, or None if nothing was stored

        Raises:
            TokenRefreshError: stored refresh token rejected
            AuthenticationError: stored access token rejected
            RateLimitError, XrpcError, HostUnreachableError: host unavailable
        """
        if self._store is None:
            return None
        stored = self._store.load()
        if stored is None:
            return None

        self._activate(stored)
        try:
            session = await self.require_session()
            data = await self._validate(session)
        except TokenRefreshError:
            raise
        except XrpcError as e:
            if is_token_rejection(e.status_code, e.error):
                self.invalidate("resume rejected")
                raise AuthenticationError(f"Stored session rejected by {stored.pds_url}") from e
            self._deactivate()
            raise
        except Exception:
            self._deactivate()
            raise

        if data.get("did") != session.did:
            self.invalidate("resume subject mismatch")
            raise AuthenticationError("Stored session belongs to another account")

        logger.info("session_resumed", did=session.did, kind=session.kind)
        return session

    def _activate(self, session: AnySession) -> None:
        self._session = session
        if isinstance(session, DPoPSession):
            nonces = self._oauth.nonces if self._oauth is not None else None
            self._requester = DPoPRequester(self._http, DPoPKey.from_pem(session.dpop_key_pem), nonces)
        else:
            self._requester = None

    def _deactivate(self) -> None:
        """Drop the current session but keep the stored copy."""
        self._session = None
        self._requester = None

    async def _validate(self, session: AnySession) -> dict[str, Any]:
        """getSession at the session's own PDS."""
        if isinstance(session, ClassicSession):
            return await self._classic.get_session(session)

        response = await self.request("GET", xrpc_url(session.pds_url, "com.atproto.server.getSession"))
        raise_for_xrpc_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise AuthenticationError("Malformed getSession response") from e
        if not isinstance(data, dict):
            raise AuthenticationError("Malformed getSession response")
        return data

    # =========================================================================
    # Token lifecycle
    # =========================================================================

    async def require_session(self) -> AnySession:
        """
        The current session, refreshed if near expiry.

        Raises:
            NotAuthenticatedError: no current session
            TokenRefreshError: refresh token rejected; session invalidated
            RateLimitError, XrpcError, HostUnreachableError: refresh could not
                complete; session kept
        """
        if self._session is None:
            raise NotAuthenticatedError("This operation requires a logged-in session")
        await self.ensure_fresh()
        if self._session is None:
            raise NotAuthenticatedError("Session was invalidated")
        return self._session

    async def ensure_fresh(self) -> None:
        session = self._session
        if session is None:
            return
        if session.expires_within(self._settings.token_refresh_margin_seconds, self._clock()):
            await self.refresh()

    async def refresh(self) -> AnySession:
        """Refresh the current session. Concurrent callers share one refresh."""
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> AnySession:
        # Only a rejected refresh token invalidates; rate limits and host
        # failures propagate with the session intact.
        try:
            session = self._session
            if session is None:
                raise NotAuthenticatedError("No session to refresh")

            try:
                if isinstance(session, DPoPSession):
                    oauth = self._require_oauth()
                    refreshed: AnySession = await oauth.refresh(session, issued_at=self._clock())
                else:
                    refreshed = await self._classic.refresh(session)
            except TokenRefreshError as e:
                self.invalidate(str(e))
                raise

            self.establish(refreshed)
            logger.info("session_refreshed", did=refreshed.did, kind=refreshed.kind)
            return refreshed
        finally:
            self._refresh_task = None

    # =========================================================================
    # Authenticated requests
    # =========================================================================

    async def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request as the current session.

        Raises:
            NotAuthenticatedError: no current session
            TokenRefreshError: refresh before the request failed
            NonceRetryExhaustedError: DPoP proof rejected after the nonce retry
        """
        session = await self.require_session()

        if isinstance(session, DPoPSession):
            if self._requester is None:
                raise NotAuthenticatedError("DPoP session has no signing key")
            return await self._requester.send(
                method,
                url,
                access_token=session.access_token,
                headers=headers,
                **kwargs,
            )

        request_headers = dict(headers or {})
        request_headers["Authorization"] = f"Bearer {session.access_jwt}"
        return await send(self._http, method, url, headers=request_headers, **kwargs)
