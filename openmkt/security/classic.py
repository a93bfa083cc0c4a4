"""
Classic (App Password) Sessions

createSession / refreshSession / getSession against a PDS with bearer JWTs.
"""

import httpx
import structlog

from openmkt.config import Settings
from openmkt.identity.resolver import normalize_handle
from openmkt.models.session import ClassicSession
from openmkt.monitoring.metrics import token_refreshes_total
from openmkt.security.tokens import (
    AuthenticationError,
    TokenRefreshError,
    get_token_expiry,
    is_token_rejection,
)
from openmkt.xrpc import RateLimitError, XrpcError, raise_for_xrpc_status, send, xrpc_url

logger = structlog.get_logger(__name__)


class ClassicAuthClient:
    """Password login for hosts that do not offer OAuth."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self._http = http
        self._settings = settings

    def _session_from(self, data: dict, pds_url: str) -> ClassicSession:
        return ClassicSession(
            did=data["did"],
            handle=data.get("handle") or data["did"],
            pds_url=pds_url,
            access_jwt=data["accessJwt"],
            refresh_jwt=data["refreshJwt"],
            expires_at=get_token_expiry(data["accessJwt"]),
        )

    async def login(self, identifier: str, password: str, pds_url: str | None = None) -> ClassicSession:
        """
        Raises:
            AuthenticationError: credentials rejected or response malformed
        """
        pds_url = (pds_url or self._settings.default_pds_url).rstrip("/")
        if "@" not in identifier.lstrip("@"):
            identifier = normalize_handle(identifier)

        try:
            response = await send(
                self._http,
                "POST",
                xrpc_url(pds_url, "com.atproto.server.createSession"),
                json={"identifier": identifier, "password": password},
            )
            raise_for_xrpc_status(response)
            session = self._session_from(response.json(), pds_url)
        except XrpcError as e:
            logger.warning("classic_login_failed", identifier=identifier, status=e.status_code)
            raise AuthenticationError(f"Login failed: {e.message or e.error}") from e
        except (KeyError, ValueError) as e:
            raise AuthenticationError("Malformed createSession response") from e

        logger.info("classic_login_succeeded", did=session.did)
        return session

    async def refresh(self, session: ClassicSession) -> ClassicSession:
        """
        Raises:
            TokenRefreshError: refresh JWT rejected or expired
            RateLimitError: PDS rate-limited the refresh; the session stays valid
            XrpcError, HostUnreachableError: PDS failed; the session stays valid
            AuthenticationError: malformed refreshSession response
        """
        try:
            response = await send(
                self._http,
                "POST",
                xrpc_url(session.pds_url, "com.atproto.server.refreshSession"),
                headers={"Authorization": f"Bearer {session.refresh_jwt}"},
            )
            raise_for_xrpc_status(response)
        except RateLimitError:
            token_refreshes_total.inc(kind="classic", outcome="rate_limited")
            raise
        except XrpcError as e:
            if is_token_rejection(e.status_code, e.error):
                token_refreshes_total.inc(kind="classic", outcome="rejected")
                raise TokenRefreshError(f"Refresh rejected by {session.pds_url}: {e}") from e
            token_refreshes_total.inc(kind="classic", outcome="failed")
            logger.warning("classic_refresh_failed", pds=session.pds_url, status=e.status_code)
            raise

        try:
            refreshed = self._session_from(response.json(), session.pds_url)
        except (KeyError, ValueError, TypeError) as e:
            token_refreshes_total.inc(kind="classic", outcome="failed")
            raise AuthenticationError("Malformed refreshSession response") from e

        if refreshed.did != session.did:
            token_refreshes_total.inc(kind="classic", outcome="rejected")
            raise TokenRefreshError("Refreshed session belongs to another account")

        token_refreshes_total.inc(kind="classic", outcome="succeeded")
        return refreshed

    async def get_session(self, session: ClassicSession) -> dict:
        """
        Validate the access JWT against the session's own PDS.

        Raises:
            XrpcError: PDS refused the token or failed
            AuthenticationError: malformed getSession response
        """
        response = await send(
            self._http,
            "GET",
            xrpc_url(session.pds_url, "com.atproto.server.getSession"),
            headers={"Authorization": f"Bearer {session.access_jwt}"},
        )
        raise_for_xrpc_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise AuthenticationError("Malformed getSession response") from e
        if not isinstance(data, dict):
            raise AuthenticationError("Malformed getSession response")
        return data
