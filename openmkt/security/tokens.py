"""
Token Helpers and Authentication Errors

Access tokens issued by a PDS or authorization server are opaque to this
client except for their `exp` claim, which is read (without signature
verification) to decide when to refresh.

Includes:
- Authentication error hierarchy
- Expiry extraction from JWT access tokens
- Authorization header extraction
"""

from datetime import UTC, datetime
from typing import Any

import jwt as pyjwt
import structlog
from jwt.exceptions import DecodeError, InvalidTokenError

from openmkt.xrpc import OpenMarketError

logger = structlog.get_logger(__name__)


class AuthenticationError(OpenMarketError):
    """Base exception for authentication and session lifecycle errors."""

    pass


class NotAuthenticatedError(AuthenticationError):
    """Operation requires a session and none is current."""

    pass


class AuthStateMismatchError(AuthenticationError):
    """Callback `state` differs from the one generated at login start."""

    pass


class AuthorizationServerError(AuthenticationError):
    """Authorization server discovery or metadata fetch failed."""

    pass


class TokenExchangeError(AuthenticationError):
    """Token endpoint refused the grant (authorization code or refresh token)."""

    def __init__(self, message: str, error: str | None = None, status_code: int | None = None):
        self.error = error
        self.status_code = status_code
        super().__init__(message)


class NonceRetryExhaustedError(AuthenticationError):
    """Server rejected the request again after the single nonce retry."""

    def __init__(self, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(f"DPoP request to {url} rejected after nonce retry (HTTP {status_code})")


class TokenRefreshError(AuthenticationError):
    """Refresh token rejected or expired. The session has been invalidated."""

    pass


def get_unverified_claims(token: str) -> dict[str, Any]:
    """
    Decode a JWT's claims without verifying its signature.

    Only used for scheduling refreshes; never for trust decisions.
    """
    try:
        claims: dict[str, Any] = pyjwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
        )
        return claims
    except (InvalidTokenError, DecodeError):
        return {}


def get_token_expiry(token: str) -> datetime | None:
    """
    Get the expiration time of a JWT access token.

    Returns:
        Datetime of expiration, or None if the token is opaque or has no `exp`
    """
    exp = get_unverified_claims(token).get("exp")
    if isinstance(exp, int | float):
        return datetime.fromtimestamp(float(exp), tz=UTC)
    return None


def expiry_from_lifetime(expires_in: Any, issued_at: datetime | None = None) -> datetime | None:
    """Absolute expiry from a token response's `expires_in` seconds."""
    if not isinstance(expires_in, int | float) or expires_in <= 0:
        return None
    issued_at = issued_at or datetime.now(UTC)
    return datetime.fromtimestamp(issued_at.timestamp() + float(expires_in), tz=UTC)


# Error codes meaning the token itself is invalid or expired (OAuth and XRPC)
REJECTED_TOKEN_ERRORS = frozenset({
    "invalid_grant",
    "invalid_token",
    "ExpiredToken",
    "InvalidToken",
    "AuthenticationRequired",
})


def is_token_rejection(status_code: int | None, error: str | None) -> bool:
    """
    True when a 400/401 says the presented token will never be accepted.

    Rate limits, server errors and nonce challenges are not rejections: the
    same token may succeed later.
    """
    return status_code in (400, 401) and error in REJECTED_TOKEN_ERRORS
