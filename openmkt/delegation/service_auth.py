"""
Service-Scoped Delegation

Exchanges the primary session for a short-lived token bound to exactly one
(audience, operation) pair via `com.atproto.server.getServiceAuth`.

Tokens are never cached or persisted: every downstream call requests its own.
A failure here degrades the feature that needed the token and leaves the
primary session untouched.
"""

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

import structlog

from openmkt.config import Settings
from openmkt.monitoring.metrics import delegated_tokens_total
from openmkt.security.session_manager import SessionManager
from openmkt.security.tokens import NonceRetryExhaustedError
from openmkt.xrpc import (
    HostUnreachableError,
    OpenMarketError,
    RateLimitError,
    XrpcError,
    raise_for_xrpc_status,
    xrpc_url,
)

logger = structlog.get_logger(__name__)

SCOPE_ERRORS = frozenset({"InvalidScope", "InsufficientScope", "ScopeMissing", "MissingScope"})


class DenialReason(str, Enum):
    """User-actionable reasons a delegated call was refused."""

    SENDER_NOT_FOLLOWED = "sender_not_followed"
    RECIPIENT_DISABLED = "recipient_disabled"
    SCOPE_NOT_GRANTED = "scope_not_granted"
    BLOCKED = "blocked"


class DelegationError(OpenMarketError):
    """A delegated token or delegated call failed for a non-actionable reason."""

    def __init__(self, message: str, code: str = "unavailable"):
        self.code = code
        super().__init__(message)


class DelegationDeniedError(DelegationError):
    """Refused by policy; `code` is a DenialReason value with its own remediation."""

    def __init__(self, reason: DenialReason, message: str = ""):
        self.reason = reason
        super().__init__(message or reason.value, code=reason.value)


class DelegationRateLimitedError(DelegationError):
    """Token issuer or messaging service rate-limited the call; retry after `reset_at`."""

    def __init__(self, error: RateLimitError, message: str = ""):
        self.reset_at = error.reset_at
        self.retry_after = error.retry_after
        super().__init__(message or str(error), code="rate_limited")


@dataclass
class DelegatedToken:
    token: str = field(repr=False)
    audience: str
    operation: str
    expires_at: datetime


class DelegationClient:
    """Requests one delegated token per downstream operation."""

    def __init__(self, session_manager: SessionManager, settings: Settings):
        self._sessions = session_manager
        self._settings = settings

    async def get_delegated_token(self, audience: str, operation: str) -> DelegatedToken:
        """
        Raises:
            NotAuthenticatedError: no primary session
            DelegationDeniedError: session's scope does not cover the operation
            DelegationRateLimitedError: token issuer rate-limited the request
            DelegationError: token could not be obtained
        """
        session = await self._sessions.require_session()
        exp = int(time.time()) + self._settings.delegated_token_ttl_seconds

        try:
            response = await self._sessions.request(
                "GET",
                xrpc_url(session.pds_url, "com.atproto.server.getServiceAuth"),
                params={"aud": audience, "lxm": operation, "exp": exp},
            )
            raise_for_xrpc_status(response)
            token = response.json()["token"]
        except RateLimitError as e:
            delegated_tokens_total.inc(outcome="rate_limited")
            logger.warning(
                "delegated_token_rate_limited",
                audience=audience,
                operation=operation,
                reset_at=e.reset_at.isoformat() if e.reset_at else None,
            )
            raise DelegationRateLimitedError(e, f"Delegated token for {operation} rate-limited") from e
        except XrpcError as e:
            delegated_tokens_total.inc(outcome="failed")
            logger.warning(
                "delegated_token_failed",
                audience=audience,
                operation=operation,
                status=e.status_code,
                error=e.error,
            )
            if e.status_code == 403 or e.error in SCOPE_ERRORS:
                raise DelegationDeniedError(DenialReason.SCOPE_NOT_GRANTED, str(e)) from e
            raise DelegationError(f"Delegated token unavailable for {operation}: {e}") from e
        except (HostUnreachableError, NonceRetryExhaustedError, KeyError, ValueError) as e:
            delegated_tokens_total.inc(outcome="failed")
            logger.warning("delegated_token_failed", audience=audience, operation=operation, error=str(e))
            raise DelegationError(f"Delegated token unavailable for {operation}: {e}") from e

        delegated_tokens_total.inc(outcome="issued")
        logger.debug("delegated_token_issued", audience=audience, operation=operation)
        return DelegatedToken(
            token=token,
            audience=audience,
            operation=operation,
            expires_at=datetime.fromtimestamp(exp, tz=UTC),
        )
