"""
XRPC Transport

Shared HTTP client construction and response handling for calls to directory,
repository, AppView and messaging hosts.

Every remote failure is converted into one of the exceptions below so callers
can branch on type instead of inspecting status codes.
"""

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from openmkt.config import Settings

logger = structlog.get_logger(__name__)


class OpenMarketError(Exception):
    """Base class for all errors raised by the data-access core."""
    pass


class XrpcError(OpenMarketError):
    """Non-success response from an XRPC endpoint."""

    def __init__(self, status_code: int, error: str | None = None, message: str | None = None):
        self.status_code = status_code
        self.error = error
        self.message = message
        detail = error or "XRPCError"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(f"HTTP {status_code} {detail}")


class RateLimitError(XrpcError):
    """HTTP 429. Carries the reset time so the caller can back off."""

    def __init__(
        self,
        reset_at: datetime | None = None,
        retry_after: float | None = None,
        error: str | None = None,
        message: str | None = None,
    ):
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(429, error or "RateLimitExceeded", message)


class HostUnreachableError(OpenMarketError):
    """Network failure or timeout reaching a remote host."""

    def __init__(self, host: str, reason: str = ""):
        self.host = host
        self.reason = reason
        super().__init__(f"Host unreachable: {host}" + (f" ({reason})" if reason else ""))


def create_http_client(settings: Settings, **kwargs: Any) -> httpx.AsyncClient:
    """
    Build the shared async HTTP client.

    Redirects are not followed: a redirected XRPC call is treated as a
    failure rather than silently sent to another host.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout_seconds),
        follow_redirects=False,
        headers={"User-Agent": settings.user_agent},
        **kwargs,
    )


def xrpc_url(host: str, method: str) -> str:
    """Endpoint URL for an XRPC method on a host."""
    return f"{host.rstrip('/')}/xrpc/{method}"


def error_body(response: httpx.Response) -> dict[str, Any]:
    """Best-effort decode of an XRPC error body (`{"error", "message"}`)."""
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _parse_rate_limit(response: httpx.Response) -> tuple[datetime | None, float | None]:
    reset_at = None
    retry_after = None

    reset = response.headers.get("RateLimit-Reset")
    if reset:
        try:
            reset_at = datetime.fromtimestamp(int(reset), tz=UTC)
        except ValueError:
            logger.debug("unparseable_rate_limit_reset", value=reset)

    after = response.headers.get("Retry-After")
    if after:
        try:
            retry_after = float(after)
        except ValueError:
            logger.debug("unparseable_retry_after", value=after)

    if retry_after is None and reset_at is not None:
        retry_after = max(0.0, (reset_at - datetime.now(UTC)).total_seconds())

    return reset_at, retry_after


def raise_for_xrpc_status(response: httpx.Response) -> None:
    """
    Raise the typed error for a non-2xx response.

    Raises:
        RateLimitError: on 429
        XrpcError: on any other non-success status
    """
    if response.is_success:
        return

    body = error_body(response)

    if response.status_code == 429:
        reset_at, retry_after = _parse_rate_limit(response)
        logger.warning(
            "rate_limited",
            reset_at=reset_at.isoformat() if reset_at else None,
        )
        raise RateLimitError(
            reset_at=reset_at,
            retry_after=retry_after,
            error=body.get("error"),
            message=body.get("message"),
        )

    raise XrpcError(response.status_code, body.get("error"), body.get("message"))


async def send(
    http: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue a request, mapping transport failures to HostUnreachableError."""
    try:
        return await http.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise HostUnreachableError(httpx.URL(url).host, "timeout") from e
    except httpx.TransportError as e:
        raise HostUnreachableError(httpx.URL(url).host, type(e).__name__) from e


__all__ = [
    "OpenMarketError",
    "XrpcError",
    "RateLimitError",
    "HostUnreachableError",
    "create_http_client",
    "xrpc_url",
    "error_body",
    "raise_for_xrpc_status",
    "send",
]
