"""
Identity Resolver

Resolves a DID to the host currently storing its repository by fetching the
DID document from the directory service.

Resolution never raises for an identity that simply cannot be located: the
result carries an explicit UNRESOLVED status so a fan-out caller can skip that
identity and carry on. Results are not cached; identities migrate hosts.
"""

import httpx
import structlog
from pydantic import ValidationError

from openmkt.config import Settings
from openmkt.models.identity import IdentityDocument, IdentityResolution, ResolutionStatus
from openmkt.monitoring.metrics import identity_resolutions_total
from openmkt.xrpc import (
    HostUnreachableError,
    OpenMarketError,
    RateLimitError,
    XrpcError,
    raise_for_xrpc_status,
    send,
    xrpc_url,
)

logger = structlog.get_logger(__name__)


class IdentityResolutionError(OpenMarketError):
    """A handle could not be turned into a DID."""
    pass


def normalize_handle(handle: str) -> str:
    return handle.strip().lstrip("@").lower()


class IdentityResolver:
    """Resolves DIDs to host endpoints and handles to DIDs."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings):
        self._http = http
        self._settings = settings

    async def fetch_document(self, did: str) -> IdentityDocument:
        """
        Fetch and parse a DID document from the directory.

        Raises:
            XrpcError: directory returned a non-success status
            HostUnreachableError: directory could not be reached
            ValueError: document is not a valid DID document
        """
        if did.startswith("did:web:"):
            host = did[len("did:web:"):]
            url = f"https://{host}/.well-known/did.json"
        else:
            url = f"{self._settings.directory_url}/{did}"

        response = await send(self._http, "GET", url)
        raise_for_xrpc_status(response)

        try:
            document = IdentityDocument.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ValueError(f"Invalid DID document for {did}") from e

        if document.id != did:
            raise ValueError(f"DID document id {document.id} does not match {did}")
        return document

    async def resolve(self, did: str) -> IdentityResolution:
        """
        Resolve a DID to its repository host.

        Returns an IdentityResolution whose status is RESOLVED, FALLBACK (no
        repository entry, default host configured as fallback) or UNRESOLVED.
        """
        if not did.startswith("did:"):
            return self._unresolved(did, "not a DID")

        try:
            document = await self.fetch_document(did)
        except XrpcError as e:
            return self._unresolved(did, f"directory returned {e.status_code}")
        except HostUnreachableError as e:
            return self._unresolved(did, str(e))
        except ValueError as e:
            return self._unresolved(did, str(e))

        endpoint = document.pds_endpoint()
        if endpoint:
            identity_resolutions_total.inc(status=ResolutionStatus.RESOLVED.value)
            return IdentityResolution(
                did=did,
                status=ResolutionStatus.RESOLVED,
                endpoint=endpoint,
                handle=document.handle,
            )

        if self._settings.resolver_use_default_host:
            logger.info("identity_fallback_host", did=did, host=self._settings.default_pds_url)
            identity_resolutions_total.inc(status=ResolutionStatus.FALLBACK.value)
            return IdentityResolution(
                did=did,
                status=ResolutionStatus.FALLBACK,
                endpoint=self._settings.default_pds_url,
                handle=document.handle,
                reason="no repository service entry",
            )

        resolution = self._unresolved(did, "no repository service entry")
        resolution.handle = document.handle
        return resolution

    async def resolve_handle(self, handle: str) -> str:
        """
        Resolve a handle (with or without a leading `@`) to a DID.

        Raises:
            IdentityResolutionError: handle unknown or host unreachable
            RateLimitError: resolver host rate-limited the lookup
        """
        normalized = normalize_handle(handle)
        if not normalized or "." not in normalized:
            raise IdentityResolutionError(f"Invalid handle: {handle!r}")

        url = xrpc_url(self._settings.default_pds_url, "com.atproto.identity.resolveHandle")
        try:
            response = await send(self._http, "GET", url, params={"handle": normalized})
            raise_for_xrpc_status(response)
        except RateLimitError:
            raise
        except (XrpcError, HostUnreachableError) as e:
            logger.warning("handle_resolution_failed", handle=normalized, error=str(e))
            raise IdentityResolutionError(f"Could not resolve handle {normalized}") from e

        try:
            did = response.json().get("did")
        except (ValueError, AttributeError):
            did = None
        if not isinstance(did, str) or not did.startswith("did:"):
            raise IdentityResolutionError(f"No DID returned for handle {normalized}")
        return did

    def _unresolved(self, did: str, reason: str) -> IdentityResolution:
        logger.warning("identity_unresolved", did=did, reason=reason)
        identity_resolutions_total.inc(status=ResolutionStatus.UNRESOLVED.value)
        return IdentityResolution(did=did, status=ResolutionStatus.UNRESOLVED, reason=reason)
