"""
Record Store Client

Reads and writes typed records against an identity's repository host.

Reads are anonymous and need only a resolved host. Writes go through the
session manager, which attaches the current session's credentials (bearer or
DPoP-bound) and refreshes them when close to expiry. The server is the
authority on write permission; the client only refuses the obvious case of
deleting from a repository the session does not own.
"""

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from openmkt.config import Settings
from openmkt.identity.resolver import IdentityResolver
from openmkt.models.records import BlobRef, Record, RecordRef
from openmkt.repository.uris import parse_at_uri
from openmkt.security.tokens import NotAuthenticatedError
from openmkt.xrpc import (
    OpenMarketError,
    XrpcError,
    error_body,
    raise_for_xrpc_status,
    send,
    xrpc_url,
)

if TYPE_CHECKING:
    from openmkt.security.session_manager import SessionManager

logger = structlog.get_logger(__name__)

MAX_LIST_LIMIT = 100


class UnresolvedIdentityError(OpenMarketError):
    """No repository host could be determined for an identity."""

    def __init__(self, did: str, reason: str | None = None):
        self.did = did
        self.reason = reason
        super().__init__(f"Unresolved identity {did}" + (f": {reason}" if reason else ""))


class RecordOwnershipError(OpenMarketError):
    """Write aimed at a repository the current session does not own."""
    pass


class RecordStoreClient:
    """XRPC repository operations for marketplace records."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        resolver: IdentityResolver,
        settings: Settings,
        session_manager: "SessionManager | None" = None,
    ):
        self._http = http
        self._resolver = resolver
        self._settings = settings
        self._sessions = session_manager

    # =========================================================================
    # Reads (anonymous)
    # =========================================================================

    async def resolve_host(self, did: str) -> str:
        """
        Raises:
            UnresolvedIdentityError: resolver could not locate the repository
        """
        resolution = await self._resolver.resolve(did)
        if not resolution.resolved or resolution.endpoint is None:
            raise UnresolvedIdentityError(did, resolution.reason)
        return resolution.endpoint

    async def list_records(
        self,
        did: str,
        collection: str | None = None,
        limit: int | None = None,
        host: str | None = None,
    ) -> list[Record]:
        """
        List up to `limit` records of a collection.

        Only the first page is fetched. The result is a snapshot; records beyond
        the limit are not reported and their absence means nothing.
        """
        collection = collection or self._settings.collection
        limit = max(1, min(limit or self._settings.listing_fetch_limit, MAX_LIST_LIMIT))
        host = host or await self.resolve_host(did)

        response = await send(
            self._http,
            "GET",
            xrpc_url(host, "com.atproto.repo.listRecords"),
            params={"repo": did, "collection": collection, "limit": limit},
        )
        raise_for_xrpc_status(response)

        records: list[Record] = []
        for raw in response.json().get("records", []):
            try:
                records.append(Record.model_validate(raw))
            except ValidationError:
                logger.debug("record_skipped", did=did, reason="invalid envelope")
        return records

    async def get_record(
        self,
        did: str,
        collection: str,
        rkey: str,
        host: str | None = None,
    ) -> Record | None:
        """Fetch one record, or None if it does not exist."""
        host = host or await self.resolve_host(did)

        response = await send(
            self._http,
            "GET",
            xrpc_url(host, "com.atproto.repo.getRecord"),
            params={"repo": did, "collection": collection, "rkey": rkey},
        )
        if response.status_code == 404:
            return None
        if response.status_code == 400 and error_body(response).get("error") == "RecordNotFound":
            return None
        raise_for_xrpc_status(response)

        return Record.model_validate(response.json())

    # =========================================================================
    # Writes (current session)
    # =========================================================================

    def _require_manager(self) -> "SessionManager":
        if self._sessions is None:
            raise NotAuthenticatedError("Record writes need a session manager")
        return self._sessions

    async def _write(self, method: str, **kwargs: Any) -> httpx.Response:
        manager = self._require_manager()
        session = await manager.require_session()
        response = await manager.request("POST", xrpc_url(session.pds_url, method), **kwargs)
        raise_for_xrpc_status(response)
        return response

    async def put_record(
        self,
        collection: str,
        value: dict[str, Any],
        rkey: str | None = None,
    ) -> RecordRef:
        """
        Create (no rkey) or overwrite a record in the current session's repository.

        Returns:
            URI and CID of the written record
        """
        session = await self._require_manager().require_session()
        body: dict[str, Any] = {"repo": session.did, "collection": collection, "record": value}

        if rkey is None:
            response = await self._write("com.atproto.repo.createRecord", json=body)
        else:
            body["rkey"] = rkey
            response = await self._write("com.atproto.repo.putRecord", json=body)

        data = response.json()
        logger.info("record_written", uri=data.get("uri"), collection=collection)
        return RecordRef(uri=data["uri"], cid=data.get("cid"))

    async def delete_record(self, uri: str) -> None:
        """
        Delete a record owned by the current session.

        Raises:
            RecordOwnershipError: the URI's repository is not the session's
            InvalidAtUriError: malformed URI
        """
        target = parse_at_uri(uri)
        session = await self._require_manager().require_session()

        if target.repo not in (session.did, session.handle):
            raise RecordOwnershipError(f"{uri} is not owned by {session.did}")

        await self._write(
            "com.atproto.repo.deleteRecord",
            json={"repo": session.did, "collection": target.collection, "rkey": target.rkey},
        )
        logger.info("record_deleted", uri=uri)

    async def upload_blob(self, data: bytes, mime_type: str) -> BlobRef:
        """Upload raw bytes to the current session's repository."""
        response = await self._write(
            "com.atproto.repo.uploadBlob",
            content=data,
            headers={"Content-Type": mime_type},
        )
        try:
            return BlobRef.model_validate(response.json()["blob"])
        except (KeyError, ValidationError) as e:
            raise XrpcError(response.status_code, "InvalidBlob", "Malformed uploadBlob response") from e
