"""
Seller Registry

Working set of identities known to participate in the marketplace.

The set is the union of three sources:
- seeds from configuration
- identities added by local action (listing creation, manual add, author of a
  fetched listing), persisted through LocalIdentityStore
- verified identities from the registry bot's follow graph, cached for
  `registry_ttl_seconds` and never persisted

Concurrent refreshes share one in-flight task, so a burst of callers against a
stale cache produces a single upstream call.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime

import structlog

from openmkt.config import Settings
from openmkt.models.base import utc_now
from openmkt.models.registry import Provenance, RegistryEntry
from openmkt.registry.storage import LocalIdentityStore
from openmkt.registry.verified import VerifiedSellerSource
from openmkt.xrpc import HostUnreachableError, XrpcError

logger = structlog.get_logger(__name__)


class SellerRegistry:
    """Registry instance owning its cache, TTL clock and in-flight refresh handle."""

    def __init__(
        self,
        settings: Settings,
        storage: LocalIdentityStore | None = None,
        verified_source: VerifiedSellerSource | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = settings.registry_ttl_seconds
        self._storage = storage
        self._source = verified_source
        self._clock = clock

        now = utc_now()
        self._seeds: dict[str, datetime] = dict.fromkeys(settings.seed_did_list, now)
        self._local: dict[str, datetime] = {}
        self._verified: dict[str, RegistryEntry] = {}
        self._verified_at: float | None = None
        self._refresh_task: asyncio.Task[list[str]] | None = None

    def load(self) -> None:
        """Merge persisted local identities into the registry."""
        if self._storage is None:
            return
        for did, first_seen in self._storage.load().items():
            self._local.setdefault(did, first_seen)

    # =========================================================================
    # Working set
    # =========================================================================

    def get_known_identities(self) -> set[str]:
        """Seeds, local additions and the currently cached verified set."""
        return set(self._seeds) | set(self._local) | set(self._verified)

    def __contains__(self, did: object) -> bool:
        return did in self.get_known_identities()

    def __len__(self) -> int:
        return len(self.get_known_identities())

    def add(self, did: str) -> bool:
        """
        Add an identity discovered by local action.

        Idempotent against the full merged set: an identity already known from
        any source is not added again.

        Returns:
            True if the identity was new
        """
        did = did.strip()
        if not did.startswith("did:"):
            raise ValueError(f"Not a DID: {did!r}")

        if did in self.get_known_identities():
            return False

        self._local[did] = utc_now()
        if self._storage is not None:
            self._storage.save(self._local)

        logger.info("marketplace_identity_added", did=did)
        return True

    def entries(self) -> list[RegistryEntry]:
        """One entry per known identity. Verified provenance wins over seed, seed over local."""
        result: dict[str, RegistryEntry] = {}

        for did, first_seen in self._local.items():
            result[did] = RegistryEntry(did=did, provenance=Provenance.LOCAL, first_seen_at=first_seen)
        for did, first_seen in self._seeds.items():
            result[did] = RegistryEntry(did=did, provenance=Provenance.SEED, first_seen_at=first_seen)
        for did, entry in self._verified.items():
            first_seen = result[did].first_seen_at if did in result else entry.first_seen_at
            result[did] = entry.model_copy(update={"first_seen_at": first_seen})

        return sorted(result.values(), key=lambda e: e.did)

    # =========================================================================
    # Verified set
    # =========================================================================

    @property
    def is_stale(self) -> bool:
        if self._verified_at is None:
            return True
        return self._clock() - self._verified_at >= self._ttl

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def refresh_verified(self, force: bool = False) -> list[str]:
        """
        Refresh the verified set if stale (or forced).

        A refresh already in flight is joined rather than duplicated. On failure
        the previous verified set is kept and stays stale.
        """
        if self._refresh_task is not None:
            return await asyncio.shield(self._refresh_task)

        if not force and not self.is_stale:
            return sorted(self._verified)

        self._refresh_task = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def ensure_fresh(self) -> set[str]:
        """Known identities, waiting for a verified refresh first if the cache is stale."""
        if self.is_stale or self._refresh_task is not None:
            await self.refresh_verified()
        return self.get_known_identities()

    async def _refresh(self) -> list[str]:
        try:
            if self._source is None:
                self._verified_at = self._clock()
                return []

            try:
                dids = await self._source.fetch()
            except (XrpcError, HostUnreachableError) as e:
                logger.warning(
                    "verified_refresh_failed",
                    error=str(e),
                    cached=len(self._verified),
                )
                return sorted(self._verified)

            now = utc_now()
            previous = self._verified
            self._verified = {
                did: RegistryEntry(
                    did=did,
                    provenance=Provenance.VERIFIED,
                    first_seen_at=previous[did].first_seen_at if did in previous else now,
                    last_confirmed_at=now,
                )
                for did in dids
            }
            self._verified_at = self._clock()
            logger.info("verified_refresh_completed", count=len(self._verified))
            return sorted(self._verified)
        finally:
            self._refresh_task = None
