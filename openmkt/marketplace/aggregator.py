"""
Listing Aggregator

Fans record reads out across many independently hosted repositories and
assembles one listing collection.

Each identity is fetched in its own task with its own timeout. A failure for
one identity (unresolved, unreachable, timed out, rate limited, rejected) is
logged and recorded in the report; it never cancels or fails the others.
Results carry no ordering guarantee.
"""

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

import structlog

from openmkt.config import Settings
from openmkt.identity.resolver import IdentityResolver
from openmkt.marketplace.images import cdn_image_urls
from openmkt.models.identity import IdentityResolution
from openmkt.models.listing import Listing
from openmkt.models.records import Record
from openmkt.monitoring.logging import log_duration
from openmkt.monitoring.metrics import aggregation_duration_seconds, aggregation_failures_total
from openmkt.registry.seller_registry import SellerRegistry
from openmkt.repository.client import RecordStoreClient, UnresolvedIdentityError
from openmkt.repository.uris import InvalidAtUriError, parse_at_uri
from openmkt.xrpc import HostUnreachableError, RateLimitError, XrpcError

logger = structlog.get_logger(__name__)


class FailureCause(str, Enum):
    UNRESOLVED = "unresolved"
    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"        # Non-success XRPC status (403, 400, ...)
    INVALID_RESPONSE = "invalid_response"
    ERROR = "error"


@dataclass
class IdentityFailure:
    did: str
    cause: FailureCause
    detail: str = ""


@dataclass
class AggregationReport:
    """Listings plus what happened to the identities that contributed nothing."""

    listings: list[Listing] = field(default_factory=list)
    failures: list[IdentityFailure] = field(default_factory=list)
    empty: list[str] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    skipped_records: int = 0

    @property
    def failed_identities(self) -> set[str]:
        return {f.did for f in self.failures}


@dataclass
class _IdentityResult:
    did: str
    listings: list[Listing] = field(default_factory=list)
    failure: IdentityFailure | None = None
    excluded: bool = False
    skipped: int = 0


class ListingAggregator:
    """Concurrent per-identity listing fetch."""

    def __init__(
        self,
        resolver: IdentityResolver,
        records: RecordStoreClient,
        settings: Settings,
        registry: SellerRegistry | None = None,
        timeout: float | None = None,
    ):
        self._resolver = resolver
        self._records = records
        self._settings = settings
        self._registry = registry
        self._timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._excluded = set(settings.excluded_seller_handle_list)

    async def aggregate_with_report(self, identities: Iterable[str]) -> AggregationReport:
        """
        Fetch listings for every identity concurrently.

        Callers with a very large identity set should chunk it; no throttling
        is applied here.
        """
        dids = list(dict.fromkeys(identities))
        report = AggregationReport()
        start = time.monotonic()

        with log_duration(logger, "aggregation", identities=len(dids)):
            results = await asyncio.gather(*(self._fetch_bounded(did) for did in dids))

        for result in results:
            report.skipped_records += result.skipped
            if result.failure is not None:
                report.failures.append(result.failure)
            elif result.excluded:
                report.excluded.append(result.did)
            elif not result.listings:
                report.empty.append(result.did)
            else:
                report.listings.extend(result.listings)

        aggregation_duration_seconds.observe(time.monotonic() - start)
        logger.info(
            "aggregation_report",
            listings=len(report.listings),
            failed=len(report.failures),
            empty=len(report.empty),
            excluded=len(report.excluded),
        )
        return report

    async def aggregate(self, identities: Iterable[str]) -> list[Listing]:
        report = await self.aggregate_with_report(identities)
        return report.listings

    async def aggregate_known(self) -> list[Listing]:
        """Aggregate over the registry's working set, refreshing it first if stale."""
        if self._registry is None:
            raise RuntimeError("ListingAggregator has no registry")
        identities = await self._registry.ensure_fresh()
        return await self.aggregate(identities)

    # =========================================================================
    # Per-identity fetch
    # =========================================================================

    async def _fetch_bounded(self, did: str) -> _IdentityResult:
        try:
            return await asyncio.wait_for(self._fetch_identity(did), timeout=self._timeout)
        except TimeoutError:
            return self._failed(did, FailureCause.TIMEOUT, f"exceeded {self._timeout}s")
        except UnresolvedIdentityError as e:
            return self._failed(did, FailureCause.UNRESOLVED, e.reason or "")
        except HostUnreachableError as e:
            return self._failed(did, FailureCause.UNREACHABLE, str(e))
        except RateLimitError as e:
            reset = e.reset_at.isoformat() if e.reset_at else ""
            return self._failed(did, FailureCause.RATE_LIMITED, reset)
        except XrpcError as e:
            return self._failed(did, FailureCause.REJECTED, str(e))
        except ValueError as e:
            return self._failed(did, FailureCause.INVALID_RESPONSE, str(e))
        except Exception as e:
            logger.exception("aggregation_identity_error", did=did)
            return self._failed(did, FailureCause.ERROR, str(e))

    async def _fetch_identity(self, did: str) -> _IdentityResult:
        resolution = await self._resolver.resolve(did)
        if not resolution.resolved:
            raise UnresolvedIdentityError(did, resolution.reason)

        handle = resolution.handle or did
        if handle.lower() in self._excluded:
            logger.debug("seller_excluded", did=did, handle=handle)
            return _IdentityResult(did=did, excluded=True)

        records = await self._records.list_records(
            did,
            collection=self._settings.collection,
            limit=self._settings.listing_fetch_limit,
            host=resolution.endpoint,
        )

        result = _IdentityResult(did=did)
        for record in records:
            listing = self._to_listing(record, resolution)
            if listing is None:
                result.skipped += 1
            else:
                result.listings.append(listing)
        return result

    def _to_listing(self, record: Record, resolution: IdentityResolution) -> Listing | None:
        try:
            listing = Listing.from_record(record, resolution.did, resolution.handle)
        except ValueError as e:
            logger.debug("listing_skipped", uri=record.uri, error=str(e))
            return None
        listing.formatted_images = cdn_image_urls(
            self._settings.cdn_url, resolution.did, listing.images
        )
        return listing

    def _failed(self, did: str, cause: FailureCause, detail: str) -> _IdentityResult:
        logger.warning("aggregation_identity_failed", did=did, cause=cause.value, detail=detail)
        aggregation_failures_total.inc(cause=cause.value)
        return _IdentityResult(did=did, failure=IdentityFailure(did=did, cause=cause, detail=detail))

    # =========================================================================
    # Single listing
    # =========================================================================

    async def fetch_listing(self, uri: str) -> Listing | None:
        """
        Fetch one listing by AT-URI and register its author as a seller.

        Returns None when the record does not exist or is not a valid listing.

        Raises:
            InvalidAtUriError: URI is malformed or not in the marketplace collection
            UnresolvedIdentityError: author's repository host unknown
        """
        target = parse_at_uri(uri)
        if target.collection != self._settings.collection:
            raise InvalidAtUriError(f"Not a marketplace listing: {uri}")

        did = target.repo
        if not did.startswith("did:"):
            did = await self._resolver.resolve_handle(did)

        resolution = await self._resolver.resolve(did)
        if not resolution.resolved:
            raise UnresolvedIdentityError(did, resolution.reason)

        record = await self._records.get_record(
            did, target.collection, target.rkey, host=resolution.endpoint
        )
        if record is None:
            return None

        listing = self._to_listing(record, resolution)
        if listing is not None and self._registry is not None:
            self._registry.add(did)
        return listing
