"""
Verified Seller Source

The verified seller set is the follow list of a registry bot account, read
from the public AppView.
"""

import httpx
import structlog

from openmkt.config import Settings
from openmkt.xrpc import raise_for_xrpc_status, send, xrpc_url

logger = structlog.get_logger(__name__)

FOLLOWS_PAGE_LIMIT = 100


class VerifiedSellerSource:
    """Fetches the verified seller DIDs from the follow graph."""

    def __init__(self, http: httpx.AsyncClient, settings: Settings, max_pages: int = 10):
        self._http = http
        self._settings = settings
        self._max_pages = max_pages

    @property
    def configured(self) -> bool:
        return bool(self._settings.registry_bot_actor)

    async def fetch(self) -> list[str]:
        """
        Return the DIDs followed by the registry bot.

        Pagination is bounded by `max_pages`.

        Raises:
            XrpcError, HostUnreachableError: the AppView call failed
        """
        actor = self._settings.registry_bot_actor
        if not actor:
            logger.warning("verified_source_not_configured")
            return []

        url = xrpc_url(self._settings.appview_url, "app.bsky.graph.getFollows")
        dids: list[str] = []
        cursor: str | None = None

        for _ in range(self._max_pages):
            params: dict[str, str | int] = {"actor": actor, "limit": FOLLOWS_PAGE_LIMIT}
            if cursor:
                params["cursor"] = cursor

            response = await send(self._http, "GET", url, params=params)
            raise_for_xrpc_status(response)
            data = response.json()

            for follow in data.get("follows", []):
                did = follow.get("did") if isinstance(follow, dict) else None
                if isinstance(did, str) and did.startswith("did:"):
                    dids.append(did)

            cursor = data.get("cursor")
            if not cursor:
                break

        logger.info("verified_sellers_fetched", actor=actor, count=len(dids))
        return dids
