"""
Messaging via Delegated Tokens

Each chat call requests its own delegated token for its own operation;
"contact seller" therefore makes two token requests (find-or-create the
conversation, then send).
"""

from typing import Any

import httpx
import structlog

from openmkt.config import Settings
from openmkt.delegation.service_auth import (
    DelegationClient,
    DelegationDeniedError,
    DelegationError,
    DelegationRateLimitedError,
    DenialReason,
)
from openmkt.models.listing import Listing
from openmkt.security.session_manager import SessionManager
from openmkt.xrpc import (
    HostUnreachableError,
    RateLimitError,
    XrpcError,
    raise_for_xrpc_status,
    send,
    xrpc_url,
)

logger = structlog.get_logger(__name__)

GET_CONVO_FOR_MEMBERS = "chat.bsky.convo.getConvoForMembers"
SEND_MESSAGE = "chat.bsky.convo.sendMessage"

# Substrings of chat service error messages
_DENIAL_PATTERNS = [
    ("someone they follow", DenialReason.SENDER_NOT_FOLLOWED),
    ("not followed", DenialReason.SENDER_NOT_FOLLOWED),
    ("disabled incoming messages", DenialReason.RECIPIENT_DISABLED),
    ("disabled", DenialReason.RECIPIENT_DISABLED),
    ("block", DenialReason.BLOCKED),
]


def compose_seller_message(title: str, price: str, listing_url: str) -> str:
    return (
        f'Hi! I\'m interested in your listing: "{title}" - {price}. '
        f"Is this still available?\n\nListing: {listing_url}"
    )


def denial_reason(error: XrpcError) -> DenialReason | None:
    text = f"{error.error or ''} {error.message or ''}".lower()
    for pattern, reason in _DENIAL_PATTERNS:
        if pattern in text:
            return reason
    return None


class ChatClient:
    """Conversation lookup and message send on the messaging service."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        session_manager: SessionManager,
        delegation: DelegationClient,
        settings: Settings,
    ):
        self._http = http
        self._sessions = session_manager
        self._delegation = delegation
        self._settings = settings

    async def _call(self, operation: str, method: str, **kwargs: Any) -> dict[str, Any]:
        token = await self._delegation.get_delegated_token(self._settings.chat_service_did, operation)

        try:
            response = await send(
                self._http,
                method,
                xrpc_url(self._settings.chat_service_url, operation),
                headers={"Authorization": f"Bearer {token.token}"},
                **kwargs,
            )
            raise_for_xrpc_status(response)
        except RateLimitError as e:
            logger.warning("chat_call_rate_limited", operation=operation)
            raise DelegationRateLimitedError(e, f"{operation} rate-limited") from e
        except XrpcError as e:
            reason = denial_reason(e)
            logger.warning(
                "chat_call_failed",
                operation=operation,
                status=e.status_code,
                reason=reason.value if reason else None,
            )
            if reason is not None:
                raise DelegationDeniedError(reason, e.message or str(e)) from e
            raise DelegationError(f"{operation} failed: {e}", code="service_error") from e
        except HostUnreachableError as e:
            raise DelegationError(f"{operation} failed: {e}", code="service_unreachable") from e

        data: dict[str, Any] = response.json()
        return data

    async def get_convo_for_members(self, members: list[str]) -> dict[str, Any]:
        data = await self._call(GET_CONVO_FOR_MEMBERS, "GET", params={"members": members})
        convo: dict[str, Any] = data["convo"]
        return convo

    async def send_message(self, convo_id: str, text: str) -> dict[str, Any]:
        return await self._call(
            SEND_MESSAGE,
            "POST",
            json={"convoId": convo_id, "message": {"text": text}},
        )

    async def contact_seller(self, listing: Listing, listing_url: str) -> dict[str, Any]:
        """
        Open (or reuse) a conversation with the listing's author and send the
        pre-filled enquiry.

        Raises:
            DelegationDeniedError: seller's message policy refuses the sender
            DelegationRateLimitedError: token issuer or messaging service rate-limited us
            DelegationError: messaging unavailable
        """
        session = await self._sessions.require_session()
        if listing.author_did == session.did:
            raise DelegationError("Cannot contact yourself", code="self_contact")

        convo = await self.get_convo_for_members([session.did, listing.author_did])
        message = await self.send_message(
            convo["id"],
            compose_seller_message(listing.title, listing.price, listing_url),
        )
        logger.info("seller_contacted", seller=listing.author_did, convo=convo["id"])
        return message
