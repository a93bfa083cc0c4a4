"""
Open Market Delegation Module

Short-lived, operation-scoped tokens for the messaging service.
"""

from openmkt.delegation.chat import ChatClient, compose_seller_message
from openmkt.delegation.service_auth import (
    DelegatedToken,
    DelegationClient,
    DelegationDeniedError,
    DelegationError,
    DelegationRateLimitedError,
    DenialReason,
)

__all__ = [
    "DelegationClient",
    "DelegatedToken",
    "DelegationError",
    "DelegationDeniedError",
    "DelegationRateLimitedError",
    "DenialReason",
    "ChatClient",
    "compose_seller_message",
]
