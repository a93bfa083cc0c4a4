"""
Open Market Registry Module

Tracks which identities participate in the marketplace.
"""

from openmkt.registry.seller_registry import SellerRegistry
from openmkt.registry.storage import LocalIdentityStore
from openmkt.registry.verified import VerifiedSellerSource

__all__ = [
    "SellerRegistry",
    "LocalIdentityStore",
    "VerifiedSellerSource",
]
