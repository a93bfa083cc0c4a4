"""
Open Market Identity Module

DID document fetch, repository host resolution and handle lookup.
"""

from openmkt.identity.resolver import (
    IdentityResolutionError,
    IdentityResolver,
    normalize_handle,
)

__all__ = [
    "IdentityResolver",
    "IdentityResolutionError",
    "normalize_handle",
]
