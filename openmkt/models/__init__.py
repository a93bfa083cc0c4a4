"""
Open Market Models

Pydantic models for identities, records, listings, registry entries and
sessions.
"""

from openmkt.models.base import OpenMktModel
from openmkt.models.identity import (
    IdentityDocument,
    IdentityResolution,
    ResolutionStatus,
    ServiceEntry,
)
from openmkt.models.listing import (
    ImageUrls,
    Listing,
    ListingDraft,
    ListingLocation,
)
from openmkt.models.records import BlobRef, Record, RecordRef
from openmkt.models.registry import Provenance, RegistryEntry
from openmkt.models.session import (
    ClassicSession,
    DPoPSession,
    Session,
    session_adapter,
)

__all__ = [
    # Base
    "OpenMktModel",
    # Identity
    "ServiceEntry",
    "IdentityDocument",
    "ResolutionStatus",
    "IdentityResolution",
    # Records
    "Record",
    "RecordRef",
    "BlobRef",
    # Listings
    "Listing",
    "ListingDraft",
    "ListingLocation",
    "ImageUrls",
    # Registry
    "Provenance",
    "RegistryEntry",
    # Sessions
    "ClassicSession",
    "DPoPSession",
    "Session",
    "session_adapter",
]
