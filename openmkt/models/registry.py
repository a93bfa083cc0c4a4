"""
Seller Registry Models
"""

from datetime import datetime
from enum import Enum

from pydantic import Field

from openmkt.models.base import OpenMktModel, utc_now


class Provenance(str, Enum):
    """Where a registry identity came from."""

    SEED = "seed"
    LOCAL = "local"          # Listing creation, manual add, fetched listing author
    VERIFIED = "verified"    # Follow-graph of the registry bot account


class RegistryEntry(OpenMktModel):
    """An identity known to participate in the marketplace."""

    did: str
    provenance: Provenance
    first_seen_at: datetime = Field(default_factory=utc_now)
    last_confirmed_at: datetime | None = None
