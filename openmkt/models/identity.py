"""
Identity Models

DID documents as served by the directory, and the outcome of resolving one.
"""

from enum import Enum
from typing import Any

from pydantic import Field

from openmkt.models.base import OpenMktModel

PDS_SERVICE_TYPE = "AtprotoPersonalDataServer"
PDS_SERVICE_ID = "#atproto_pds"


class ServiceEntry(OpenMktModel):
    """
    One entry of a DID document's `service` list.

    Endpoints may be a URL string, a map or a list; only string endpoints
    can name a repository host.
    """

    id: str
    type: str | list[str]
    service_endpoint: str | dict[str, Any] | list[Any] = Field(alias="serviceEndpoint")

    @property
    def is_repository_host(self) -> bool:
        types = [self.type] if isinstance(self.type, str) else self.type
        return PDS_SERVICE_TYPE in types or self.id.endswith(PDS_SERVICE_ID)


class IdentityDocument(OpenMktModel):
    """A fetched DID document."""

    id: str
    also_known_as: list[str] = Field(default_factory=list, alias="alsoKnownAs")
    service: list[ServiceEntry] = Field(default_factory=list)

    def pds_endpoint(self) -> str | None:
        """serviceEndpoint of the personal repository host entry, if any."""
        for entry in self.service:
            endpoint = entry.service_endpoint
            if not entry.is_repository_host or not isinstance(endpoint, str):
                continue
            if endpoint.startswith(("https://", "http://")):
                return endpoint.rstrip("/")
        return None

    @property
    def handle(self) -> str | None:
        """First `at://` alias, without the scheme."""
        for alias in self.also_known_as:
            if alias.startswith("at://"):
                return alias[len("at://"):]
        return None


class ResolutionStatus(str, Enum):
    """Outcome of resolving an identity to its host."""

    RESOLVED = "resolved"
    FALLBACK = "fallback"      # No repository entry; default host used
    UNRESOLVED = "unresolved"


class IdentityResolution(OpenMktModel):
    """Result of `IdentityResolver.resolve`. Never cached beyond one operation."""

    did: str
    status: ResolutionStatus
    endpoint: str | None = None
    handle: str | None = None
    reason: str | None = None

    @property
    def resolved(self) -> bool:
        return self.endpoint is not None and self.status != ResolutionStatus.UNRESOLVED
