"""
Session Models

A Session is either a classic password session (bearer JWTs) or an OAuth
session whose access token is bound to a DPoP key. The variant is explicit in
the `kind` discriminator so call sites branch on structure.
"""

from datetime import datetime, timedelta
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, field_validator

from openmkt.models.base import OpenMktModel, ensure_utc, utc_now


class _SessionBase(OpenMktModel):
    did: str
    handle: str
    pds_url: str
    expires_at: datetime | None = None

    @field_validator("expires_at", mode="before")
    @classmethod
    def convert_datetime(cls, v: Any) -> Any:
        return ensure_utc(v) if v is not None else v

    def expires_within(self, margin_seconds: float, now: datetime | None = None) -> bool:
        """True if the access token expires within the margin. Unknown expiry never counts as expiring."""
        if self.expires_at is None:
            return False
        now = now or utc_now()
        return self.expires_at - now <= timedelta(seconds=margin_seconds)


class ClassicSession(_SessionBase):
    """App-password session against a PDS."""

    kind: Literal["classic"] = "classic"
    access_jwt: str = Field(repr=False)
    refresh_jwt: str = Field(repr=False)

    @property
    def access_token(self) -> str:
        return self.access_jwt


class DPoPSession(_SessionBase):
    """OAuth session bound to a DPoP key pair."""

    kind: Literal["dpop"] = "dpop"
    access_token: str = Field(repr=False)
    refresh_token: str | None = Field(default=None, repr=False)
    token_type: str = "DPoP"
    scope: str = ""
    auth_server: str
    dpop_key_pem: str = Field(repr=False)


Session = Annotated[ClassicSession | DPoPSession, Field(discriminator="kind")]

session_adapter: TypeAdapter[ClassicSession | DPoPSession] = TypeAdapter(Session)
