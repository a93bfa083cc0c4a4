"""
Repository Record Models
"""

from typing import Any

from pydantic import Field, field_validator

from openmkt.models.base import OpenMktModel


class Record(OpenMktModel):
    """A record as returned by listRecords / getRecord."""

    uri: str
    cid: str | None = None
    value: dict[str, Any] = Field(default_factory=dict)


class RecordRef(OpenMktModel):
    """Strong reference returned by a write."""

    uri: str
    cid: str | None = None


class BlobLink(OpenMktModel):
    link: str = Field(alias="$link", min_length=1)


class BlobRef(OpenMktModel):
    """
    Content-addressed blob reference.

    Only the typed form `{"ref": {"$link": cid}, "mimeType", "size"}` is
    accepted; anything else fails validation and the enclosing record is
    treated as malformed.
    """

    ref: BlobLink
    mime_type: str = Field(alias="mimeType")
    size: int = Field(ge=0)
    type: str = Field(default="blob", alias="$type")

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, v: str) -> str:
        if "/" not in v:
            raise ValueError(f"Invalid mime type: {v}")
        return v

    @property
    def cid(self) -> str:
        return self.ref.link

    def to_record_value(self) -> dict[str, Any]:
        return {
            "$type": "blob",
            "ref": {"$link": self.cid},
            "mimeType": self.mime_type,
            "size": self.size,
        }
