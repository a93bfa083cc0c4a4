"""
Listing Models

A Listing is a marketplace record owned by exactly one identity. Records are
parsed strictly: a record that does not match the shape below is rejected and
skipped by callers instead of being coerced.
"""

from datetime import datetime
from typing import Any

from pydantic import Field, ValidationError, field_validator

from openmkt.models.base import OpenMktModel, ensure_utc, isoformat_z, utc_now
from openmkt.models.records import BlobRef, Record


class ListingLocation(OpenMktModel):
    state: str
    county: str
    locality: str
    zip_prefix: str | None = Field(default=None, alias="zipPrefix")


class ImageUrls(OpenMktModel):
    """Fetchable URLs for one listing image."""

    thumbnail: str
    fullsize: str
    mime_type: str


class ListingFields(OpenMktModel):
    """Fields shared by stored listings and drafts."""

    title: str = Field(min_length=1, max_length=300)
    description: str = Field(default="", max_length=10000)
    price: str
    condition: str
    category: str
    location: ListingLocation
    images: list[BlobRef] = Field(default_factory=list)
    external_url: str | None = Field(default=None, alias="externalUrl")


class Listing(ListingFields):
    """A listing read from some identity's repository."""

    uri: str
    cid: str | None = None
    author_did: str
    author_handle: str
    created_at: datetime = Field(alias="createdAt")
    formatted_images: list[ImageUrls] = Field(default_factory=list)

    @field_validator("created_at", mode="before")
    @classmethod
    def convert_datetime(cls, v: Any) -> Any:
        return ensure_utc(v)

    @classmethod
    def from_record(
        cls,
        record: Record,
        author_did: str,
        author_handle: str | None = None,
    ) -> "Listing":
        """
        Parse a repository record into a Listing.

        Raises:
            ValueError: if the record value is not a valid listing, or the
                record lives in another identity's repository
        """
        repo = record.uri.removeprefix("at://").split("/", 1)[0]
        if repo != author_did:
            raise ValueError(f"Listing record {record.uri} is not in the repository of {author_did}")

        value = {k: v for k, v in record.value.items() if k != "$type"}
        try:
            return cls.model_validate({
                **value,
                "uri": record.uri,
                "cid": record.cid,
                "author_did": author_did,
                "author_handle": author_handle or author_did,
            })
        except ValidationError as e:
            raise ValueError(f"Malformed listing record {record.uri}: {e.error_count()} errors") from e


class ListingDraft(ListingFields):
    """A listing about to be written to the current session's repository."""

    def to_record_value(self, collection: str, created_at: datetime | None = None) -> dict[str, Any]:
        value: dict[str, Any] = {
            "$type": collection,
            "title": self.title,
            "description": self.description,
            "price": self.price,
            "condition": self.condition,
            "category": self.category,
            "location": self.location.model_dump(by_alias=True, exclude_none=True),
            "createdAt": isoformat_z(created_at or utc_now()),
        }
        if self.images:
            value["images"] = [image.to_record_value() for image in self.images]
        if self.external_url:
            value["externalUrl"] = self.external_url
        return value
