"""
Listing Service

Creation and deletion of listings in the current session's repository.
"""

from dataclasses import dataclass

import structlog

from openmkt.config import Settings
from openmkt.models.listing import ListingDraft
from openmkt.models.records import RecordRef
from openmkt.registry.seller_registry import SellerRegistry
from openmkt.repository.client import RecordStoreClient
from openmkt.repository.uris import InvalidAtUriError, parse_at_uri

logger = structlog.get_logger(__name__)


@dataclass
class ImageUpload:
    data: bytes
    mime_type: str


class ListingService:
    """Writes listings and keeps the seller registry in step."""

    def __init__(
        self,
        records: RecordStoreClient,
        registry: SellerRegistry,
        settings: Settings,
    ):
        self._records = records
        self._registry = registry
        self._settings = settings

    async def create_listing(
        self,
        draft: ListingDraft,
        images: list[ImageUpload] | None = None,
    ) -> RecordRef:
        """
        Upload images, write the listing record and register the author.

        Image bytes are uploaded as-is; resizing and validation happen before
        this call.
        """
        blobs = list(draft.images)
        for image in images or []:
            blobs.append(await self._records.upload_blob(image.data, image.mime_type))

        value = draft.model_copy(update={"images": blobs}).to_record_value(self._settings.collection)
        ref = await self._records.put_record(self._settings.collection, value)

        author = parse_at_uri(ref.uri).repo
        self._registry.add(author)
        logger.info("listing_created", uri=ref.uri, images=len(blobs))
        return ref

    async def delete_listing(self, uri: str) -> None:
        """
        Raises:
            InvalidAtUriError: URI is not a marketplace listing
            RecordOwnershipError: listing belongs to another identity
        """
        if parse_at_uri(uri).collection != self._settings.collection:
            raise InvalidAtUriError(f"Not a marketplace listing: {uri}")
        await self._records.delete_record(uri)
        logger.info("listing_deleted", uri=uri)
