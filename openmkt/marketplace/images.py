"""
CDN image URLs for listing blobs.
"""

from urllib.parse import quote

from openmkt.models.listing import ImageUrls
from openmkt.models.records import BlobRef

THUMBNAIL_VARIANT = "feed_thumbnail"
FULLSIZE_VARIANT = "feed_fullsize"


def cdn_url(cdn_base: str, did: str, cid: str, variant: str = THUMBNAIL_VARIANT) -> str:
    """`{cdn}/img/{variant}/plain/{did}/{cid}@jpeg`"""
    return f"{cdn_base.rstrip('/')}/img/{variant}/plain/{quote(did, safe=':')}/{quote(cid, safe='')}@jpeg"


def cdn_image_urls(cdn_base: str, did: str, images: list[BlobRef]) -> list[ImageUrls]:
    return [
        ImageUrls(
            thumbnail=cdn_url(cdn_base, did, image.cid, THUMBNAIL_VARIANT),
            fullsize=cdn_url(cdn_base, did, image.cid, FULLSIZE_VARIANT),
            mime_type=image.mime_type,
        )
        for image in images
    ]
