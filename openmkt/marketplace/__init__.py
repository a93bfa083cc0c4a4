"""
Open Market Marketplace Module

Listing aggregation across repositories, single listing fetch, and listing
writes.
"""

from openmkt.marketplace.aggregator import (
    AggregationReport,
    FailureCause,
    IdentityFailure,
    ListingAggregator,
)
from openmkt.marketplace.images import cdn_image_urls, cdn_url
from openmkt.marketplace.listings import ImageUpload, ListingService

__all__ = [
    "ListingAggregator",
    "AggregationReport",
    "IdentityFailure",
    "FailureCause",
    "ListingService",
    "ImageUpload",
    "cdn_url",
    "cdn_image_urls",
]
