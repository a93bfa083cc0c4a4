"""
Open Market Repository Module

Record reads/writes against identity repositories and AT-URI helpers.
"""

from openmkt.repository.client import (
    RecordOwnershipError,
    RecordStoreClient,
    UnresolvedIdentityError,
)
from openmkt.repository.uris import (
    AtUri,
    InvalidAtUriError,
    decode_at_uri,
    encode_at_uri,
    parse_at_uri,
)

__all__ = [
    "RecordStoreClient",
    "UnresolvedIdentityError",
    "RecordOwnershipError",
    "AtUri",
    "InvalidAtUriError",
    "parse_at_uri",
    "encode_at_uri",
    "decode_at_uri",
]
