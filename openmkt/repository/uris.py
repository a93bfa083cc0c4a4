"""
AT-URI helpers: `at://<repo>/<collection>/<rkey>`.
"""

from dataclasses import dataclass
from urllib.parse import quote, unquote

from openmkt.xrpc import OpenMarketError


class InvalidAtUriError(OpenMarketError, ValueError):
    """String is not a record AT-URI."""
    pass


@dataclass(frozen=True)
class AtUri:
    repo: str
    collection: str
    rkey: str

    def __str__(self) -> str:
        return f"at://{self.repo}/{self.collection}/{self.rkey}"


def parse_at_uri(uri: str) -> AtUri:
    """
    Split a record AT-URI into its parts.

    Raises:
        InvalidAtUriError: not of the form at://repo/collection/rkey
    """
    if not uri.startswith("at://"):
        raise InvalidAtUriError(f"Not an AT-URI: {uri!r}")

    parts = uri[len("at://"):].split("/")
    if len(parts) != 3 or not all(parts):
        raise InvalidAtUriError(f"AT-URI must name repo, collection and rkey: {uri!r}")

    return AtUri(repo=parts[0], collection=parts[1], rkey=parts[2])


def encode_at_uri(uri: str) -> str:
    """URL-safe form of an AT-URI for use as a path segment."""
    return quote(uri, safe="")


def decode_at_uri(encoded: str) -> AtUri:
    return parse_at_uri(unquote(encoded))
