"""
Tests for openmkt.repository.uris.
"""

import pytest

from openmkt.repository.uris import (
    AtUri,
    InvalidAtUriError,
    decode_at_uri,
    encode_at_uri,
    parse_at_uri,
)


class TestParseAtUri:
    """Tests for AT-URI parsing."""

    def test_parses_parts(self):
        uri = parse_at_uri("at://did:plc:bob/app.openmkt.marketplace/3kabc")
        assert uri == AtUri("did:plc:bob", "app.openmkt.marketplace", "3kabc")
        assert str(uri) == "at://did:plc:bob/app.openmkt.marketplace/3kabc"

    @pytest.mark.parametrize(
        "value",
        [
            "https://did:plc:bob/app.openmkt.marketplace/3kabc",
            "at://did:plc:bob/app.openmkt.marketplace",
            "at://did:plc:bob//3kabc",
            "at://did:plc:bob/a/b/c",
        ],
    )
    def test_rejects_malformed(self, value):
        with pytest.raises(InvalidAtUriError):
            parse_at_uri(value)

    def test_invalid_uri_is_value_error(self):
        with pytest.raises(ValueError):
            parse_at_uri("nope")

    def test_encoded_form_is_path_safe(self):
        encoded = encode_at_uri("at://did:plc:bob/app.openmkt.marketplace/3kabc")
        assert "/" not in encoded
        assert decode_at_uri(encoded).rkey == "3kabc"
