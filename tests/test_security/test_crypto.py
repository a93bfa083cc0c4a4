"""
Tests for openmkt.security.crypto (PKCE, state and DPoP proofs).
"""

import base64
import hashlib

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm

from openmkt.security.crypto import (
    DPoPKey,
    access_token_hash,
    create_dpop_proof,
    generate_pkce,
    generate_state,
    normalize_htu,
)


def _verify(proof: str) -> tuple[dict, dict]:
    header = jwt.get_unverified_header(proof)
    public_key = ECAlgorithm.from_jwk(header["jwk"])
    return header, jwt.decode(proof, public_key, algorithms=["ES256"])


class TestPKCE:
    """Tests for PKCE and state generation."""

    def test_challenge_is_s256_of_verifier(self):
        pair = generate_pkce()

        digest = hashlib.sha256(pair.verifier.encode()).digest()
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
        assert pair.challenge == expected
        assert pair.method == "S256"

    def test_verifier_length_in_range(self):
        assert 43 <= len(generate_pkce().verifier) <= 128

    def test_values_are_unique(self):
        assert generate_pkce().verifier != generate_pkce().verifier
        assert generate_state() != generate_state()


class TestDPoPKey:
    """Tests for the session key pair."""

    def test_pem_round_trip_keeps_thumbprint(self):
        key = DPoPKey.generate()
        restored = DPoPKey.from_pem(key.to_pem())
        assert restored.thumbprint() == key.thumbprint()

    def test_public_jwk_has_no_private_part(self):
        jwk = DPoPKey.generate().public_jwk
        assert jwk["kty"] == "EC"
        assert jwk["crv"] == "P-256"
        assert "d" not in jwk

    def test_rejects_other_curves(self):
        with pytest.raises(ValueError):
            DPoPKey(ec.generate_private_key(ec.SECP384R1()))


class TestDPoPProof:
    """Tests for proof construction."""

    def test_proof_verifies_against_embedded_key(self):
        key = DPoPKey.generate()

        header, claims = _verify(create_dpop_proof(key, "post", "https://auth.test/oauth/token"))

        assert header["typ"] == "dpop+jwt"
        assert header["alg"] == "ES256"
        assert claims["htm"] == "POST"
        assert claims["htu"] == "https://auth.test/oauth/token"
        assert claims["jti"]
        assert "nonce" not in claims
        assert "ath" not in claims

    def test_nonce_and_token_binding(self):
        key = DPoPKey.generate()

        _, claims = _verify(
            create_dpop_proof(key, "GET", "https://pds.test/xrpc/x", nonce="n-1", access_token="tok")
        )

        assert claims["nonce"] == "n-1"
        assert claims["ath"] == access_token_hash("tok")

    def test_fresh_jti_per_proof(self):
        key = DPoPKey.generate()
        first = jwt.decode(create_dpop_proof(key, "GET", "https://a.test"), options={"verify_signature": False})
        second = jwt.decode(create_dpop_proof(key, "GET", "https://a.test"), options={"verify_signature": False})
        assert first["jti"] != second["jti"]

    def test_htu_drops_query_and_fragment(self):
        assert normalize_htu("https://pds.test/xrpc/m?a=1#frag") == "https://pds.test/xrpc/m"
