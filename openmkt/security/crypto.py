"""
OAuth Cryptography

PKCE challenges, state values and the DPoP key pair.

The DPoP key is an ES256 (P-256) key generated once per login. Its public JWK
is embedded in every proof header; the private key never leaves the client
except through the owner-only session file.
"""

import base64
import hashlib
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import jwt as pyjwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.algorithms import ECAlgorithm

DPOP_ALGORITHM = "ES256"
DPOP_JWT_TYPE = "dpop+jwt"


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class PKCEPair:
    verifier: str
    challenge: str
    method: str = "S256"


def generate_pkce() -> PKCEPair:
    """128 hex chars of verifier, S256 challenge."""
    verifier = secrets.token_hex(64)
    challenge = b64url(hashlib.sha256(verifier.encode("ascii")).digest())
    return PKCEPair(verifier=verifier, challenge=challenge)


def generate_state() -> str:
    return secrets.token_hex(32)


def access_token_hash(access_token: str) -> str:
    """`ath` claim: base64url(sha256(access_token))."""
    return b64url(hashlib.sha256(access_token.encode("ascii")).digest())


def normalize_htu(url: str) -> str:
    """Proof target URI: scheme, host and path only."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class DPoPKey:
    """An ES256 signing key bound to one session."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise ValueError("DPoP keys must be P-256")
        self._private_key = private_key
        self._public_jwk: dict[str, Any] = ECAlgorithm.to_jwk(
            private_key.public_key(), as_dict=True
        )

    @classmethod
    def generate(cls) -> "DPoPKey":
        return cls(ec.generate_private_key(ec.SECP256R1()))

    @classmethod
    def from_pem(cls, pem: str) -> "DPoPKey":
        loaded = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
        if not isinstance(loaded, ec.EllipticCurvePrivateKey):
            raise TypeError("Loaded key is not an EC private key")
        return cls(loaded)

    def to_pem(self) -> str:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")

    @property
    def public_jwk(self) -> dict[str, Any]:
        return dict(self._public_jwk)

    def thumbprint(self) -> str:
        """RFC 7638 JWK thumbprint."""
        jwk = self._public_jwk
        canonical = f'{{"crv":"{jwk["crv"]}","kty":"{jwk["kty"]}","x":"{jwk["x"]}","y":"{jwk["y"]}"}}'
        return b64url(hashlib.sha256(canonical.encode("ascii")).digest())

    def sign(self, payload: dict[str, Any], headers: dict[str, Any]) -> str:
        return pyjwt.encode(payload, self._private_key, algorithm=DPOP_ALGORITHM, headers=headers)


def create_dpop_proof(
    key: DPoPKey,
    method: str,
    url: str,
    nonce: str | None = None,
    access_token: str | None = None,
    issued_at: int | None = None,
) -> str:
    """
    Build a DPoP proof JWT for one request.

    Args:
        key: Session's DPoP key
        method: HTTP method
        url: Request URL (query and fragment are stripped)
        nonce: Latest server-issued nonce for this origin
        access_token: Bound access token; adds the `ath` claim
    """
    payload: dict[str, Any] = {
        "jti": str(uuid.uuid4()),
        "htm": method.upper(),
        "htu": normalize_htu(url),
        "iat": issued_at if issued_at is not None else int(time.time()),
    }
    if nonce:
        payload["nonce"] = nonce
    if access_token:
        payload["ath"] = access_token_hash(access_token)

    return key.sign(payload, headers={"typ": DPOP_JWT_TYPE, "jwk": key.public_jwk})
