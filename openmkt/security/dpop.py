"""
DPoP Request Signing

Every request made with a DPoP-bound token carries a fresh proof JWT. Servers
may answer with a nonce challenge (401, or 400 `use_dpop_nonce`, with a
`DPoP-Nonce` header); the request is then re-signed with that nonce and sent
exactly once more. The retry is modelled as a small state machine so the cap
can be tested without any endpoint:

    UNSIGNED -> SIGNED -> SIGNED_WITH_NONCE -> (EXHAUSTED | done)
"""

from enum import Enum
from typing import Any
from urllib.parse import urlsplit

import httpx
import structlog

from openmkt.monitoring.metrics import dpop_nonce_retries_total
from openmkt.security.crypto import DPoPKey, create_dpop_proof
from openmkt.security.tokens import NonceRetryExhaustedError
from openmkt.xrpc import error_body, send

logger = structlog.get_logger(__name__)

NONCE_HEADER = "DPoP-Nonce"
USE_DPOP_NONCE = "use_dpop_nonce"


def origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


def nonce_challenge(response: httpx.Response) -> str | None:
    """The nonce a response challenges us with, or None if it is not a challenge."""
    nonce = response.headers.get(NONCE_HEADER)
    if not nonce:
        return None
    if response.status_code == 401:
        return nonce
    if response.status_code == 400 and error_body(response).get("error") == USE_DPOP_NONCE:
        return nonce
    return None


class ProofStage(str, Enum):
    UNSIGNED = "unsigned"
    SIGNED = "signed"
    SIGNED_WITH_NONCE = "signed_with_nonce"
    EXHAUSTED = "exhausted"


class NonceRetryState:
    """Retry-once-on-nonce sub-protocol for one logical request."""

    def __init__(self, nonce: str | None = None):
        self.stage = ProofStage.UNSIGNED
        self.nonce = nonce

    def begin(self) -> str | None:
        """Move to SIGNED; returns the nonce (if any) for the first proof."""
        if self.stage != ProofStage.UNSIGNED:
            raise RuntimeError(f"Proof already signed (stage={self.stage.value})")
        self.stage = ProofStage.SIGNED
        return self.nonce

    def observe(self, response: httpx.Response) -> bool:
        """
        Feed a response; True means re-sign with `self.nonce` and send again.

        After the retry, any 401 or further challenge moves to EXHAUSTED.
        """
        challenge = nonce_challenge(response)

        if self.stage == ProofStage.SIGNED:
            if challenge is None:
                return False
            self.nonce = challenge
            self.stage = ProofStage.SIGNED_WITH_NONCE
            return True

        if self.stage == ProofStage.SIGNED_WITH_NONCE:
            if challenge is not None or response.status_code == 401:
                self.stage = ProofStage.EXHAUSTED
            return False

        raise RuntimeError(f"Cannot observe a response in stage {self.stage.value}")

    @property
    def exhausted(self) -> bool:
        return self.stage == ProofStage.EXHAUSTED


class DPoPNonceCache:
    """Latest nonce seen per origin."""

    def __init__(self) -> None:
        self._nonces: dict[str, str] = {}

    def get(self, url: str) -> str | None:
        return self._nonces.get(origin_of(url))

    def update(self, url: str, response: httpx.Response) -> None:
        nonce = response.headers.get(NONCE_HEADER)
        if nonce:
            self._nonces[origin_of(url)] = nonce

    def clear(self) -> None:
        self._nonces.clear()


class DPoPRequester:
    """Sends DPoP-signed requests with the single nonce retry."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        key: DPoPKey,
        nonces: DPoPNonceCache | None = None,
    ):
        self._http = http
        self.key = key
        self.nonces = nonces or DPoPNonceCache()

    async def send(
        self,
        method: str,
        url: str,
        access_token: str | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one logical request (at most two HTTP calls).

        Raises:
            NonceRetryExhaustedError: rejected again after the nonce retry
            HostUnreachableError: transport failure
        """
        state = NonceRetryState(self.nonces.get(url))
        state.begin()

        while True:
            proof = create_dpop_proof(
                self.key,
                method,
                url,
                nonce=state.nonce,
                access_token=access_token,
            )
            request_headers = dict(headers or {})
            request_headers["DPoP"] = proof
            if access_token:
                request_headers["Authorization"] = f"DPoP {access_token}"

            response = await send(self._http, method, url, headers=request_headers, **kwargs)
            self.nonces.update(url, response)

            if state.observe(response):
                logger.debug("dpop_nonce_retry", url=url, status=response.status_code)
                continue

            if state.exhausted:
                dpop_nonce_retries_total.inc(outcome="exhausted")
                logger.warning("dpop_nonce_retry_exhausted", url=url, status=response.status_code)
                raise NonceRetryExhaustedError(url, response.status_code)

            if state.stage == ProofStage.SIGNED_WITH_NONCE:
                dpop_nonce_retries_total.inc(outcome="succeeded")
            return response
