"""
Open Market Security Module

- OAuth authorization code flow with PKCE
- DPoP proofs with single nonce retry
- Classic password sessions
- Session lifecycle and persistence
"""

from openmkt.security.classic import ClassicAuthClient
from openmkt.security.crypto import (
    DPoPKey,
    PKCEPair,
    access_token_hash,
    create_dpop_proof,
    generate_pkce,
    generate_state,
)
from openmkt.security.dpop import (
    DPoPNonceCache,
    DPoPRequester,
    NonceRetryState,
    ProofStage,
    nonce_challenge,
)
from openmkt.security.oauth import (
    AuthorizationServerMetadata,
    LoginAttempt,
    LoginState,
    OAuthClient,
    OAuthTokens,
)
from openmkt.security.session_manager import SessionManager
from openmkt.security.session_store import SessionStore
from openmkt.security.tokens import (
    AuthenticationError,
    AuthorizationServerError,
    AuthStateMismatchError,
    NonceRetryExhaustedError,
    NotAuthenticatedError,
    TokenExchangeError,
    TokenRefreshError,
    get_token_expiry,
    is_token_rejection,
)

__all__ = [
    # Crypto
    "DPoPKey",
    "PKCEPair",
    "generate_pkce",
    "generate_state",
    "create_dpop_proof",
    "access_token_hash",
    # DPoP
    "DPoPNonceCache",
    "DPoPRequester",
    "NonceRetryState",
    "ProofStage",
    "nonce_challenge",
    # OAuth
    "OAuthClient",
    "LoginAttempt",
    "LoginState",
    "AuthorizationServerMetadata",
    "OAuthTokens",
    # Sessions
    "ClassicAuthClient",
    "SessionManager",
    "SessionStore",
    # Errors
    "AuthenticationError",
    "NotAuthenticatedError",
    "AuthStateMismatchError",
    "AuthorizationServerError",
    "TokenExchangeError",
    "NonceRetryExhaustedError",
    "TokenRefreshError",
    "get_token_expiry",
    "is_token_rejection",
]
