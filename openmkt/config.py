"""
Open Market Configuration Management

Centralized configuration using Pydantic Settings for type-safe environment
variable loading with validation.

Hosts, collection identifiers and cache lifetimes are supplied here rather than
hardcoded in the data-access core, so the same code can point at a staging
directory or a self-hosted PDS.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PRODUCTION_COLLECTION = "app.openmkt.marketplace"
DEVELOPMENT_COLLECTION = "app.atprotomkt.marketplace.listing"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="OPENMKT_",
        case_sensitive=False,
        extra="ignore",
    )

    # ═══════════════════════════════════════════════════════════════
    # APPLICATION
    # ═══════════════════════════════════════════════════════════════
    app_name: str = Field(default="openmkt", description="Application name")
    app_env: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_json: bool = Field(default=False, description="Emit JSON logs")
    user_agent: str = Field(default="openmkt/0.1", description="HTTP User-Agent")

    # ═══════════════════════════════════════════════════════════════
    # NETWORK HOSTS
    # ═══════════════════════════════════════════════════════════════
    directory_url: str = Field(
        default="https://plc.directory", description="DID directory service"
    )
    default_pds_url: str = Field(
        default="https://bsky.social", description="Fallback repository host"
    )
    appview_url: str = Field(
        default="https://public.api.bsky.app", description="Public AppView for graph queries"
    )
    cdn_url: str = Field(default="https://cdn.bsky.app", description="Image CDN base URL")
    request_timeout_seconds: float = Field(
        default=8.0, gt=0, le=120, description="Per-request timeout for remote hosts"
    )
    resolver_use_default_host: bool = Field(
        default=False,
        description="Fall back to default_pds_url when a DID document has no PDS entry",
    )

    # ═══════════════════════════════════════════════════════════════
    # MARKETPLACE
    # ═══════════════════════════════════════════════════════════════
    marketplace_collection: str | None = Field(
        default=None, description="Override for the listing collection NSID"
    )
    listing_fetch_limit: int = Field(
        default=100, ge=1, le=100, description="Records requested per repository"
    )
    excluded_seller_handles: str = Field(
        default="", description="Comma-separated handles that opted out of the marketplace"
    )

    @property
    def collection(self) -> str:
        """Listing collection NSID for the current environment."""
        if self.marketplace_collection:
            return self.marketplace_collection
        if self.app_env == "production":
            return PRODUCTION_COLLECTION
        return DEVELOPMENT_COLLECTION

    @property
    def excluded_seller_handle_list(self) -> list[str]:
        """Normalized opt-out handles."""
        return [
            h.strip().lstrip("@").lower()
            for h in self.excluded_seller_handles.split(",")
            if h.strip()
        ]

    # ═══════════════════════════════════════════════════════════════
    # SELLER REGISTRY
    # ═══════════════════════════════════════════════════════════════
    seed_dids: str = Field(
        default="did:plc:oyhgprn7edb3dpdaq4mlgfkv",
        description="Comma-separated seed DIDs",
    )
    registry_bot_actor: str | None = Field(
        default=None, description="Account whose follows are the verified sellers"
    )
    registry_ttl_seconds: float = Field(
        default=60.0, ge=0, description="Verified seller cache lifetime"
    )
    registry_storage_path: str = Field(
        default="./data/marketplace-dids.json", description="Locally added DIDs file"
    )

    @property
    def seed_did_list(self) -> list[str]:
        """Parse seed DIDs string into list."""
        return [d.strip() for d in self.seed_dids.split(",") if d.strip()]

    # ═══════════════════════════════════════════════════════════════
    # OAUTH / SESSIONS
    # ═══════════════════════════════════════════════════════════════
    oauth_client_id: str = Field(
        default="https://openmkt.app/.well-known/oauth-client-metadata.json",
        description="OAuth client metadata URL",
    )
    oauth_redirect_uri: str = Field(
        default="https://openmkt.app/oauth/callback", description="OAuth redirect URI"
    )
    oauth_scope: str = Field(
        default="atproto transition:generic transition:chat.bsky",
        description="Requested OAuth scope",
    )
    token_refresh_margin_seconds: int = Field(
        default=60, ge=0, le=3600, description="Refresh access tokens this close to expiry"
    )
    session_storage_path: str = Field(
        default="./data/session.json", description="Persisted session file"
    )

    # ═══════════════════════════════════════════════════════════════
    # DELEGATION (MESSAGING)
    # ═══════════════════════════════════════════════════════════════
    chat_service_url: str = Field(
        default="https://api.bsky.chat", description="Messaging service base URL"
    )
    chat_service_did: str = Field(
        default="did:web:api.bsky.chat", description="Messaging service audience DID"
    )
    delegated_token_ttl_seconds: int = Field(
        default=60, ge=1, le=300, description="Lifetime requested for delegated tokens"
    )

    @field_validator(
        "directory_url",
        "default_pds_url",
        "appview_url",
        "cdn_url",
        "chat_service_url",
    )
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://: {v}")
        return v.rstrip("/")

    @field_validator("marketplace_collection")
    @classmethod
    def validate_collection(cls, v: str | None) -> str | None:
        if v is None:
            return v
        # NSIDs are reverse-DNS with at least three segments
        if v.count(".") < 2 or " " in v:
            raise ValueError(f"Invalid collection NSID: {v}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
