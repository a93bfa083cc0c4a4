"""
Open Market

Data-access and authentication core for a marketplace built on AT Protocol
repositories: identity resolution, record reads/writes, seller registry,
listing aggregation, OAuth + DPoP sessions and delegated messaging tokens.
"""

__version__ = "0.1.0"

from openmkt.config import Settings, get_settings
from openmkt.xrpc import (
    HostUnreachableError,
    OpenMarketError,
    RateLimitError,
    XrpcError,
    create_http_client,
)

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "OpenMarketError",
    "XrpcError",
    "RateLimitError",
    "HostUnreachableError",
    "create_http_client",
]
