"""API client providers.

This package provides:
- Base client interface (BaseClient)
- Bearer token sources (StaticTokenProvider, RefreshingTokenProvider)
- REST implementation (HttpApiClient, Endpoint)
"""

from relay.providers.base import (
    BaseClient,
    RefreshingTokenProvider,
    StaticTokenProvider,
    TokenGrant,
    TokenProvider,
)
from relay.providers.http import DEFAULT_ENDPOINTS, Endpoint, HttpApiClient

__all__ = [
    # Base
    "BaseClient",
    # Tokens
    "TokenProvider",
    "StaticTokenProvider",
    "RefreshingTokenProvider",
    "TokenGrant",
    # HTTP
    "DEFAULT_ENDPOINTS",
    "Endpoint",
    "HttpApiClient",
]
