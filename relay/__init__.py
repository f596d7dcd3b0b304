"""RelayKit: resilient API client middleware.

This package provides:
- Token bucket rate limiting (TokenBucketLimiter, RateLimiterManager)
- TTL + LRU response caching (ExpiringCache, AutoCleanCache)
- Signed webhook delivery with retries (WebhookDispatcher)
- A client facade composing all three (ResilientClient)
"""

from relay.core.cache import AutoCleanCache, ExpiringCache
from relay.core.rate_limit import RateLimitConfig, RateLimiterManager, TokenBucketLimiter
from relay.exceptions import (
    ApiError,
    InvalidConfigurationError,
    RelayException,
    TokenRefreshError,
    UnknownOperationError,
)
from relay.providers.base import BaseClient
from relay.providers.http import HttpApiClient
from relay.services.resilient_client import OperationPolicy, ResilientClient
from relay.services.webhooks import WebhookConfig, WebhookDispatcher

__version__ = "0.1.0"

__all__ = [
    # Rate limiting
    "RateLimitConfig",
    "RateLimiterManager",
    "TokenBucketLimiter",
    # Cache
    "AutoCleanCache",
    "ExpiringCache",
    # Webhooks
    "WebhookConfig",
    "WebhookDispatcher",
    # Clients
    "BaseClient",
    "HttpApiClient",
    "OperationPolicy",
    "ResilientClient",
    # Exceptions
    "ApiError",
    "InvalidConfigurationError",
    "RelayException",
    "TokenRefreshError",
    "UnknownOperationError",
]
