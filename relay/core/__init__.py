"""Core utilities: configuration, logging, caching, rate limiting and retries."""

from relay.core.cache import AutoCleanCache, CacheEntry, ExpiringCache
from relay.core.config import settings
from relay.core.logging import get_logger, setup_logging
from relay.core.rate_limit import (
    RateLimitConfig,
    RateLimiterManager,
    TokenBucket,
    TokenBucketLimiter,
)
from relay.core.retry import RetryPolicy
from relay.core.security import generate_secret, sign_payload, verify_signature

__all__ = [
    "AutoCleanCache",
    "CacheEntry",
    "ExpiringCache",
    "settings",
    "get_logger",
    "setup_logging",
    "RateLimitConfig",
    "RateLimiterManager",
    "TokenBucket",
    "TokenBucketLimiter",
    "RetryPolicy",
    "generate_secret",
    "sign_payload",
    "verify_signature",
]
