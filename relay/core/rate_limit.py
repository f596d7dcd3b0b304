"""Token bucket rate limiting for outbound API calls.

Buckets refill lazily: every read or consume computes the tokens accrued
since the last refill, so no background timer is needed and limiters are
cheap to create in bulk (one per API resource).
"""

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from relay.core.logging import get_logger
from relay.exceptions import InvalidConfigurationError

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass
class RateLimitConfig:
    """Token bucket configuration.

    Attributes:
        max_tokens: Bucket capacity
        refill_rate: Tokens added per refill interval
        refill_interval_ms: Length of one refill interval in milliseconds
    """

    max_tokens: int
    refill_rate: float
    refill_interval_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_tokens < 1:
            raise InvalidConfigurationError("max_tokens must be a positive integer")
        if self.refill_rate <= 0:
            raise InvalidConfigurationError("refill_rate must be positive")
        if self.refill_interval_ms < 1:
            raise InvalidConfigurationError("refill_interval_ms must be a positive integer")


@dataclass
class TokenBucket:
    """Token bucket state. Tokens are fractional so partial intervals count."""

    capacity: int
    refill_rate: float
    refill_interval_ms: int
    tokens: float = field(default=0.0)
    last_refill_at: float = field(default_factory=time.monotonic)


class TokenBucketLimiter:
    """Single token bucket gating outbound calls.

    The limiter is meant for single-threaded asyncio use: every mutation
    happens between suspension points, so the refill-then-deduct sequence
    needs no lock.

    Example:
        >>> limiter = TokenBucketLimiter(RateLimitConfig(max_tokens=10, refill_rate=2))
        >>> limiter.try_consume(3)
        True
    """

    def __init__(self, config: RateLimitConfig, clock: Optional[Clock] = None):
        """Initialize a full bucket.

        Args:
            config: Bucket capacity and refill settings
            clock: Time source returning seconds (default: time.monotonic)
        """
        self.config = config
        self._clock = clock or time.monotonic
        self._bucket = TokenBucket(
            capacity=config.max_tokens,
            refill_rate=config.refill_rate,
            refill_interval_ms=config.refill_interval_ms,
            tokens=float(config.max_tokens),
            last_refill_at=self._clock(),
        )

    @property
    def capacity(self) -> int:
        return self._bucket.capacity

    def _refill(self) -> None:
        """Add the tokens accrued since the last refill, capped at capacity."""
        bucket = self._bucket
        now = self._clock()
        elapsed_ms = (now - bucket.last_refill_at) * 1000
        if elapsed_ms > 0:
            intervals = elapsed_ms / bucket.refill_interval_ms
            bucket.tokens = min(
                float(bucket.capacity), bucket.tokens + intervals * bucket.refill_rate
            )
        bucket.last_refill_at = now

    def try_consume(self, tokens: int = 1) -> bool:
        """Consume tokens if available, without waiting.

        Fails closed: when fewer than `tokens` are available nothing is
        deducted.

        Args:
            tokens: Number of tokens to consume

        Returns:
            True if the tokens were consumed, False otherwise

        Raises:
            ValueError: If tokens is negative
        """
        if tokens < 0:
            raise ValueError(f"Cannot consume a negative number of tokens: {tokens}")
        self._refill()
        if self._bucket.tokens >= tokens:
            self._bucket.tokens -= tokens
            return True
        return False

    async def consume(self, tokens: int = 1) -> None:
        """Wait until `tokens` are available, then consume them.

        Sleeps for the estimated wait time between checks. There is no
        built-in cancellation; wrap the call in asyncio.wait_for to bound it.
        Tokens granted are spent even if the caller later abandons the call.

        Raises:
            ValueError: If tokens is negative or more than the bucket can hold
        """
        if tokens < 0:
            raise ValueError(f"Cannot consume a negative number of tokens: {tokens}")
        if tokens > self._bucket.capacity:
            raise ValueError(
                f"Cannot consume {tokens} tokens from a bucket of capacity "
                f"{self._bucket.capacity}"
            )

        while not self.try_consume(tokens):
            wait_ms = self.get_wait_time(tokens)
            logger.debug(f"Rate limit reached. Waiting {wait_ms}ms for {tokens} token(s)")
            # A zero estimate can only come from float rounding; yield anyway.
            await asyncio.sleep(max(wait_ms, 1) / 1000)

    def get_wait_time(self, tokens: int = 1) -> int:
        """Estimate the wait until `tokens` would be available.

        Args:
            tokens: Number of tokens needed

        Returns:
            Wait time in milliseconds, 0 if already available
        """
        self._refill()
        bucket = self._bucket
        if bucket.tokens >= tokens:
            return 0
        intervals_needed = math.ceil((tokens - bucket.tokens) / bucket.refill_rate)
        return intervals_needed * bucket.refill_interval_ms

    def get_tokens(self) -> float:
        """Current token count after refill."""
        self._refill()
        return self._bucket.tokens

    def reset(self) -> None:
        """Refill the bucket to capacity and restart the refill clock."""
        self._bucket.tokens = float(self._bucket.capacity)
        self._bucket.last_refill_at = self._clock()

    def get_stats(self) -> dict:
        """Get limiter statistics."""
        return {
            "capacity": self._bucket.capacity,
            "tokens": self.get_tokens(),
            "refill_rate": self._bucket.refill_rate,
            "refill_interval_ms": self._bucket.refill_interval_ms,
        }


class RateLimiterManager:
    """Independent token buckets keyed by resource name.

    Names without a registered limiter are unlimited: unconfigured endpoints
    are let through rather than blocked.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock
        self._limiters: Dict[str, TokenBucketLimiter] = {}

    def register(self, name: str, config: RateLimitConfig) -> TokenBucketLimiter:
        """Register (or replace) the limiter for a resource."""
        limiter = TokenBucketLimiter(config, clock=self._clock)
        self._limiters[name] = limiter
        logger.info(
            f"Rate limiter registered for '{name}': {config.max_tokens} tokens, "
            f"{config.refill_rate} per {config.refill_interval_ms}ms"
        )
        return limiter

    def get(self, name: str) -> Optional[TokenBucketLimiter]:
        return self._limiters.get(name)

    def names(self) -> List[str]:
        return list(self._limiters)

    def try_consume(self, name: str, tokens: int = 1) -> bool:
        limiter = self._limiters.get(name)
        if limiter is None:
            return True
        return limiter.try_consume(tokens)

    async def consume(self, name: str, tokens: int = 1) -> None:
        limiter = self._limiters.get(name)
        if limiter is not None:
            await limiter.consume(tokens)

    def get_wait_time(self, name: str, tokens: int = 1) -> int:
        limiter = self._limiters.get(name)
        return limiter.get_wait_time(tokens) if limiter else 0

    def reset(self, name: str) -> None:
        limiter = self._limiters.get(name)
        if limiter is not None:
            limiter.reset()

    def reset_all(self) -> None:
        for limiter in self._limiters.values():
            limiter.reset()
