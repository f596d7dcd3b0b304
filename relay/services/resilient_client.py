"""Resilient client: rate limiting, caching and webhooks around a base client.

Every call is gated by the token bucket first. Reads are served from the
cache when possible and stored on a miss; writes trigger a webhook event
and invalidate the cache keys of the resource they changed. Errors from
the base client propagate unchanged, and tokens already consumed for a
failed call are not refunded.
"""

import json
import string
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from relay.core.cache import AutoCleanCache, ExpiringCache
from relay.core.config import Settings, settings as default_settings
from relay.core.logging import get_log_context, get_logger
from relay.core.rate_limit import RateLimitConfig, TokenBucketLimiter
from relay.exceptions import UnknownOperationError
from relay.providers.base import BaseClient, TokenProvider
from relay.providers.http import HttpApiClient
from relay.services.webhooks import WebhookConfig, WebhookDispatcher

logger = get_logger(__name__)

READ_COST = 1
WRITE_COST = 2

_MISSING = object()


class OperationKind(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class OperationPolicy:
    """How the resilient client treats one base-client operation.

    Attributes:
        name: Operation name passed to BaseClient.perform
        kind: READ results are cached; WRITE results trigger webhooks
        cost: Rate limit tokens per call (default: 1 for reads, 2 for writes)
        cache_key: Key prefix template formatted with the call arguments,
            e.g. "replies:{thread_id}" (default: the operation name)
        ttl_ms: Cache TTL override for this operation's results
        event: Webhook event fired after a successful write
        invalidates: Key prefix templates deleted after a successful write,
            e.g. "replies:{thread_id}:"
    """

    name: str
    kind: OperationKind = OperationKind.READ
    cost: Optional[int] = None
    cache_key: Optional[str] = None
    ttl_ms: Optional[int] = None
    event: Optional[str] = None
    invalidates: Tuple[str, ...] = ()

    @property
    def token_cost(self) -> int:
        if self.cost is not None:
            return self.cost
        return WRITE_COST if self.kind is OperationKind.WRITE else READ_COST

    def template_fields(self) -> Set[str]:
        """Argument names referenced by the cache key and invalidation templates."""
        templates = [self.cache_key or self.name, *self.invalidates]
        return {
            name
            for template in templates
            for _, name, _, _ in string.Formatter().parse(template)
            if name
        }

    def check_args(self, args: Mapping[str, Any]) -> None:
        """Raise ValueError if an argument named by a template is missing."""
        missing = self.template_fields() - set(args)
        if missing:
            raise ValueError(
                f"Missing arguments for {self.name}: {sorted(missing)}"
            )

    def build_cache_key(self, args: Mapping[str, Any]) -> str:
        """Canonical cache key: formatted prefix plus the sorted JSON arguments."""
        prefix = (self.cache_key or self.name).format_map(args)
        canonical = json.dumps(args, sort_keys=True, default=str, separators=(",", ":"))
        return f"{prefix}:{canonical}"

    def invalidation_prefixes(self, args: Mapping[str, Any]) -> List[str]:
        return [template.format_map(args) for template in self.invalidates]


def _policies(*policies: OperationPolicy) -> Dict[str, OperationPolicy]:
    return {policy.name: policy for policy in policies}


DEFAULT_OPERATIONS: Dict[str, OperationPolicy] = _policies(
    OperationPolicy("get_profile", cache_key="profile"),
    OperationPolicy("get_threads", cache_key="threads", ttl_ms=30_000),
    OperationPolicy("get_thread", cache_key="thread:{thread_id}"),
    OperationPolicy("get_thread_insights", cache_key="insights:{thread_id}", ttl_ms=300_000),
    OperationPolicy("get_user_insights", cache_key="user-insights", ttl_ms=300_000),
    OperationPolicy("get_replies", cache_key="replies:{thread_id}", ttl_ms=30_000),
    OperationPolicy("get_conversation", cache_key="conversation:{thread_id}", ttl_ms=30_000),
    OperationPolicy(
        "create_thread",
        kind=OperationKind.WRITE,
        event="thread.created",
        invalidates=("threads:",),
    ),
    OperationPolicy(
        "reply_to_thread",
        kind=OperationKind.WRITE,
        event="reply.created",
        invalidates=("replies:{thread_id}:", "conversation:{thread_id}:"),
    ),
)


class ResilientClient:
    """Composes a rate limiter, a cache and a webhook dispatcher around a base client.

    Components are built from settings unless injected; each client owns its
    own instances. The default cache is an AutoCleanCache, so the client must
    be created inside a running event loop (or be given a cache explicitly).

    Example:
        >>> async with ResilientClient(HttpApiClient()) as client:
        ...     thread = await client.call("get_thread", thread_id="123")
    """

    def __init__(
        self,
        base_client: BaseClient,
        operations: Optional[Mapping[str, OperationPolicy]] = None,
        *,
        limiter: Optional[TokenBucketLimiter] = None,
        cache: Optional[ExpiringCache] = None,
        dispatcher: Optional[WebhookDispatcher] = None,
        enable_rate_limiting: Optional[bool] = None,
        enable_caching: Optional[bool] = None,
        enable_webhooks: Optional[bool] = None,
        config: Optional[Settings] = None,
    ):
        """Initialize the client.

        Args:
            base_client: Operation set to wrap
            operations: Policies keyed by operation name (default: DEFAULT_OPERATIONS)
            limiter: Injected rate limiter
            cache: Injected cache
            dispatcher: Injected webhook dispatcher
            enable_rate_limiting: Build a limiter when none is injected
                (default: settings.rate_limit_enabled)
            enable_caching: Build a cache when none is injected
                (default: settings.cache_enabled)
            enable_webhooks: Build a dispatcher when none is injected
                (default: settings.webhooks_enabled)
            config: Settings to build components from (default: global settings)
        """
        cfg = config or default_settings
        self._base = base_client
        self._operations: Dict[str, OperationPolicy] = dict(
            operations if operations is not None else DEFAULT_OPERATIONS
        )

        if enable_rate_limiting is None:
            enable_rate_limiting = cfg.rate_limit_enabled
        if enable_caching is None:
            enable_caching = cfg.cache_enabled
        if enable_webhooks is None:
            enable_webhooks = cfg.webhooks_enabled

        if limiter is None and enable_rate_limiting:
            limiter = TokenBucketLimiter(
                RateLimitConfig(
                    max_tokens=cfg.rate_limit_max_tokens,
                    refill_rate=cfg.rate_limit_refill_rate,
                    refill_interval_ms=cfg.rate_limit_refill_interval_ms,
                )
            )
        if cache is None and enable_caching:
            cache = AutoCleanCache(
                ttl_ms=cfg.cache_ttl_ms,
                max_size=cfg.cache_max_size,
                cleanup_interval_ms=cfg.cache_cleanup_interval_ms,
            )
        if dispatcher is None and enable_webhooks:
            dispatcher = WebhookDispatcher(
                WebhookConfig(
                    max_retries=cfg.webhook_max_retries,
                    retry_delay_ms=cfg.webhook_retry_delay_ms,
                    timeout_ms=cfg.webhook_timeout_ms,
                    user_agent=cfg.webhook_user_agent,
                )
            )

        self._limiter = limiter
        self._cache = cache
        self._dispatcher = dispatcher

    @classmethod
    def from_settings(
        cls,
        token_provider: Optional[TokenProvider] = None,
        config: Optional[Settings] = None,
        **kwargs: Any,
    ) -> "ResilientClient":
        """Build an HttpApiClient from settings and wrap it."""
        cfg = config or default_settings
        base = HttpApiClient(
            token_provider=token_provider,
            base_url=cfg.api_base_url,
            timeout=cfg.api_timeout,
        )
        return cls(base, config=cfg, **kwargs)

    @property
    def rate_limiter(self) -> Optional[TokenBucketLimiter]:
        return self._limiter

    @property
    def cache(self) -> Optional[ExpiringCache]:
        return self._cache

    @property
    def webhooks(self) -> Optional[WebhookDispatcher]:
        return self._dispatcher

    @property
    def operations(self) -> Dict[str, OperationPolicy]:
        return dict(self._operations)

    async def call(self, operation: str, **args: Any) -> Any:
        """Run an operation through rate limiting, caching and webhooks.

        Args:
            operation: Registered operation name
            **args: Operation arguments, passed to the base client as a dict

        Returns:
            The operation result (possibly from cache)

        Raises:
            UnknownOperationError: If the operation has no policy
            ValueError: If an argument used by the cache key is missing
        """
        policy = self._operations.get(operation)
        if policy is None:
            raise UnknownOperationError(operation)
        policy.check_args(args)

        if self._limiter is not None:
            await self._limiter.consume(policy.token_cost)

        if policy.kind is OperationKind.WRITE:
            return await self._write(policy, args)
        return await self._read(policy, args)

    async def _read(self, policy: OperationPolicy, args: Dict[str, Any]) -> Any:
        key = policy.build_cache_key(args) if self._cache is not None else None
        if key is not None:
            cached = self._cache.get(key, _MISSING)
            if cached is not _MISSING:
                logger.debug(
                    f"Cache hit for {policy.name}",
                    extra=get_log_context(operation=policy.name),
                )
                return cached

        result = await self._perform(policy, args)

        if key is not None:
            self._cache.set(key, result, policy.ttl_ms)
        return result

    async def _write(self, policy: OperationPolicy, args: Dict[str, Any]) -> Any:
        result = await self._perform(policy, args)

        for prefix in policy.invalidation_prefixes(args):
            self.invalidate_cache(prefix)

        if self._dispatcher is not None and policy.event:
            await self._dispatcher.trigger(policy.event, {"result": result, "args": args})
        return result

    async def _perform(self, policy: OperationPolicy, args: Dict[str, Any]) -> Any:
        start = time.perf_counter()
        result = await self._base.perform(policy.name, args)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            f"{policy.name} completed in {duration_ms:.1f}ms",
            extra=get_log_context(operation=policy.name, duration_ms=round(duration_ms, 1)),
        )
        return result

    def invalidate_cache(self, prefix: str) -> int:
        """Delete every cached key starting with prefix.

        Returns:
            Number of entries removed
        """
        if self._cache is None:
            return 0
        removed = self._cache.delete_prefix(prefix)
        if removed:
            logger.debug(f"Invalidated {removed} cache entries with prefix {prefix!r}")
        return removed

    def clear_cache(self) -> None:
        """Drop every cached entry.

        Clearing an AutoCleanCache also stops its sweep task.
        """
        if self._cache is not None:
            self._cache.clear()

    def reset_rate_limit(self) -> None:
        if self._limiter is not None:
            self._limiter.reset()

    def register_operations(self, policies: Iterable[OperationPolicy]) -> None:
        """Add or replace operation policies."""
        for policy in policies:
            self._operations[policy.name] = policy

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics for each enabled component."""
        return {
            "cache": self._cache.stats() if self._cache is not None else None,
            "rate_limiter": (
                {"tokens": self._limiter.get_tokens()} if self._limiter is not None else None
            ),
            "webhooks": self._dispatcher.stats() if self._dispatcher is not None else None,
        }

    async def aclose(self) -> None:
        """Stop the cache sweep task and close the base client."""
        if isinstance(self._cache, AutoCleanCache):
            self._cache.stop_cleanup()
        await self._base.aclose()

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
