import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from relay.core.config import settings
from relay.core.logging import get_logger
from relay.exceptions import TokenRefreshError

logger = get_logger(__name__)


class BaseClient(ABC):
    """Operation set wrapped by the resilient client.

    Implementations perform one remote operation per call and return its
    parsed result, raising on failure. They know nothing about caching,
    rate limiting or webhooks.
    """

    @abstractmethod
    async def perform(self, operation: str, args: Dict[str, Any]) -> Any:
        """Run a remote operation.

        Args:
            operation: Operation name, e.g. "get_thread"
            args: Operation arguments

        Returns:
            The parsed result
        """
        pass

    async def aclose(self) -> None:
        """Release network resources held by the client."""


class TokenProvider(ABC):
    """Source of bearer tokens for outbound requests."""

    @abstractmethod
    async def get_token(self) -> str:
        """Return a currently valid access token, refreshing it if needed."""
        pass


class StaticTokenProvider(TokenProvider):
    """Always returns the same token."""

    def __init__(self, token: str):
        self._token = token

    async def get_token(self) -> str:
        return self._token


@dataclass
class TokenGrant:
    """An access token and its absolute expiry (Unix timestamp, seconds)."""

    access_token: str
    expires_at: float


class RefreshingTokenProvider(TokenProvider):
    """Refreshes a long-lived token shortly before it expires.

    The refresh callable receives the current token and returns a new grant.
    Concurrent callers share a single in-flight refresh.
    """

    def __init__(
        self,
        grant: TokenGrant,
        refresh: Callable[[str], Awaitable[TokenGrant]],
        refresh_margin_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the provider.

        Args:
            grant: The current token
            refresh: Async callable exchanging the current token for a new grant
            refresh_margin_seconds: Refresh when less than this remains before
                expiry (default: settings.token_refresh_margin_seconds)
            clock: Time source returning Unix seconds
        """
        self._grant = grant
        self._refresh = refresh
        self._margin = (
            refresh_margin_seconds
            if refresh_margin_seconds is not None
            else settings.token_refresh_margin_seconds
        )
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def grant(self) -> TokenGrant:
        return self._grant

    def is_valid(self) -> bool:
        """Whether the current token has not expired yet."""
        return self._grant.expires_at > self._clock()

    def _needs_refresh(self) -> bool:
        return self._grant.expires_at - self._clock() < self._margin

    async def get_token(self) -> str:
        if self._needs_refresh():
            async with self._lock:
                # Another caller may have refreshed while we waited
                if self._needs_refresh():
                    await self._refresh_token()
        return self._grant.access_token

    async def _refresh_token(self) -> None:
        try:
            grant = await self._refresh(self._grant.access_token)
        except Exception as e:
            logger.error(f"Token refresh failed: {type(e).__name__}: {e}")
            raise TokenRefreshError(f"Token refresh failed: {e}") from e
        self._grant = grant
        logger.info("Access token refreshed")
