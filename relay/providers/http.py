import string
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import httpx

from relay.core.config import settings
from relay.core.http_client import create_http_client
from relay.core.logging import get_log_context, get_logger
from relay.exceptions import ApiError, UnknownOperationError
from relay.providers.base import BaseClient, StaticTokenProvider, TokenProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class Endpoint:
    """HTTP mapping of one operation.

    Placeholders in path are filled from the operation arguments; the
    remaining arguments become query parameters for GET and DELETE, or the
    JSON body otherwise. params are sent with every call.
    """

    method: str
    path: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def path_fields(self) -> set[str]:
        return {
            name for _, name, _, _ in string.Formatter().parse(self.path) if name
        }


# Resource API operations consumed by DEFAULT_OPERATIONS in the resilient client
DEFAULT_ENDPOINTS: Dict[str, Endpoint] = {
    "get_profile": Endpoint("GET", "/me"),
    "get_threads": Endpoint("GET", "/me/threads", {"limit": 25}),
    "get_thread": Endpoint("GET", "/{thread_id}"),
    "get_thread_insights": Endpoint("GET", "/{thread_id}/insights"),
    "get_user_insights": Endpoint("GET", "/me/threads_insights"),
    "get_replies": Endpoint("GET", "/{thread_id}/replies"),
    "get_conversation": Endpoint("GET", "/{thread_id}/conversation"),
    "create_thread": Endpoint("POST", "/me/threads"),
    "reply_to_thread": Endpoint("POST", "/{thread_id}/replies"),
}


def _query_value(value: Any) -> Any:
    # Field selections are sent as comma separated lists
    if isinstance(value, (list, tuple, set)):
        return ",".join(str(v) for v in value)
    return value


class HttpApiClient(BaseClient):
    """Bearer-token REST client implementing the BaseClient operation set.

    Accepts an external httpx.AsyncClient for connection pooling, or creates
    its own (closed by aclose()).
    """

    def __init__(
        self,
        endpoints: Optional[Mapping[str, Endpoint]] = None,
        token_provider: Optional[TokenProvider] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the client.

        Args:
            endpoints: Operation name to endpoint mapping (default: DEFAULT_ENDPOINTS)
            token_provider: Bearer token source (default: settings.api_access_token)
            base_url: The API base URL (default: settings.api_base_url)
            http_client: Optional shared HTTP client
            timeout: Request timeout in seconds (default: settings.api_timeout)
        """
        self.endpoints = dict(endpoints if endpoints is not None else DEFAULT_ENDPOINTS)
        self.token_provider = token_provider or StaticTokenProvider(settings.api_access_token)
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.api_timeout
        self._owns_client = http_client is None
        self._http_client = http_client or create_http_client(timeout=self.timeout)

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client

    async def _build_headers(self) -> Dict[str, str]:
        token = await self.token_provider.get_token()
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    def _build_request(
        self, endpoint: Endpoint, args: Dict[str, Any]
    ) -> tuple[str, Dict[str, Any]]:
        path_fields = endpoint.path_fields()
        missing = path_fields - set(args)
        if missing:
            raise ValueError(f"Missing path arguments: {sorted(missing)}")

        url = f"{self.base_url}{endpoint.path.format_map(args)}"
        rest = {k: v for k, v in args.items() if k not in path_fields and v is not None}

        if endpoint.method.upper() in ("GET", "DELETE"):
            params = {**endpoint.params, **rest}
            return url, {"params": {k: _query_value(v) for k, v in params.items()}}
        request: Dict[str, Any] = {"json": rest}
        if endpoint.params:
            request["params"] = {k: _query_value(v) for k, v in endpoint.params.items()}
        return url, request

    async def perform(self, operation: str, args: Dict[str, Any]) -> Any:
        """Send the request mapped to an operation.

        Raises:
            UnknownOperationError: If no endpoint is mapped to the operation
            ApiError: If the API returns a non-2xx status or cannot be reached
        """
        endpoint = self.endpoints.get(operation)
        if endpoint is None:
            raise UnknownOperationError(operation)

        url, request = self._build_request(endpoint, args)
        headers = await self._build_headers()

        try:
            resp = await self._http_client.request(
                endpoint.method, url, headers=headers, timeout=self.timeout, **request
            )
        except httpx.TimeoutException as e:
            raise ApiError(f"Request to {operation} timed out") from e
        except httpx.HTTPError as e:
            raise ApiError(f"Request to {operation} failed: {e}") from e

        if not resp.is_success:
            logger.warning(
                f"API call {operation} returned HTTP {resp.status_code}",
                extra=get_log_context(operation=operation, status_code=resp.status_code),
            )
            raise ApiError(
                f"API error {resp.status_code} for {operation}",
                status_code=resp.status_code,
                body=resp.text,
            )

        if not resp.content:
            return None
        return resp.json()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()
