"""HTTP client factory for connection pooling.

The base API client and the webhook dispatcher accept an injected
httpx.AsyncClient; when none is given they build one here from settings.
"""

from typing import Any

import httpx

from relay.core.config import settings


def create_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create a new HTTP client with default settings.

    The returned client should be closed when done. Pass it to
    HttpApiClient or WebhookDispatcher to share one pool between them:

        async with create_http_client() as http:
            client = HttpApiClient(http_client=http)

    Args:
        **kwargs: Override default settings. Can include:
            - timeout: Single timeout value (overrides all granular timeouts)
            - connect_timeout, read_timeout, write_timeout, pool_timeout
            - max_connections, max_keepalive_connections, keepalive_expiry

    Returns:
        A new httpx.AsyncClient instance.
    """
    timeout_override = kwargs.get("timeout")
    if timeout_override is not None:
        timeout = httpx.Timeout(timeout_override)
    else:
        timeout = httpx.Timeout(
            connect=kwargs.get("connect_timeout", settings.httpx_connect_timeout),
            read=kwargs.get("read_timeout", settings.httpx_read_timeout),
            write=kwargs.get("write_timeout", settings.httpx_write_timeout),
            pool=kwargs.get("pool_timeout", settings.httpx_pool_timeout),
        )

    limits = httpx.Limits(
        max_connections=kwargs.get("max_connections", settings.httpx_max_connections),
        max_keepalive_connections=kwargs.get(
            "max_keepalive_connections", settings.httpx_max_keepalive_connections
        ),
        keepalive_expiry=kwargs.get("keepalive_expiry", settings.httpx_keepalive_expiry),
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits)
