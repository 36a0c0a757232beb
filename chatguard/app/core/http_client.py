"""Shared HTTP client management for connection pooling.

The client is initialized on application startup and shared by the auth
provider calls made while resolving rate limit roles.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx

from chatguard.app.core.config import Settings, settings as default_settings


# Shared HTTP client for connection pooling
_shared_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client instance.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    if _shared_http_client is None:
        raise RuntimeError(
            "HTTP client not initialized. Ensure lifespan context is active."
        )
    return _shared_http_client


def create_http_client(config: Settings | None = None) -> httpx.AsyncClient:
    """Create a new HTTP client with pool limits and timeouts from settings.

    The returned client should be closed when done.
    """
    config = config or default_settings
    limits = httpx.Limits(
        max_connections=config.httpx_max_connections,
        max_keepalive_connections=config.httpx_max_keepalive_connections,
        keepalive_expiry=config.httpx_keepalive_expiry,
    )
    timeout = httpx.Timeout(
        connect=config.httpx_connect_timeout,
        read=config.httpx_read_timeout,
        write=config.httpx_write_timeout,
        pool=config.httpx_pool_timeout,
    )
    return httpx.AsyncClient(timeout=timeout, limits=limits)


@asynccontextmanager
async def init_http_client(
    config: Settings | None = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

    This context manager should be used in the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client():
                yield
    """
    global _shared_http_client

    _shared_http_client = create_http_client(config)

    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None
