"""
HTTP client factory for the completion API.

Builds a long-lived httpx AsyncClient with connection pooling and
per-phase timeouts from Settings. One client is created per process in
the application lifespan and injected into the completion client; it is
closed on shutdown.
"""
from typing import Optional

import httpx
import structlog

from chat_responder.config import Settings

logger = structlog.get_logger(__name__)


def _create_limits(settings: Settings) -> httpx.Limits:
    return httpx.Limits(
        max_connections=settings.http_max_connections,
        max_keepalive_connections=settings.http_max_keepalive,
        keepalive_expiry=5.0,  # Close idle connections after 5 seconds
    )


def _create_timeout(settings: Settings) -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.http_timeout_connect,
        read=settings.http_timeout_read,
        write=settings.http_timeout_write,
        pool=settings.http_timeout_pool,
    )


def create_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the pooled HTTP client.

    Args:
        settings: Service settings (pool limits and timeouts)
        transport: Optional transport override (e.g. httpx.MockTransport)

    Returns:
        httpx.AsyncClient: Client to be closed with close_client()
    """
    logger.info(
        "http_client.init",
        max_connections=settings.http_max_connections,
        max_keepalive=settings.http_max_keepalive,
    )
    return httpx.AsyncClient(
        limits=_create_limits(settings),
        timeout=_create_timeout(settings),
        transport=transport,
    )


async def close_client(client: httpx.AsyncClient) -> None:
    logger.info("http_client.close")
    await client.aclose()
