"""Shared Redis client for asset, user, ledger and lock records."""
import asyncio
import logging

import redis.asyncio as redis

from athwatch.core.config import settings

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None
_client_lock = asyncio.Lock()


def create_redis_client(url: str | None = None) -> redis.Redis:
    """
    Build a client with bounded socket timeouts.

    A hung store surfaces as ``TimeoutError`` (translated to
    ``StoreUnavailable`` by callers) instead of stalling a run past its lock TTL.
    """
    return redis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
        health_check_interval=30
    )


async def get_redis() -> redis.Redis:
    """Return the process-wide client, creating it on first use."""
    global _client

    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = create_redis_client()
            logger.info("Redis client initialized")
    return _client


async def close_redis():
    """Close the process-wide client (API shutdown, scheduler exit, scripts)."""
    global _client
    async with _client_lock:
        if _client is not None:
            await _client.aclose()
            _client = None
            logger.info("Redis client closed")
