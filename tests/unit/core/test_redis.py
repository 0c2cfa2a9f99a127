"""Unit tests for the shared Redis client."""
import pytest
from unittest.mock import patch

from athwatch.core import redis as redis_module
from athwatch.core.config import settings
from athwatch.core.redis import close_redis, create_redis_client, get_redis


@pytest.mark.unit
class TestCreateRedisClient:
    """Test client construction."""

    def test_timeouts_from_settings(self):
        """✅ Socket timeouts and pool size come from settings."""
        with patch.object(settings, "redis_socket_timeout_seconds", 2.5), \
             patch.object(settings, "redis_max_connections", 7):
            client = create_redis_client("redis://localhost:6379/1")

        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["socket_timeout"] == 2.5
        assert kwargs["socket_connect_timeout"] == 2.5
        assert kwargs["db"] == 1
        assert client.connection_pool.max_connections == 7


@pytest.mark.unit
@pytest.mark.asyncio
class TestSharedClient:
    """Test get_redis/close_redis lifecycle."""

    async def test_client_reused_and_reset(self):
        """✅ Same client until closed, then a new one."""
        first = await get_redis()
        assert await get_redis() is first

        await close_redis()

        assert redis_module._client is None
        second = await get_redis()
        assert second is not first
        await close_redis()
