"""Core package initialization."""
from athwatch.core.config import settings
from athwatch.core.redis import get_redis, close_redis

__all__ = ["settings", "get_redis", "close_redis"]
