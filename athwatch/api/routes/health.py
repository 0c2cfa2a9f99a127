"""Health check endpoint."""
import logging

import redis.asyncio as redis
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from athwatch.core.redis import get_redis

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check(r: redis.Redis = Depends(get_redis)):
    """Liveness plus a Redis ping."""
    try:
        await r.ping()
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "service": "athwatch-api", "redis": "unavailable"}
        )
    return {"status": "healthy", "service": "athwatch-api", "redis": "ok"}
