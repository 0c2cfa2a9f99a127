"""Single-flight run lock and persisted pipeline status."""
import logging
import uuid
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from athwatch.core.config import settings
from athwatch.core.errors import RecordInvalid, store_errors
from athwatch.models import RunOutcome, RunSummary

logger = logging.getLogger(__name__)

LOCK_KEY = "pipeline:lock"
STATUS_KEY = "pipeline:status"
LAST_SUCCESS_KEY = "pipeline:status:last_success"


class RunLock:
    """Store-backed lock that keeps at most one pipeline run in flight.

    The lock expires on its own after ``ttl_seconds`` so a crashed run
    cannot block the schedule forever. Release only deletes the key if it
    still holds this instance's token.
    """

    def __init__(self, redis_client: redis.Redis, ttl_seconds: Optional[int] = None, key: str = LOCK_KEY):
        self.redis = redis_client
        self.ttl = ttl_seconds or settings.pipeline_lock_ttl_seconds
        self.key = key
        self.token: Optional[str] = None

    async def acquire(self) -> bool:
        """
        Try to take the lock without waiting.

        Returns:
            True if acquired, False if another run holds it

        Raises:
            StoreUnavailable: Store unreachable
        """
        token = uuid.uuid4().hex
        with store_errors("run lock acquire"):
            acquired = await self.redis.set(self.key, token, nx=True, ex=self.ttl)
        if acquired:
            self.token = token
            return True
        return False

    async def release(self) -> bool:
        """Release the lock if still owned. Returns whether a key was deleted."""
        if self.token is None:
            return False

        token, self.token = self.token, None
        with store_errors("run lock release"):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(self.key)
                    current = await pipe.get(self.key)
                    if current != token:
                        await pipe.unwatch()
                        logger.warning("Run lock expired or taken over before release")
                        return False
                    pipe.multi()
                    pipe.delete(self.key)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.warning("Run lock changed during release, leaving it in place")
                    return False

    async def is_locked(self) -> bool:
        with store_errors("run lock check"):
            return bool(await self.redis.exists(self.key))


class PipelineStatusStore:
    """Last run summary and last successful run, kept for the admin status endpoint."""

    @staticmethod
    async def save_summary(r: redis.Redis, summary: RunSummary):
        with store_errors("pipeline status write"):
            async with r.pipeline(transaction=True) as pipe:
                pipe.delete(STATUS_KEY)
                pipe.hset(STATUS_KEY, mapping=summary.to_mapping())
                if summary.status == RunOutcome.COMPLETED.value:
                    pipe.delete(LAST_SUCCESS_KEY)
                    pipe.hset(LAST_SUCCESS_KEY, mapping=summary.to_mapping())
                await pipe.execute()

    @staticmethod
    async def get_last_run(r: redis.Redis) -> Optional[RunSummary]:
        return await _read_summary(r, STATUS_KEY)

    @staticmethod
    async def get_last_successful_run(r: redis.Redis) -> Optional[RunSummary]:
        return await _read_summary(r, LAST_SUCCESS_KEY)


async def _read_summary(r: redis.Redis, key: str) -> Optional[RunSummary]:
    with store_errors("pipeline status read"):
        data = await r.hgetall(key)
    if not data:
        return None
    try:
        return RunSummary.from_mapping(key, data)
    except RecordInvalid as e:
        logger.warning(f"Rejected pipeline status: {e}")
        return None
