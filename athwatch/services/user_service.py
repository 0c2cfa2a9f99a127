"""User service for reading users and their notification flag."""
import logging
from typing import List, Optional

import redis.asyncio as redis

from athwatch.core.errors import RecordInvalid, store_errors
from athwatch.models import User

logger = logging.getLogger(__name__)

USERS_INDEX = "users:all"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


class UserService:
    """Service for user record access."""

    @staticmethod
    async def get_user(r: redis.Redis, user_id: str) -> Optional[User]:
        """
        Get a user by id.

        Raises:
            RecordInvalid: Stored hash failed validation
        """
        key = user_key(user_id)
        with store_errors("user read"):
            data = await r.hgetall(key)
        if not data:
            return None
        return User.from_mapping(key, data)

    @staticmethod
    async def get_all_users(r: redis.Redis) -> List[User]:
        """Get all users, skipping records that fail validation."""
        with store_errors("user listing"):
            user_ids = await r.smembers(USERS_INDEX)

        users = []
        for user_id in sorted(user_ids):
            try:
                user = await UserService.get_user(r, user_id)
            except RecordInvalid as e:
                logger.warning(f"Rejected user record: {e}")
                continue
            if user:
                users.append(user)
            else:
                logger.debug(f"User {user_id} indexed but missing")
        return users

    @staticmethod
    async def get_users_with_notifications(r: redis.Redis) -> List[User]:
        """Get users whose notification flag is set."""
        users = await UserService.get_all_users(r)
        return [u for u in users if u.notifications_enabled]

    @staticmethod
    async def save_user(r: redis.Redis, user: User) -> User:
        """Create or replace a user record and index it."""
        with store_errors("user write"):
            async with r.pipeline(transaction=True) as pipe:
                pipe.hset(user_key(user.id), mapping=user.to_mapping())
                pipe.sadd(USERS_INDEX, user.id)
                await pipe.execute()
        return user

    @staticmethod
    async def set_notifications_enabled(r: redis.Redis, user_id: str, enabled: bool):
        """Write the derived notification flag (the only user field the pipeline owns)."""
        with store_errors("user flag write"):
            await r.hset(user_key(user_id), "notifications_enabled", "true" if enabled else "false")
