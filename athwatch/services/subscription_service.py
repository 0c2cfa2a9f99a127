"""Subscription service for entitlement checks."""
import logging
from datetime import datetime
from typing import Optional

import redis.asyncio as redis

from athwatch.core.errors import RecordInvalid, store_errors
from athwatch.models import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


def subscription_key(subscription_id: str) -> str:
    return f"subscription:{subscription_id}"


def user_subscription_key(user_id: str) -> str:
    return f"user:subscription:{user_id}"


class SubscriptionService:
    """Service for subscription lookups."""

    @staticmethod
    async def get_user_subscription(
        r: redis.Redis,
        user_id: str
    ) -> Optional[Subscription]:
        """
        Get the user's current subscription.

        Args:
            r: Redis client
            user_id: User ID

        Returns:
            Subscription, or None when the user has none or the record is invalid
        """
        with store_errors("subscription read"):
            subscription_id = await r.get(user_subscription_key(user_id))
            if not subscription_id:
                return None
            key = subscription_key(subscription_id)
            data = await r.hgetall(key)

        if not data:
            return None
        try:
            return Subscription.from_mapping(key, data)
        except RecordInvalid as e:
            logger.warning(f"Rejected subscription record for user {user_id}: {e}")
            return None

    @staticmethod
    async def has_active_subscription(
        r: redis.Redis,
        user_id: str,
        now: datetime
    ) -> bool:
        """Whether the user is currently entitled to notifications."""
        subscription = await SubscriptionService.get_user_subscription(r, user_id)
        return subscription is not None and subscription.is_entitled(now)

    @staticmethod
    async def save_subscription(r: redis.Redis, subscription: Subscription) -> Subscription:
        """
        Create or replace a subscription record.

        Keeps the per-status index sets in sync and points the user at the
        subscription while it is active.
        """
        key = subscription_key(subscription.id)
        with store_errors("subscription write"):
            previous_status = await r.hget(key, "status")
            async with r.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=subscription.to_mapping())
                if previous_status and previous_status != subscription.status:
                    pipe.srem(f"subscriptions:{previous_status}", subscription.id)
                pipe.sadd(f"subscriptions:{subscription.status}", subscription.id)
                if subscription.status == SubscriptionStatus.ACTIVE:
                    pipe.set(user_subscription_key(subscription.user_id), subscription.id)
                elif previous_status == SubscriptionStatus.ACTIVE.value:
                    pipe.delete(user_subscription_key(subscription.user_id))
                await pipe.execute()
        return subscription
