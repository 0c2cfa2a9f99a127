"""Eligibility resolver and notification preference reconciliation."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import redis.asyncio as redis

from athwatch.core.errors import StoreUnavailable
from athwatch.models import ATHEvent, User
from athwatch.services.cooldown import NotificationCooldown
from athwatch.services.subscription_service import SubscriptionService
from athwatch.services.user_service import UserService
from athwatch.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    """Recipients for one ATH event, or the reason there are none."""
    recipients: List[User] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def suppressed(self) -> bool:
        """Recipients existed but the cooldown or store blocked the send."""
        return self.reason in ("cooldown", "store_unavailable")


@dataclass
class ReconciliationResult:
    total: int
    enabled_before: int
    enabled_after: int
    changed: int


class EligibilityResolver:
    """Computes which users receive a given ATH event.

    A resolver instance is meant to live for one pipeline run: the entitled
    user list is read once and reused for every event of that run.
    """

    def __init__(self, redis_client: redis.Redis, cooldown: Optional[NotificationCooldown] = None):
        self.redis = redis_client
        self.cooldown = cooldown or NotificationCooldown(redis_client)
        self._entitled: Optional[List[User]] = None

    async def is_eligible(self, user: User, now: datetime) -> bool:
        """Notifications on, active account, not admin, entitled subscription."""
        if not user.notifications_enabled or not user.is_active or user.is_admin:
            return False
        return await SubscriptionService.has_active_subscription(self.redis, user.id, now)

    async def get_eligible_users(self, now: Optional[datetime] = None) -> List[User]:
        """Users passing every per-user check (cooldown not considered)."""
        if self._entitled is not None:
            return self._entitled

        now = now or utcnow()
        candidates = await UserService.get_users_with_notifications(self.redis)

        eligible = []
        for user in candidates:
            if await self.is_eligible(user, now):
                eligible.append(user)
            else:
                logger.debug(f"User {user.id} skipped: not entitled")

        logger.info(f"{len(eligible)} eligible users out of {len(candidates)} with notifications enabled")
        self._entitled = eligible
        return eligible

    async def resolve(self, event: ATHEvent, now: Optional[datetime] = None) -> Resolution:
        """
        Compute the recipient list for an event.

        On a non-empty result the asset's cooldown is claimed before
        returning, so a concurrent or retried run cannot notify again. A
        store failure conservatively skips this asset only.

        Args:
            event: Detected ATH event
            now: Evaluation time (defaults to current UTC time)

        Returns:
            Resolution with recipients, or an empty one with a reason
        """
        try:
            recipients = await self.get_eligible_users(now)
            if not recipients:
                logger.info(f"No eligible users for {event.symbol} ATH")
                return Resolution(reason="no_eligible_users")

            if not await self.cooldown.claim(event.asset_id):
                remaining = await self.cooldown.remaining_seconds(event.asset_id)
                logger.info(
                    f"Skipping {event.symbol} ATH notification: cooldown active ({remaining}s left)"
                )
                return Resolution(reason="cooldown")
        except StoreUnavailable as e:
            logger.error(f"Store unavailable resolving recipients for {event.symbol}, skipping: {e}")
            return Resolution(reason="store_unavailable")

        return Resolution(recipients=list(recipients))

    async def reconcile_preferences(self, now: Optional[datetime] = None) -> ReconciliationResult:
        """
        Re-derive every user's ``notifications_enabled`` flag.

        Enabled only for non-admin users who opted in and hold an active
        subscription. Only changed users are written.
        """
        now = now or utcnow()
        users = await UserService.get_all_users(self.redis)
        enabled_before = sum(1 for u in users if u.notifications_enabled)
        enabled_after = 0
        changed = 0

        for user in users:
            should_enable = (
                user.notifications_opt_in
                and not user.is_admin
                and await SubscriptionService.has_active_subscription(self.redis, user.id, now)
            )
            if should_enable:
                enabled_after += 1
            if user.notifications_enabled != should_enable:
                await UserService.set_notifications_enabled(self.redis, user.id, should_enable)
                changed += 1
                logger.info(
                    f"Notification flag for user {user.id} set to {should_enable} "
                    f"(role={user.role}, opt_in={user.notifications_opt_in})"
                )

        self._entitled = None
        result = ReconciliationResult(
            total=len(users),
            enabled_before=enabled_before,
            enabled_after=enabled_after,
            changed=changed
        )
        logger.info(f"Preference reconciliation complete: {result}")
        return result
