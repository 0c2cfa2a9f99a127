"""Per-asset notification cooldown using Redis keys with expiry."""
from typing import Optional

from athwatch.core.config import settings
from athwatch.core.errors import store_errors
from athwatch.utils.time import utcnow

KEY_PREFIX = "cooldown:"


class NotificationCooldown:
    """Suppress repeat notifications for the same asset within a window.

    Suppression is asset-global: once any notification fires for an asset,
    every user is suppressed for that asset until the key expires.
    """

    def __init__(self, redis_client):
        self.redis = redis_client

    def _make_key(self, asset_id: str) -> str:
        return f"{KEY_PREFIX}{asset_id}"

    async def claim(self, asset_id: str, ttl_seconds: Optional[int] = None) -> bool:
        """
        Atomically start the cooldown window for an asset.

        Uses a single SET NX EX so two concurrent or retried runs cannot
        both win the claim.

        Returns:
            True if this caller started the window, False if one is running

        Raises:
            StoreUnavailable: Store unreachable
        """
        ttl = ttl_seconds or settings.notification_cooldown_seconds
        with store_errors("cooldown claim"):
            acquired = await self.redis.set(
                self._make_key(asset_id), utcnow().isoformat(), nx=True, ex=ttl
            )
        return bool(acquired)

    async def is_cooling_down(self, asset_id: str) -> bool:
        with store_errors("cooldown check"):
            return bool(await self.redis.exists(self._make_key(asset_id)))

    async def remaining_seconds(self, asset_id: str) -> int:
        """Seconds left in the window (0 when none is running)."""
        with store_errors("cooldown ttl"):
            ttl = await self.redis.ttl(self._make_key(asset_id))
        return max(ttl, 0)

    async def clear_all(self) -> int:
        """Delete every cooldown key (admin maintenance). Returns keys removed."""
        removed = 0
        with store_errors("cooldown clear"):
            async for key in self.redis.scan_iter(match=f"{KEY_PREFIX}*", count=100):
                removed += await self.redis.delete(key)
        return removed

