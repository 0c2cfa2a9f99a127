"""Shared pytest fixtures and factories for pipeline tests."""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import fakeredis.aioredis
import pytest

from athwatch.core.errors import SourceUnavailable
from athwatch.models import (
    Asset,
    Subscription,
    SubscriptionStatus,
    User,
    UserRole,
)
from athwatch.providers import EmailSender, MarketDataProvider
from athwatch.providers.models import EmailMessage, MarketQuote
from athwatch.services import SubscriptionService, UserService
from athwatch.services.asset_service import ASSETS_INDEX, asset_key


# Real current time: the pipeline evaluates subscriptions against the wall clock
NOW = datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
async def fake_redis():
    """Create a FakeRedis instance for testing."""
    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def now():
    return NOW


def create_quote(
    asset_id: str = "bitcoin",
    symbol: str = "BTC",
    name: str = "Bitcoin",
    current_price: float = 61000.0,
    market_cap_rank: Optional[int] = 1,
    source_ath: Optional[float] = None
) -> MarketQuote:
    """Factory function to create MarketQuote instances for testing."""
    return MarketQuote(
        id=asset_id,
        symbol=symbol,
        name=name,
        current_price=current_price,
        market_cap_rank=market_cap_rank,
        source_ath=source_ath,
        last_updated=NOW
    )


def create_user(
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    role: UserRole = UserRole.USER,
    is_active: bool = True,
    notifications_opt_in: bool = True,
    notifications_enabled: bool = True
) -> User:
    """Factory function to create User instances for testing."""
    user_id = user_id or uuid.uuid4().hex[:8]
    return User(
        id=user_id,
        email=email or f"{user_id}@example.com",
        role=role,
        is_active=is_active,
        notifications_opt_in=notifications_opt_in,
        notifications_enabled=notifications_enabled,
        created_at=NOW - timedelta(days=60)
    )


def create_subscription(
    user_id: str,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    end_date: Optional[datetime] = None
) -> Subscription:
    """Factory function to create Subscription instances for testing."""
    return Subscription(
        id=f"sub-{user_id}",
        user_id=user_id,
        status=status,
        start_date=NOW - timedelta(days=30),
        end_date=end_date or NOW + timedelta(days=30),
        amount=9.99
    )


async def seed_user(
    r,
    subscription_status: Optional[SubscriptionStatus] = SubscriptionStatus.ACTIVE,
    end_date: Optional[datetime] = None,
    **user_kwargs
) -> User:
    """Persist a user and (optionally) a subscription."""
    user = await UserService.save_user(r, create_user(**user_kwargs))
    if subscription_status is not None:
        await SubscriptionService.save_subscription(
            r, create_subscription(user.id, subscription_status, end_date)
        )
    return user


async def seed_asset(
    r,
    asset_id: str = "bitcoin",
    symbol: str = "BTC",
    name: str = "Bitcoin",
    ath: float = 60000.0,
    current_price: Optional[float] = None
) -> Asset:
    """Persist an asset record with a known ATH."""
    asset = Asset(
        id=asset_id,
        symbol=symbol,
        name=name,
        current_price=current_price if current_price is not None else ath,
        market_cap_rank=1,
        ath=ath,
        ath_date=NOW - timedelta(days=10),
        last_updated=NOW - timedelta(minutes=5)
    )
    await r.hset(asset_key(asset_id), mapping=asset.to_mapping())
    await r.sadd(ASSETS_INDEX, asset_id)
    return asset


class FakeMarketData(MarketDataProvider):
    """In-memory market data source."""

    def __init__(self, quotes: Optional[List[MarketQuote]] = None, error: Optional[Exception] = None):
        self.quotes = quotes or []
        self.error = error
        self.calls = 0
        self.closed = False

    async def get_top_assets(self, limit: int) -> List[MarketQuote]:
        self.calls += 1
        if self.error:
            raise self.error
        return self.quotes[:limit]

    async def close(self):
        self.closed = True


class FakeEmailSender(EmailSender):
    """Records sent messages; fails for addresses listed in ``fail_for``."""

    def __init__(self, fail_for: Optional[Dict[str, Exception]] = None):
        self.fail_for = fail_for or {}
        self.sent: List[EmailMessage] = []
        self.closed = False

    async def send(self, message: EmailMessage) -> str:
        if message.to_address in self.fail_for:
            raise self.fail_for[message.to_address]
        self.sent.append(message)
        return f"msg-{len(self.sent)}"

    async def close(self):
        self.closed = True


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def unavailable_source():
    return FakeMarketData(error=SourceUnavailable("CoinGecko API timeout after retries"))
