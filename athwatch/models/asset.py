"""Tracked asset record."""
from datetime import datetime
from typing import Optional

from pydantic import field_validator

from athwatch.models.base import RedisRecord
from athwatch.utils.time import ensure_utc


class Asset(RedisRecord):
    """Last known price and recorded all-time high of one asset.

    Stored at ``asset:{id}``. ``ath`` is a monotonic ratchet; only the
    comparator writes it.
    """

    id: str
    symbol: str
    name: str
    current_price: float
    market_cap_rank: Optional[int] = None
    ath: float
    ath_date: Optional[datetime] = None
    last_updated: datetime

    @field_validator('ath_date', 'last_updated')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @field_validator('current_price', 'ath')
    @classmethod
    def validate_price(cls, v: float) -> float:
        if v < 0:
            raise ValueError("prices cannot be negative")
        return v
