"""ATH comparator: merges fetched quotes into the asset store and detects new highs."""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import redis.asyncio as redis

from athwatch.core.config import settings
from athwatch.core.errors import RunCancelled
from athwatch.models import Asset, ATHEvent
from athwatch.providers.models import MarketQuote
from athwatch.services.asset_service import AssetService
from athwatch.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ComparisonResult:
    """Outcome of one comparison pass."""
    assets: List[Asset] = field(default_factory=list)
    events: List[ATHEvent] = field(default_factory=list)
    failed_assets: Dict[str, str] = field(default_factory=dict)

    @property
    def compared(self) -> int:
        return len(self.assets)


async def compare_and_update(
    r: redis.Redis,
    quotes: List[MarketQuote],
    now: Optional[datetime] = None,
    threshold: Optional[float] = None,
    detect_missed_ath: Optional[bool] = None,
    cancel: Optional[asyncio.Event] = None
) -> ComparisonResult:
    """
    Compare fetched quotes against stored ATHs and persist the result.

    The whole pass commits atomically: either every asset is updated and
    every new high is returned as an event, or (store outage, cancellation)
    nothing is written and the next run sees the same ATHs again. A rejected
    stored record only affects that asset.

    Args:
        r: Redis client
        quotes: Quotes from the market data fetcher
        now: Detection timestamp (defaults to current UTC time)
        threshold: Minimum fractional increase (defaults to settings)
        detect_missed_ath: Use source-reported ATH as fallback (defaults to settings)
        cancel: Set to abort before the commit

    Returns:
        ComparisonResult with updated assets and detected events

    Raises:
        StoreUnavailable: Store failed during the pass
        RunCancelled: ``cancel`` was set
    """
    now = now or utcnow()
    threshold = settings.ath_min_increase_fraction if threshold is None else threshold
    detect_missed_ath = settings.detect_missed_ath if detect_missed_ath is None else detect_missed_ath

    if cancel is not None and cancel.is_set():
        raise RunCancelled("Cancelled before comparison")

    # The source occasionally repeats an id across pages; first (best rank) wins
    unique: Dict[str, MarketQuote] = {}
    for quote in quotes:
        unique.setdefault(quote.id, quote)

    merged, rejected = await AssetService.apply_quotes(
        r,
        list(unique.values()),
        now,
        threshold=threshold,
        detect_missed_ath=detect_missed_ath,
        cancel=cancel
    )

    result = ComparisonResult()
    for asset_id, error in rejected.items():
        logger.error(f"Skipping {asset_id}: {error}")
        result.failed_assets[asset_id] = error.kind.value

    for asset, event in merged:
        result.assets.append(asset)
        if event:
            logger.info(
                f"New ATH for {event.symbol}: {event.new_ath} "
                f"(previous {event.previous_ath}, +{event.percentage_increase:.2f}%)"
            )
            result.events.append(event)

    logger.info(
        f"Compared {result.compared} assets: {len(result.events)} new ATH(s), "
        f"{len(result.failed_assets)} rejected"
    )
    return result
