"""Asset store: tracked asset records and their recorded ATH."""
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import WatchError

from athwatch.core.errors import RecordInvalid, RunCancelled, StoreUnavailable, store_errors
from athwatch.models import Asset, ATHEvent
from athwatch.providers.models import MarketQuote

logger = logging.getLogger(__name__)

ASSETS_INDEX = "assets:all"
MAX_WATCH_RETRIES = 10


def asset_key(asset_id: str) -> str:
    return f"asset:{asset_id}"


class AssetService:
    """Service for asset record access."""

    @staticmethod
    async def get_asset(r: redis.Redis, asset_id: str) -> Optional[Asset]:
        """
        Get a stored asset.

        Raises:
            RecordInvalid: Stored hash failed validation
        """
        key = asset_key(asset_id)
        with store_errors("asset read"):
            data = await r.hgetall(key)
        if not data:
            return None
        return Asset.from_mapping(key, data)

    @staticmethod
    async def get_all_assets(r: redis.Redis) -> List[Asset]:
        """Get every tracked asset, skipping records that fail validation."""
        with store_errors("asset listing"):
            asset_ids = await r.smembers(ASSETS_INDEX)

        assets = []
        for asset_id in sorted(asset_ids):
            try:
                asset = await AssetService.get_asset(r, asset_id)
            except RecordInvalid as e:
                logger.warning(f"Rejected asset record: {e}")
                continue
            if asset:
                assets.append(asset)
        return assets

    @staticmethod
    async def apply_quotes(
        r: redis.Redis,
        quotes: List[MarketQuote],
        now: datetime,
        threshold: float = 0.0,
        detect_missed_ath: bool = False,
        cancel: Optional[asyncio.Event] = None
    ) -> Tuple[List[Tuple[Asset, Optional[ATHEvent]]], Dict[str, RecordInvalid]]:
        """
        Merge a batch of fresh quotes into the stored asset records, all or nothing.

        Every asset key is WATCHed, read and merged, then all writes commit in
        a single MULTI/EXEC. A store failure, cancellation or rejected commit
        leaves every record as it was, so no ATH is ratcheted without its
        event reaching the caller. ``ath`` and ``ath_date`` change only when
        the price clears ``stored_ath * (1 + threshold)``.

        Args:
            r: Redis client
            quotes: Freshly fetched quotes, one per asset id
            now: Detection timestamp
            threshold: Minimum fractional increase over the stored ATH
            detect_missed_ath: Also treat a source-reported ATH above the
                stored one as a new high
            cancel: Set to abort before the commit

        Returns:
            ([(updated asset, ATH event or None)], {asset_id: RecordInvalid})

        Raises:
            StoreUnavailable: Store unreachable, or the keys stayed contended
            RunCancelled: ``cancel`` was set
        """
        if not quotes:
            return [], {}

        keys = [asset_key(q.id) for q in quotes]

        with store_errors("asset update"):
            async with r.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(*keys)
                        merged: List[Tuple[Asset, Optional[ATHEvent]]] = []
                        rejected: Dict[str, RecordInvalid] = {}

                        for quote, key in zip(quotes, keys):
                            _check_cancel(cancel)
                            try:
                                stored = await _load_asset(pipe, key)
                            except RecordInvalid as e:
                                rejected[quote.id] = e
                                continue
                            merged.append(_merge(stored, quote, now, threshold, detect_missed_ath))

                        _check_cancel(cancel)
                        if not merged:
                            return merged, rejected

                        pipe.multi()
                        for asset, _ in merged:
                            pipe.hset(asset_key(asset.id), mapping=asset.to_mapping())
                        pipe.sadd(ASSETS_INDEX, *(asset.id for asset, _ in merged))
                        await pipe.execute()
                        return merged, rejected
                    except WatchError:
                        logger.debug(f"Concurrent update on {len(keys)} asset keys, retrying")
                        continue

        raise StoreUnavailable(f"Gave up updating {len(keys)} assets after {MAX_WATCH_RETRIES} contended attempts")


def _check_cancel(cancel: Optional[asyncio.Event]):
    if cancel is not None and cancel.is_set():
        raise RunCancelled("Cancelled during comparison")


async def _load_asset(pipe, key: str) -> Optional[Asset]:
    """Read one watched asset hash (immediate mode, before MULTI)."""
    data = await pipe.hgetall(key)
    return Asset.from_mapping(key, data) if data else None


def _merge(
    stored: Optional[Asset],
    quote: MarketQuote,
    now: datetime,
    threshold: float,
    detect_missed_ath: bool
) -> tuple[Asset, Optional[ATHEvent]]:
    """Compute the new asset record and the ATH event, if any."""
    last_updated = quote.last_updated or now

    if stored is None:
        # First ingestion: no previous ATH to compare against, so no event
        seed_ath = max(quote.current_price, quote.source_ath or 0.0)
        asset = Asset(
            id=quote.id,
            symbol=quote.symbol,
            name=quote.name,
            current_price=quote.current_price,
            market_cap_rank=quote.market_cap_rank,
            ath=seed_ath,
            ath_date=now if quote.current_price >= seed_ath else None,
            last_updated=last_updated
        )
        return asset, None

    previous_ath = stored.ath
    required = previous_ath * (1 + threshold)
    new_ath: Optional[float] = None

    if quote.current_price > required:
        new_ath = quote.current_price
    elif detect_missed_ath and quote.source_ath is not None and quote.source_ath > required:
        # High was reached between two runs and only the source saw it
        new_ath = quote.source_ath

    asset = stored.model_copy(update={
        "symbol": quote.symbol,
        "name": quote.name,
        "current_price": quote.current_price,
        "market_cap_rank": quote.market_cap_rank,
        "last_updated": last_updated,
    })

    if new_ath is None:
        return asset, None

    asset = asset.model_copy(update={"ath": new_ath, "ath_date": now})
    event = ATHEvent(
        asset_id=asset.id,
        symbol=asset.symbol,
        name=asset.name,
        new_ath=new_ath,
        previous_ath=previous_ath,
        detected_at=now
    )
    return asset, event
