"""ATH pipeline orchestrator: fetch, compare, resolve and dispatch in one run."""
import asyncio
import logging
import time
import uuid
from typing import Optional

import redis.asyncio as redis

from athwatch.core.config import settings
from athwatch.core.errors import PipelineError, RunCancelled, StoreUnavailable
from athwatch.core.redis import get_redis
from athwatch.models import RunOutcome, RunState, RunSummary
from athwatch.providers import EmailSender, MarketDataProvider
from athwatch.providers.coingecko import CoinGeckoProvider
from athwatch.providers.resend import ResendEmailSender
from athwatch.services import (
    EligibilityResolver,
    NotificationCooldown,
    PipelineStatusStore,
    RunLock,
    compare_and_update,
)
from athwatch.utils.time import utcnow
from athwatch.workers.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class ATHPipeline:
    """Runs one detection pass per call, at most one at a time across processes."""

    def __init__(
        self,
        redis_client: redis.Redis,
        provider: MarketDataProvider,
        sender: EmailSender,
        cooldown: Optional[NotificationCooldown] = None,
        universe_size: Optional[int] = None,
        threshold: Optional[float] = None,
        detect_missed_ath: Optional[bool] = None,
        lock_ttl_seconds: Optional[int] = None
    ):
        self.redis = redis_client
        self.provider = provider
        self.sender = sender
        self.dispatcher = Dispatcher(redis_client, sender)
        self.cooldown = cooldown or NotificationCooldown(redis_client)
        self.universe_size = universe_size or settings.market_universe_size
        self.threshold = settings.ath_min_increase_fraction if threshold is None else threshold
        self.detect_missed_ath = settings.detect_missed_ath if detect_missed_ath is None else detect_missed_ath
        self.lock_ttl_seconds = lock_ttl_seconds or settings.pipeline_lock_ttl_seconds
        self.state = RunState.IDLE

    def _transition(self, state: RunState):
        logger.debug(f"Pipeline state {self.state.value} -> {state.value}")
        self.state = state

    async def run(self, force: bool = False, cancel: Optional[asyncio.Event] = None) -> RunSummary:
        """
        Execute one pipeline run.

        Args:
            force: Bypass the single-flight lock (diagnostics only)
            cancel: Set to abort cooperatively between stages, assets and recipients

        Returns:
            RunSummary with status ``completed``, ``skipped`` or ``failed``
        """
        run_id = uuid.uuid4().hex
        started_at = utcnow()
        start = time.monotonic()
        summary = RunSummary(run_id=run_id, status=RunOutcome.COMPLETED, started_at=started_at)

        lock = RunLock(self.redis, ttl_seconds=self.lock_ttl_seconds)
        if not force:
            try:
                acquired = await lock.acquire()
            except StoreUnavailable as e:
                logger.error(f"Run {run_id} could not take the run lock: {e}", exc_info=True)
                summary.status = RunOutcome.FAILED.value
                summary.reason = e.kind.value
                return self._finalize(summary, start)

            if not acquired:
                logger.info(f"Run {run_id} skipped: another run is in progress")
                summary.status = RunOutcome.SKIPPED.value
                summary.reason = "already_running"
                return self._finalize(summary, start)
        else:
            logger.warning(f"Run {run_id} forced, bypassing the run lock")

        try:
            await self._execute(summary, cancel)
        finally:
            try:
                await lock.release()
            except StoreUnavailable as e:
                logger.warning(f"Could not release run lock, it will expire on its own: {e}")

        self._finalize(summary, start)
        try:
            await PipelineStatusStore.save_summary(self.redis, summary)
        except StoreUnavailable as e:
            logger.error(f"Could not persist run {run_id} status: {e}")

        logger.info(
            f"Run {run_id} {summary.status}"
            f"{' (' + summary.reason + ')' if summary.reason else ''}: "
            f"{summary.assets_compared} assets compared, {summary.events_detected} ATHs, "
            f"{summary.recipients_notified} notified, {summary.delivery_failures} failed, "
            f"{summary.events_suppressed} suppressed in {summary.duration_seconds:.2f}s"
        )
        return summary

    async def _execute(self, summary: RunSummary, cancel: Optional[asyncio.Event]):
        """Walk the stages, recording counts on ``summary`` as they complete."""
        self._transition(RunState.IDLE)
        try:
            _check_cancel(cancel, "before fetch")
            self._transition(RunState.FETCHING)
            quotes = await self.provider.get_top_assets(self.universe_size)
            logger.info(f"Fetched {len(quotes)} quotes")

            _check_cancel(cancel, "before compare")
            self._transition(RunState.COMPARING)
            comparison = await compare_and_update(
                self.redis,
                quotes,
                threshold=self.threshold,
                detect_missed_ath=self.detect_missed_ath,
                cancel=cancel
            )
            summary.assets_compared = comparison.compared
            summary.events_detected = len(comparison.events)
            if comparison.failed_assets:
                logger.warning(f"{len(comparison.failed_assets)} assets skipped: {comparison.failed_assets}")

            self._transition(RunState.DISPATCHING)
            resolver = EligibilityResolver(self.redis, cooldown=self.cooldown)
            for event in comparison.events:
                _check_cancel(cancel, f"before dispatching {event.symbol}")
                resolution = await resolver.resolve(event)
                if resolution.suppressed:
                    summary.events_suppressed += 1
                    continue
                if not resolution.recipients:
                    continue

                try:
                    result = await self.dispatcher.dispatch(event, resolution.recipients, cancel=cancel)
                except StoreUnavailable as e:
                    # Log entry could not be created, so nothing was sent
                    logger.error(f"Notification log unavailable for {event.symbol}, no emails sent: {e}", exc_info=True)
                    summary.delivery_failures += len(resolution.recipients)
                    continue
                summary.recipients_notified += result.sent
                summary.delivery_failures += result.failed

            self._transition(RunState.COMPLETED)
            summary.status = RunOutcome.COMPLETED.value
        except PipelineError as e:
            logger.error(f"Run {summary.run_id} failed during {self.state.value}: {e}", exc_info=True)
            self._transition(RunState.FAILED)
            summary.status = RunOutcome.FAILED.value
            summary.reason = e.kind.value

    def _finalize(self, summary: RunSummary, start: float) -> RunSummary:
        summary.finished_at = utcnow()
        summary.duration_seconds = round(time.monotonic() - start, 3)
        return summary

    async def close(self):
        """Cleanup resources."""
        await self.provider.close()
        await self.sender.close()


def _check_cancel(cancel: Optional[asyncio.Event], where: str):
    if cancel is not None and cancel.is_set():
        raise RunCancelled(f"Run cancelled {where}")


async def build_pipeline(redis_client: Optional[redis.Redis] = None) -> ATHPipeline:
    """Build a pipeline wired to the configured CoinGecko and Resend clients."""
    r = redis_client or await get_redis()
    return ATHPipeline(r, CoinGeckoProvider(), ResendEmailSender())


async def run_pipeline(force: bool = False, cancel: Optional[asyncio.Event] = None) -> RunSummary:
    """Run one pass with freshly built clients and close them afterwards."""
    pipeline = await build_pipeline()
    try:
        return await pipeline.run(force=force, cancel=cancel)
    finally:
        await pipeline.close()
