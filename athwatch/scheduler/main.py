"""ATH detection scheduler."""
import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from athwatch.core.config import settings
from athwatch.core.redis import close_redis
from athwatch.workers.pipeline import run_pipeline

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ATHScheduler:
    """Periodic trigger for the ATH pipeline."""

    def __init__(self, interval_minutes: int = None):
        self.scheduler = AsyncIOScheduler()
        self.interval_minutes = interval_minutes or settings.ath_check_interval_minutes

    async def run_detection(self):
        """Run one pipeline pass. Errors are logged, the schedule keeps going."""
        try:
            summary = await run_pipeline()
            if summary.status == "failed":
                logger.warning(f"Scheduled run {summary.run_id} failed: {summary.reason}")
        except Exception as e:
            logger.error(f"Error in scheduled ATH detection: {e}", exc_info=True)

    def start(self):
        """Register the detection job and start the scheduler."""
        logger.info("=" * 60)
        logger.info("Starting ATH scheduler...")
        logger.info(f"Log level: {settings.log_level}")
        logger.info(f"Detection cadence: every {self.interval_minutes} minutes")
        logger.info(f"Universe size: top {settings.market_universe_size}")
        logger.info("=" * 60)

        self.scheduler.add_job(
            self.run_detection,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="ath_detection",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        self.scheduler.start()
        logger.info("Scheduler started successfully")

    async def run(self):
        """Run scheduler indefinitely."""
        self.start()

        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
            logger.info("Shutting down scheduler...")
            self.scheduler.shutdown()
            await close_redis()


async def main():
    """Main entry point for scheduler."""
    scheduler = ATHScheduler()
    await scheduler.run()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
