"""APScheduler setup for periodic auction housekeeping."""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from models.operations.auctions import auction_close_elapsed
from utils import log

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def close_elapsed_auctions_job():
    """Mark auctions past their end time as ended."""
    try:
        closed = await auction_close_elapsed()
        logger.debug(f"Housekeeping closed {closed} auctions")
    except Exception as e:
        logger.error(f"Housekeeping job failed: {e}", exc_info=True)


def init_scheduler(interval_seconds: int) -> AsyncIOScheduler:
    """Start the APScheduler with the housekeeping job."""
    global _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        close_elapsed_auctions_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id="close_elapsed_auctions",
        name="Close Elapsed Auctions",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    _scheduler.start()
    logger.info(f"APScheduler started with auction housekeeping every {interval_seconds}s")
    return _scheduler


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")
    _scheduler = None
