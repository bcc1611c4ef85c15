"""
Job Scheduler
=============
APScheduler-based worker that triggers call reconciliation.
"""

import asyncio

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from voicegate.config import settings
from voicegate.database import close_db, init_db
from voicegate.jobs.reconciler import CallReconciler

logger = structlog.get_logger()


class JobScheduler:
    """
    Manages scheduled background jobs.
    """

    def __init__(self, reconciler: CallReconciler | None = None):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.reconciler = reconciler or CallReconciler()

    async def run_reconciliation(self) -> None:
        """Execute one reconciliation pass."""
        try:
            logger.info("Running scheduled call reconciliation")
            summary = await self.reconciler.run()
            logger.info("Call reconciliation finished", **summary.to_dict())
        except Exception as e:
            logger.error("Call reconciliation failed", error=str(e))

    def setup(self) -> None:
        """Configure scheduled jobs."""
        self.scheduler.add_job(
            self.run_reconciliation,
            CronTrigger(minute=f"*/{settings.reconciler_interval_minutes}"),
            id="call_reconciliation",
            name="Call Duration Sync and Cleanup",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        logger.info(
            "Scheduler configured",
            interval_minutes=settings.reconciler_interval_minutes,
        )

    def start(self) -> None:
        """Start the scheduler."""
        self.scheduler.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        self.scheduler.shutdown()
        logger.info("Scheduler stopped")


async def run_scheduler() -> None:
    """Run the job scheduler."""
    await init_db()
    scheduler = JobScheduler()
    scheduler.setup()
    scheduler.start()

    try:
        # Keep the scheduler running
        while True:
            await asyncio.sleep(60)
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        scheduler.stop()
        await close_db()


def run() -> None:
    """Entry point for the scheduler worker."""
    if not settings.scheduler_enabled:
        logger.warning("Scheduler is disabled")
        return

    logger.info("Starting Voicegate Scheduler")
    asyncio.run(run_scheduler())


if __name__ == "__main__":
    run()
