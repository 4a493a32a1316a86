import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from core.exceptions import SyncException
from models.base import SyncMode
from schemas.results import SyncResult
from sync.runner import SyncClient

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Runs ``SyncClient.sync`` on a fixed interval, one run at a time."""

    def __init__(
        self,
        client: SyncClient,
        interval_minutes: Optional[int] = None,
        mode: SyncMode = SyncMode.INCREMENTAL
    ):
        self.client = client
        self.interval_minutes = interval_minutes or settings.SYNC_INTERVAL_MINUTES
        self.mode = mode
        self.scheduler = AsyncIOScheduler()

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self.client.last_result

    async def run_sync_job(self):
        """Job to run one sync"""
        logger.info(f"Scheduler: Starting {self.mode} sync job")
        try:
            result = await self.client.sync(self.mode)
            if result.success:
                logger.info(f"Scheduler: Sync job finished, {result.total_records()} records synced")
            else:
                logger.warning(f"Scheduler: Sync job finished with failed tables: {result.failed_tables()}")
        except SyncException as e:
            logger.error(
                f"Scheduler: Sync job failed - {e.message}",
                extra={"error_context": e.to_dict()}
            )
        except Exception as e:
            logger.error(f"Scheduler: Sync job failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="sync_job",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Sync Scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync Scheduler stopped")
