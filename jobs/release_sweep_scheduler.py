"""
Release Sweep Scheduler

Runs ReleaseScheduler.sweep_due_releases on a fixed interval. The original
booking payment flow swept hourly; the interval comes from
RELEASE_SWEEP_INTERVAL_MINUTES.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from services.release_scheduler import ReleaseScheduler, SweepResult

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "escrow_release_sweep"


class ReleaseSweepScheduler:
    """APScheduler wrapper owning the single release sweep job"""

    def __init__(
        self,
        release_scheduler: ReleaseScheduler,
        interval_minutes: Optional[int] = None,
        misfire_grace_seconds: Optional[int] = None,
    ):
        self.release_scheduler = release_scheduler
        self.interval_minutes = interval_minutes or Config.RELEASE_SWEEP_INTERVAL_MINUTES
        self.misfire_grace_seconds = misfire_grace_seconds or Config.RELEASE_SWEEP_MISFIRE_GRACE_SECONDS
        self.last_result: Optional[SweepResult] = None

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Missed runs collapse into one
            'max_instances': 1,
            'misfire_grace_time': self.misfire_grace_seconds,
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    async def run_sweep(self) -> Optional[SweepResult]:
        """Job body; a failing sweep is logged so the scheduler keeps running"""
        try:
            self.last_result = await self.release_scheduler.sweep_due_releases()
            return self.last_result
        except Exception as e:
            logger.error(f"❌ RELEASE_SWEEP: sweep run failed: {e}", exc_info=True)
            return None

    def setup_jobs(self):
        self.scheduler.add_job(
            self.run_sweep,
            trigger=IntervalTrigger(
                minutes=self.interval_minutes,
                start_date=datetime.now().replace(second=0, microsecond=0),
            ),
            id=SWEEP_JOB_ID,
            name="💸 Escrow Release Sweep - Due Hold Transfers",
            replace_existing=True
        )
        logger.info(f"✅ Escrow release sweep scheduled every {self.interval_minutes} minutes")

    def start(self):
        self.setup_jobs()
        self.scheduler.start()
        logger.info("✅ Release sweep scheduler started")

    def shutdown(self, wait: bool = False):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("✅ Release sweep scheduler stopped")
