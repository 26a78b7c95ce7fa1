"""Recurring fleet jobs on APScheduler's asyncio scheduler"""

import os
from typing import Optional
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from fleetbot.config import settings
from fleetbot.database import normalize_database_url, sqlite_file_path
from fleetbot.utils.logger import get_logger

logger = get_logger(__name__)


def jobs_database_url(database_url: str) -> str:
    """jobs.db in the same directory as the main SQLite file"""
    path = sqlite_file_path(database_url)
    if path == ":memory:":
        return "sqlite:///:memory:"
    directory = os.path.dirname(path) if path else "data"
    return normalize_database_url("sqlite:///" + os.path.join(directory or ".", "jobs.db"))


class SchedulerService:
    """Wrapper owning the AsyncIOScheduler; jobs are keyed by id and replaced on re-add"""

    def __init__(self):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

    def initialize(self):
        if settings.job_persistence_enabled:
            url = jobs_database_url(settings.database_url)
            jobstore = SQLAlchemyJobStore(url=url, tablename="apscheduler_jobs")
            logger.info(f"Scheduler job store: {url}")
        else:
            # Jobs are registered again on every startup
            jobstore = MemoryJobStore()

        self.scheduler = AsyncIOScheduler(
            jobstores={"default": jobstore},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
            timezone="UTC",
        )

    def _require(self) -> AsyncIOScheduler:
        if not self.scheduler:
            raise RuntimeError("Scheduler not initialized. Call initialize() first.")
        return self.scheduler

    def start(self):
        self._require().start()
        self.running = True
        logger.info("⏰ Scheduler started")

    def stop(self):
        if not (self.scheduler and self.running):
            return
        try:
            self.scheduler.shutdown(wait=False)
        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")
        self.running = False

    def add_job(self, func, trigger, job_id: Optional[str] = None, **kwargs):
        job = self._require().add_job(func, trigger=trigger, id=job_id, replace_existing=True, **kwargs)
        next_run = getattr(job, "next_run_time", None)
        when = next_run.strftime("%Y-%m-%d %H:%M:%S UTC") if next_run else "on start"
        logger.info(f"⏰ Job {job_id or func.__name__} scheduled, next run {when}")
        return job

    def add_interval_job(self, func, seconds: int = 0, minutes: int = 0, job_id: Optional[str] = None, **kwargs):
        if seconds <= 0 and minutes <= 0:
            raise ValueError("Interval must be positive")
        return self.add_job(func, IntervalTrigger(seconds=seconds, minutes=minutes), job_id=job_id, **kwargs)

    def add_cron_job(self, func, hour: int = 0, minute: int = 0, job_id: Optional[str] = None, **kwargs):
        return self.add_job(func, CronTrigger(hour=hour, minute=minute, timezone="UTC"), job_id=job_id, **kwargs)

    def remove_job(self, job_id: str):
        scheduler = self._require()
        try:
            scheduler.remove_job(job_id)
        except Exception as e:
            logger.error(f"Failed to remove job {job_id}: {e}")

    def get_jobs(self):
        return self.scheduler.get_jobs() if self.scheduler else []


# Global scheduler instance
scheduler = SchedulerService()
