"""APScheduler-based recurring timer service."""

import logging
from datetime import datetime
from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Recurring job scheduler bound to the running event loop.

    Uses APScheduler's asyncio scheduler so coroutine jobs run on the same
    loop as the gateway. Jobs are in-memory only.
    """

    def __init__(self, timezone: str = "UTC") -> None:
        """
        Initialize the scheduler service.

        Args:
            timezone: Scheduler timezone
        """
        self._timezone = timezone
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def scheduler(self) -> AsyncIOScheduler:
        """Get or create the scheduler instance."""
        if self._scheduler is None:
            self._scheduler = self._create_scheduler()
        return self._scheduler

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Prevent overlapping runs
            "misfire_grace_time": 30,
        }

        return AsyncIOScheduler(
            job_defaults=job_defaults,
            timezone=self._timezone,
        )

    def start(self) -> None:
        """Start the scheduler. Must be called from the event loop."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")
        else:
            logger.warning("Scheduler is already running")

    def shutdown(self) -> None:
        """Shutdown the scheduler without waiting for running jobs."""
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler shutdown complete")
        self._scheduler = None

    def add_job(
        self,
        job_id: str,
        func: Callable[..., Any],
        interval_seconds: float,
        args: tuple[Any, ...] | None = None,
        kwargs: dict[str, Any] | None = None,
    ) -> None:
        """
        Add an interval-based job to the scheduler.

        Args:
            job_id: Unique identifier for the job
            func: Function or coroutine function to execute
            interval_seconds: Seconds between runs
            args: Positional arguments for the function
            kwargs: Keyword arguments for the function
        """
        trigger = IntervalTrigger(seconds=interval_seconds, timezone=self._timezone)

        self.scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=job_id,
            args=args or (),
            kwargs=kwargs or {},
            replace_existing=True,
        )

        logger.info(f"Job '{job_id}' added with {interval_seconds}s interval")

    def remove_job(self, job_id: str) -> bool:
        """
        Remove a job from the scheduler.

        Args:
            job_id: Unique identifier of the job to remove

        Returns:
            True if job was removed, False if not found
        """
        try:
            self.scheduler.remove_job(job_id)
            logger.info(f"Job '{job_id}' removed")
            return True
        except JobLookupError:
            return False

    def get_job_status(self, job_id: str) -> dict[str, Any] | None:
        """
        Get the status of a job.

        Args:
            job_id: Unique identifier of the job

        Returns:
            Job status dict or None if not found
        """
        job = self.scheduler.get_job(job_id)
        if job:
            next_run: datetime | None = getattr(job, "next_run_time", None)
            return {
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run,
            }
        return None

    def list_jobs(self) -> list[dict[str, Any]]:
        """
        List all scheduled jobs.

        Returns:
            List of job status dicts
        """
        return [
            status
            for status in (self.get_job_status(job.id) for job in self.scheduler.get_jobs())
            if status is not None
        ]

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._scheduler is not None and self._scheduler.running
