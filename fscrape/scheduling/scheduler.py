"""APScheduler wrapper for the engine's background timers.

Provides:
- Async-compatible interval jobs (progress heartbeat, session auto-persist)
- Job management (add, remove, list)
- Job event logging

Jobs should be coroutine functions: AsyncIOScheduler runs those on the
event loop, while plain callables would be pushed to a thread pool.

Usage:
    scheduler = EngineScheduler()
    scheduler.add_interval_job(flush, job_id="session_auto_persist", seconds=30)

    scheduler.start()      # inside a running event loop
    ...
    scheduler.shutdown()
"""

from typing import Any, Callable, Dict, List

import structlog
from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = structlog.get_logger()


class EngineScheduler:
    """Wraps APScheduler's AsyncIOScheduler with:
    - Interval job lifecycle management
    - Error logging
    - Idempotent start and shutdown
    """

    def __init__(
        self,
        timezone: str = "UTC",
        coalesce: bool = True,
        misfire_grace_time: int = 30,
    ):
        """Initialize engine scheduler.

        Args:
            timezone: Timezone for job scheduling
            coalesce: Collapse a backlog of missed runs into one
            misfire_grace_time: Grace time for late jobs (seconds)
        """
        self.scheduler = AsyncIOScheduler(
            timezone=timezone,
            job_defaults={
                "max_instances": 1,
                "coalesce": coalesce,
                "misfire_grace_time": misfire_grace_time,
            },
        )

        self._running = False
        self._jobs: Dict[str, Any] = {}

        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        seconds: float,
    ) -> str:
        """Run `func` every `seconds`, replacing any job with the same id.

        Returns:
            Job ID
        """
        # Before start() jobs sit in a pending list where replace_existing
        # is not applied yet
        if job_id in self._jobs:
            self.remove_job(job_id)

        job = self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        self._jobs[job_id] = job

        logger.info("job_added", job_id=job_id, interval_seconds=seconds)
        return job_id

    def remove_job(self, job_id: str) -> bool:
        """Remove a job.

        Returns:
            True if job was removed, False if not found
        """
        if job_id not in self._jobs:
            return False

        self.scheduler.remove_job(job_id)
        self._jobs.pop(job_id, None)
        logger.info("job_removed", job_id=job_id)
        return True

    def has_job(self, job_id: str) -> bool:
        return job_id in self._jobs

    def get_jobs(self) -> List[Dict[str, Any]]:
        """Scheduled jobs with their next run time"""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": str(next_run) if next_run else None,
                }
            )
        return jobs

    def start(self) -> None:
        """Start executing jobs. Must be called from a running event loop."""
        if self._running:
            logger.debug("scheduler_already_running")
            return

        self.scheduler.start()
        self._running = True
        logger.info("scheduler_started", jobs=len(self._jobs))

    def shutdown(self, wait: bool = False) -> None:
        """Stop the scheduler.

        Args:
            wait: Wait for running jobs to complete
        """
        if not self._running:
            return

        self.scheduler.shutdown(wait=wait)
        self._running = False
        self._jobs.clear()
        logger.info("scheduler_stopped")

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        logger.debug(
            "job_executed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            "job_failed",
            job_id=event.job_id,
            exception=str(event.exception),
            traceback=event.traceback,
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning(
            "job_missed",
            job_id=event.job_id,
            scheduled_run_time=str(event.scheduled_run_time),
        )

    @property
    def is_running(self) -> bool:
        return self._running
