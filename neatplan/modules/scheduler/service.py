"""In-process job runner for periodic maintenance (the overdue sweep).

Jobs live in memory only; the application re-registers them at startup.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Callable, Coroutine, Optional
from uuid import uuid4

from apscheduler.events import EVENT_JOB_MISSED
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from neatplan.logging_config import get_logger

logger = get_logger(__name__)

AsyncJob = Callable[..., Coroutine[Any, Any, Any]]

_CRON_FIELDS = ("minute", "hour", "day", "month", "day_of_week")


class ScheduledJob:
    """Bookkeeping for one registered job."""

    def __init__(self, job_id: str, name: str, kind: str, schedule_info: str) -> None:
        self.job_id = job_id
        self.name = name
        self.kind = kind
        self.schedule_info = schedule_info
        self.created_at = dt.datetime.now(dt.UTC)
        self.last_run: Optional[dt.datetime] = None
        self.run_count: int = 0
        self.failure_count: int = 0
        self.last_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.job_id,
            "name": self.name,
            "kind": self.kind,
            "schedule": self.schedule_info,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
            "last_error": self.last_error,
        }


class SchedulerService:
    """Wraps an AsyncIOScheduler; job failures are logged and never escape."""

    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler(
            job_defaults={
                "misfire_grace_time": 300,
                "coalesce": True,
                "max_instances": 1,  # a slow sweep is never run twice at once
            },
        )
        self._jobs: dict[str, ScheduledJob] = {}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def start(self) -> None:
        """Start the scheduler. Idempotent."""
        if self._scheduler.running:
            return
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        self._scheduler.start()
        logger.info("scheduler_started", jobs=len(self._jobs))

    async def stop(self) -> None:
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    @staticmethod
    def _on_job_missed(event) -> None:
        # failures never reach APScheduler, _wrap records them
        logger.warning("apscheduler_job_missed", job_id=event.job_id, scheduled_for=str(event.scheduled_run_time))

    def _wrap(self, job_id: str, name: str, func: AsyncJob, kwargs: Optional[dict[str, Any]]) -> AsyncJob:
        async def _runner() -> None:
            meta = self._jobs.get(job_id)
            try:
                await func(**(kwargs or {}))
            except Exception as exc:
                logger.exception("job_failed", job_id=job_id, name=name, error=str(exc))
                if meta:
                    meta.failure_count += 1
                    meta.last_error = str(exc)
                return
            if meta:
                meta.last_run = dt.datetime.now(dt.UTC)
                meta.run_count += 1
            logger.debug("job_executed", job_id=job_id, name=name)

        return _runner

    def schedule_interval(
        self,
        name: str,
        func: AsyncJob,
        minutes: int = 0,
        hours: int = 0,
        seconds: int = 0,
        kwargs: Optional[dict[str, Any]] = None,
        run_immediately: bool = False,
    ) -> str:
        """Run ``func`` every fixed interval.

        Args:
            run_immediately: fire once right away, then keep the interval.
        """
        if not (minutes or hours or seconds):
            raise ValueError("Interval must be positive")
        job_id = str(uuid4())
        self._scheduler.add_job(
            self._wrap(job_id, name, func, kwargs),
            trigger=IntervalTrigger(hours=hours, minutes=minutes, seconds=seconds),
            id=job_id,
            name=name,
            next_run_time=dt.datetime.now(dt.UTC) if run_immediately else None,
        )
        interval = f"{hours}h{minutes}m{seconds}s"
        self._jobs[job_id] = ScheduledJob(job_id, name, "interval", interval)
        logger.info("job_scheduled_interval", job_id=job_id, name=name, interval=interval)
        return job_id

    def schedule_recurring(
        self,
        name: str,
        func: AsyncJob,
        cron_expression: str,
        kwargs: Optional[dict[str, Any]] = None,
    ) -> str:
        """Run ``func`` on a five-field cron expression (minute hour day month day_of_week)."""
        parts = cron_expression.split()
        if not parts or len(parts) > len(_CRON_FIELDS):
            raise ValueError(f"Invalid cron expression: {cron_expression!r}")
        job_id = str(uuid4())
        self._scheduler.add_job(
            self._wrap(job_id, name, func, kwargs),
            trigger=CronTrigger(**dict(zip(_CRON_FIELDS, parts)), timezone=dt.UTC),
            id=job_id,
            name=name,
        )
        self._jobs[job_id] = ScheduledJob(job_id, name, "cron", cron_expression)
        logger.info("job_scheduled_recurring", job_id=job_id, name=name, cron=cron_expression)
        return job_id

    def cancel_task(self, job_id: str) -> bool:
        if self._jobs.pop(job_id, None) is None:
            return False
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            logger.debug("job_already_gone", job_id=job_id)
        logger.info("job_cancelled", job_id=job_id)
        return True

    async def run_now(self, job_id: str) -> bool:
        """Run a registered job once, outside its schedule."""
        job = self._scheduler.get_job(job_id)
        if job_id not in self._jobs or job is None:
            return False
        logger.info("job_manual_trigger", job_id=job_id)
        await job.func()
        return True

    def list_tasks(self) -> list[ScheduledJob]:
        return list(self._jobs.values())
