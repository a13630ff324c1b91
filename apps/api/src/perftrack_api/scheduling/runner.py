"""APScheduler runtime for housekeeping jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from perftrack_api.observability.scheduler import get_scheduler_store

from .config import JobDefinition, ScheduleConfig, load_schedule

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]


def resolve_task(path: str) -> Callable[..., Awaitable[Any]]:
    """Import ``package.module.function`` and insist it is a coroutine function."""

    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {path}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {path} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {path} must be an async function")
    return func


def backoff_delay(job: JobDefinition, attempt: int) -> float:
    delay = job.base_backoff_seconds * (job.backoff_multiplier ** (attempt - 1))
    if job.max_backoff_seconds:
        delay = min(delay, job.max_backoff_seconds)
    return max(delay, 0.0)


class JobScheduler:
    """Registers the TOML-defined jobs on an ``AsyncIOScheduler``."""

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._observability = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_schedule(self._config_path)
        zone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=zone)

        for job in config.jobs:
            if not job.enabled:
                logger.info("Skipping disabled housekeeping job", job_id=job.id)
                continue
            func = resolve_task(job.task)
            scheduler.add_job(
                self.wrap(func, job),
                trigger=CronTrigger.from_crontab(job.cron, timezone=zone),
                id=job.id,
                replace_existing=True,
            )
            logger.info("Registered housekeeping job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        logger.info("Job scheduler started", jobs=len(scheduler.get_jobs()))

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Job scheduler stopped")

    def wrap(self, func: Callable[..., Awaitable[Any]], job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        """Bind session factory and kwargs, retrying with exponential backoff."""

        async def _runner() -> Any:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()

            for attempt in range(1, job.max_attempts + 1):
                try:
                    result = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:  # noqa: BLE001 - scheduler must outlive failing jobs
                    error = str(exc)
                    if attempt >= job.max_attempts:
                        self._observability.record_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error,
                        )
                        logger.exception("Scheduled job failed", job_id=job.id, attempts=attempt, error=error)
                        return None

                    delay = backoff_delay(job, attempt)
                    self._observability.record_retry(job.id, job.task, attempts=attempt + 1, error=error)
                    logger.warning("Scheduled job retrying", job_id=job.id, attempt=attempt + 1, delay_seconds=delay)
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime = time.perf_counter() - started_at
                self._observability.record_success(job.id, job.task, runtime_seconds=runtime, attempts=attempt)
                logger.info("Scheduled job completed", job_id=job.id, attempts=attempt, runtime_seconds=runtime)
                return result
            return None

        return _runner

    def health(self) -> dict[str, object]:
        return {
            "running": self.is_running,
            "config_path": str(self._config_path),
            "jobs": self._observability.snapshot(),
        }


__all__ = ["JobScheduler", "backoff_delay", "resolve_task"]
