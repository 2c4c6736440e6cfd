"""Interval and one-shot scheduling used for polling and delayed side effects.

Components never create timers themselves; they receive a ``PollScheduler``
so refresh cadence can be swapped out (and driven by hand in tests).
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import get_settings

settings = get_settings()
log = logging.getLogger(__name__)

Job = Callable[[], Any] | Callable[[], Awaitable[Any]]
Cancel = Callable[[], None]


class PollScheduler(Protocol):
    def every(self, seconds: float, func: Job, job_id: str) -> Cancel:
        """Run ``func`` every ``seconds`` until the returned cancel is called."""
        ...

    def later(self, seconds: float, func: Job, job_id: str) -> Cancel:
        """Run ``func`` once after ``seconds``."""
        ...


class APSchedulerPoller:
    """PollScheduler backed by an AsyncIOScheduler.

    The scheduler is started lazily on first use and must be created while an
    asyncio event loop is running.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self.scheduler = scheduler or AsyncIOScheduler(timezone=settings.TIMEZONE)

    def _ensure_running(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            log.info("[Scheduler] started")

    def _canceller(self, job_id: str) -> Cancel:
        def cancel() -> None:
            try:
                self.scheduler.remove_job(job_id)
            except JobLookupError:
                # Already ran (one-shot) or already cancelled
                pass
        return cancel

    def every(self, seconds: float, func: Job, job_id: str) -> Cancel:
        self._ensure_running()
        self.scheduler.add_job(
            func,
            IntervalTrigger(seconds=seconds),
            id=job_id,
            name=job_id,
            replace_existing=True,
            max_instances=1,
        )
        log.debug(f"[Scheduler] job {job_id} every {seconds}s")
        return self._canceller(job_id)

    def later(self, seconds: float, func: Job, job_id: str) -> Cancel:
        self._ensure_running()
        run_at = datetime.now(self.scheduler.timezone) + timedelta(seconds=seconds)
        self.scheduler.add_job(
            func,
            DateTrigger(run_date=run_at),
            id=job_id,
            name=job_id,
            replace_existing=True,
        )
        return self._canceller(job_id)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            log.info("[Scheduler] stopped")


_poller: APSchedulerPoller | None = None


def get_poller() -> APSchedulerPoller:
    """Process-wide default poller."""
    global _poller
    if _poller is None:
        _poller = APSchedulerPoller()
    return _poller


def stop_poller() -> None:
    global _poller
    if _poller is not None:
        _poller.shutdown()
        _poller = None
