"""
Clock and periodic job scheduling.

Every timestamp in the error-handling core comes from an injected ``Clock``
and every periodic sweep (event monitor health sweep, health check cycle,
custom health checks) and retry backoff goes through an injected
``Scheduler``.

Production wiring uses ``SystemClock`` with ``AsyncioScheduler`` (APScheduler's
asyncio scheduler with interval triggers). Tests use ``ManualClock`` with
``VirtualScheduler`` and advance virtual time explicitly:

    clock = ManualClock()
    scheduler = VirtualScheduler(clock)
    monitor = EventMonitor(clock=clock, scheduler=scheduler)
    monitor.start()
    await scheduler.advance(30)   # runs the 30s sweep exactly once
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = logging.getLogger(__name__)

JobCallback = Callable[[], Union[None, Awaitable[None]]]


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        pass

    def monotonic(self) -> float:
        """Seconds on a monotonic scale, for measuring elapsed time."""
        return self.now().timestamp()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, moment: datetime) -> None:
        self._now = moment


class Scheduler(ABC):
    """Runs named periodic jobs and provides the backoff sleep."""

    @abstractmethod
    def add_job(self, name: str, func: JobCallback, interval_seconds: float) -> None:
        """Register (or replace) a periodic job; it first runs one interval from now."""
        pass

    @abstractmethod
    def remove_job(self, name: str) -> None:
        pass

    @abstractmethod
    def has_job(self, name: str) -> bool:
        pass

    @abstractmethod
    def start(self) -> None:
        pass

    @abstractmethod
    def shutdown(self) -> None:
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        pass


class AsyncioScheduler(Scheduler):
    """Wall-clock scheduler backed by APScheduler on the running event loop."""

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._pending: Dict[str, tuple] = {}

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def add_job(self, name: str, func: JobCallback, interval_seconds: float) -> None:
        self._pending[name] = (func, interval_seconds)
        if self.running:
            self._schedule(name, func, interval_seconds)

    def _schedule(self, name: str, func: JobCallback, interval_seconds: float) -> None:
        self._scheduler.add_job(
            func=_guarded(name, func),
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=name,
            name=name,
            replace_existing=True,
        )

    def remove_job(self, name: str) -> None:
        self._pending.pop(name, None)
        if self.running and self._scheduler.get_job(name):
            self._scheduler.remove_job(name)

    def has_job(self, name: str) -> bool:
        return name in self._pending

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        for name, (func, interval) in self._pending.items():
            self._schedule(name, func, interval)
        self._scheduler.start()
        logger.info(f"Scheduler started with {len(self._pending)} jobs")

    def shutdown(self) -> None:
        if self.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self._scheduler = None

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass
class _VirtualJob:
    name: str
    func: JobCallback
    interval: timedelta
    next_run: datetime


class VirtualScheduler(Scheduler):
    """Deterministic scheduler driven by a ManualClock.

    Jobs run only inside ``advance()``, in due-time order, with the clock set
    to each job's due time while it runs. ``sleep()`` moves the clock forward
    without waiting and records the requested duration.
    """

    def __init__(self, clock: ManualClock):
        self.clock = clock
        self.running = False
        self.sleeps: List[float] = []
        self._jobs: Dict[str, _VirtualJob] = {}

    def add_job(self, name: str, func: JobCallback, interval_seconds: float) -> None:
        interval = timedelta(seconds=interval_seconds)
        self._jobs[name] = _VirtualJob(name, func, interval, self.clock.now() + interval)

    def remove_job(self, name: str) -> None:
        self._jobs.pop(name, None)

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    def start(self) -> None:
        self.running = True

    def shutdown(self) -> None:
        self.running = False

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.clock.advance(seconds)

    async def advance(self, seconds: float) -> int:
        """Move virtual time forward, running every job that falls due.

        Returns:
            Number of job executions performed
        """
        target = self.clock.now() + timedelta(seconds=seconds)
        executed = 0
        while self.running:
            due = [j for j in self._jobs.values() if j.next_run <= target]
            if not due:
                break
            job = min(due, key=lambda j: j.next_run)
            self.clock.set(job.next_run)
            job.next_run = job.next_run + job.interval
            await _guarded(job.name, job.func)()
            executed += 1
        self.clock.set(target)
        return executed


def _guarded(name: str, func: JobCallback) -> Callable[[], Awaitable[None]]:
    """Wrap a job so one failing run is logged and the schedule continues."""

    async def run() -> None:
        try:
            result = func()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Scheduled job '{name}' failed: {e}", exc_info=True)

    return run
