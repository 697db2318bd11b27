"""Periodic job runner for cache warming and stats maintenance.

Runs each registered callback on its own asyncio task at a fixed
interval. Synchronous callbacks are pushed to a worker thread so they
never block the event loop. The next due time of each job is persisted,
so a restarted process resumes the schedule instead of running every job
again immediately.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from dashcache.domain.errors import ConfigurationError, StoreError
from dashcache.domain.interfaces.store import StoreBackend

logger = logging.getLogger(__name__)

SCHEDULER_GROUP = "scheduler"

NAMED_INTERVALS: Dict[str, int] = {
    "fifteen_minutes": 15 * 60,
    "hourly": 60 * 60,
    "twicedaily": 12 * 60 * 60,
    "daily": 24 * 60 * 60,
}


def resolve_interval(interval: Union[int, float, str]) -> float:
    """Converts seconds or a named schedule to seconds.

    Raises:
        ConfigurationError: For unknown names or non-positive intervals.
    """
    if isinstance(interval, str):
        if interval in NAMED_INTERVALS:
            return float(NAMED_INTERVALS[interval])
        try:
            interval = float(interval)
        except ValueError:
            raise ConfigurationError(
                f"Unknown schedule '{interval}'. Use seconds or one of: {', '.join(NAMED_INTERVALS)}"
            ) from None
    if interval <= 0:
        raise ConfigurationError(f"Schedule interval must be positive, got {interval}")
    return float(interval)


@dataclass
class ScheduledJob:
    name: str
    interval: float
    callback: Callable[[], Any]
    last_run: Optional[float] = None
    runs: int = 0
    failures: int = 0


class PeriodicScheduler:
    """Runs named callbacks at fixed intervals until stopped."""

    def __init__(self, state_store: Optional[StoreBackend] = None, clock: Callable[[], float] = time.time):
        self._state_store = state_store
        self._clock = clock
        self._jobs: Dict[str, ScheduledJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._next_runs: Dict[str, float] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> Dict[str, ScheduledJob]:
        return dict(self._jobs)

    def register(self, name: str, interval: Union[int, float, str], callback: Callable[[], Any]) -> bool:
        """Adds a job. A name that is already registered is left untouched.

        Returns:
            True if the job was added.
        """
        if name in self._jobs:
            logger.debug(f"Job '{name}' already scheduled; ignoring duplicate registration.")
            return False
        self._jobs[name] = ScheduledJob(name=name, interval=resolve_interval(interval), callback=callback)
        logger.info(f"Scheduled job '{name}' every {self._jobs[name].interval:.0f}s")
        return True

    # --- Persisted schedule ---

    def next_run(self, name: str) -> float:
        """When the job is next due; jobs never run before are due now."""
        if name in self._next_runs:
            return self._next_runs[name]
        if self._state_store is not None:
            try:
                stored = self._state_store.get(f"next_run_{name}", SCHEDULER_GROUP)
                if stored is not None:
                    self._next_runs[name] = float(stored)
                    return self._next_runs[name]
            except (StoreError, TypeError, ValueError) as e:
                logger.warning(f"Could not read schedule state for '{name}': {e}")
        return self._clock()

    def _set_next_run(self, name: str, when: float) -> None:
        self._next_runs[name] = when
        if self._state_store is None:
            return
        try:
            self._state_store.set(f"next_run_{name}", when, None, SCHEDULER_GROUP)
        except StoreError as e:
            logger.warning(f"Could not persist schedule state for '{name}': {e}")

    # --- Execution ---

    async def _run_job(self, job: ScheduledJob) -> None:
        started = self._clock()
        self._set_next_run(job.name, started + job.interval)
        try:
            if inspect.iscoroutinefunction(job.callback):
                await job.callback()
            else:
                await asyncio.to_thread(job.callback)
            job.runs += 1
            logger.debug(f"Job '{job.name}' completed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.failures += 1
            logger.error(f"Scheduled job '{job.name}' failed: {e}", exc_info=True)
        finally:
            job.last_run = started

    async def _job_loop(self, job: ScheduledJob) -> None:
        while self._running:
            delay = self.next_run(job.name) - self._clock()
            if delay > 0:
                await asyncio.sleep(delay)
                continue
            await self._run_job(job)

    async def run_pending(self) -> List[str]:
        """Runs every job that is due once, in registration order.

        Returns:
            Names of the jobs that ran.
        """
        ran = []
        for job in list(self._jobs.values()):
            if self.next_run(job.name) <= self._clock():
                await self._run_job(job)
                ran.append(job.name)
        return ran

    async def start(self) -> None:
        if self._running:
            logger.warning("Scheduler is already running")
            return
        self._running = True
        for name, job in self._jobs.items():
            self._tasks[name] = asyncio.create_task(self._job_loop(job), name=f"dashcache-{name}")
        logger.info(f"Scheduler started with {len(self._tasks)} jobs")

    async def stop(self) -> None:
        """Cancels all job tasks and waits for them to finish."""
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")

    async def run_forever(self) -> None:
        """Starts the jobs and blocks until the scheduler is stopped or cancelled."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks.values())
        finally:
            await self.stop()
