"""In-process periodic task scheduler.

Runs async jobs at a fixed rate inside the application's event loop. Each
tick runs under a deadline, and a tick that would overlap a still-running
tick of the same job is skipped.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

TaskFunc = Callable[[], Coroutine[Any, Any, Any]]


@dataclass
class _Job:
    name: str
    interval: float
    func: TaskFunc
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    runs: int = 0
    skipped: int = 0


class JobAlreadyRunning(Exception):
    """Raised when a manual trigger hits a job whose tick is in progress."""


class PeriodicScheduler:
    """Lightweight periodic task scheduler using asyncio."""

    def __init__(self, tick_deadline: float | None = None) -> None:
        self._jobs: dict[str, _Job] = {}
        self._tick_deadline = tick_deadline
        self._running = False
        self._handles: list[asyncio.Task[None]] = []
        self._inflight: set[asyncio.Task[Any]] = set()

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def register(self, name: str, interval_seconds: float, func: TaskFunc) -> None:
        """Register a periodic job.

        Args:
            name: Unique job name (for logging and manual triggers).
            interval_seconds: Seconds between tick starts.
            func: Async callable to run periodically.
        """
        if name in self._jobs:
            raise ValueError(f"Job '{name}' already registered")
        self._jobs[name] = _Job(name=name, interval=interval_seconds, func=func)

    async def start(self) -> None:
        """Start all registered jobs."""
        self._running = True
        for job in self._jobs.values():
            self._handles.append(asyncio.create_task(self._run_periodic(job)))
        logger.info("scheduler_started", task_count=len(self._jobs))

    async def stop(self) -> None:
        """Stop all jobs and cancel ticks in flight."""
        self._running = False
        for handle in [*self._handles, *self._inflight]:
            handle.cancel()
        await asyncio.gather(*self._handles, *self._inflight, return_exceptions=True)
        self._handles.clear()
        self._inflight.clear()
        logger.info("scheduler_stopped")

    async def trigger(self, name: str) -> Any:
        """Run one tick of ``name`` now and return its result.

        Raises:
            KeyError: Unknown job
            JobAlreadyRunning: A tick of the job is in progress
        """
        job = self._jobs[name]
        if job.lock.locked():
            raise JobAlreadyRunning(f"Job '{name}' is already running")
        return await self._tick(job)

    async def _tick(self, job: _Job) -> Any:
        async with job.lock:
            job.runs += 1
            if self._tick_deadline is None:
                return await job.func()
            return await asyncio.wait_for(job.func(), timeout=self._tick_deadline)

    async def _run_periodic(self, job: _Job) -> None:
        """Start a tick every ``job.interval`` seconds."""
        loop = asyncio.get_running_loop()
        next_start = loop.time()
        while self._running:
            if job.lock.locked():
                job.skipped += 1
                logger.warning("periodic_task_skipped", task=job.name, reason="previous_tick_running")
            else:
                task = asyncio.create_task(self._guarded_tick(job))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
                # Let the tick acquire its lock before the next check
                await asyncio.sleep(0)
            next_start += job.interval
            try:
                await asyncio.sleep(max(0.0, next_start - loop.time()))
            except asyncio.CancelledError:
                break

    async def _guarded_tick(self, job: _Job) -> None:
        try:
            await self._tick(job)
        except asyncio.TimeoutError:
            logger.error("periodic_task_timeout", task=job.name, deadline=self._tick_deadline)
        except Exception as e:
            logger.error("periodic_task_error", task=job.name, error_type=type(e).__name__, error=str(e))
