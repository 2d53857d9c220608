"""
Fixed-cadence background tasks with graceful cancellation.

A PeriodicTask wraps an async callable and runs it every ``interval_seconds``
on its own asyncio task. Failures inside a tick are logged and swallowed at
this boundary only, so a broken maintenance job can never take down the
inference path or stop subsequent ticks. stop() cancels the loop and awaits
it, so no background work outlives application shutdown.

Usage:
    sweep = PeriodicTask("cache-sweep", 300, cache.sweep_expired)
    sweep.start()
    ...
    await sweep.stop()
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional


logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run an async callable on a fixed cadence until stopped.

    Attributes:
        name: Label used in logs and status reports.
        interval_seconds: Delay between the end of one tick and the next.
        run_immediately: Whether the first tick fires at start() rather than
            after the first interval.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable[Any]],
        run_immediately: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._func = func
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.run_count = 0
        self.error_count = 0
        self.last_run_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning(f"Periodic task {self.name} already running")
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info(f"Periodic task {self.name} started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        if not self._task.done():
            self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info(f"Periodic task {self.name} stopped")

    async def run_once(self) -> None:
        """Execute a single tick, recording errors instead of raising."""
        try:
            await self._func()
            self.run_count += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            self.error_count += 1
            logger.exception(f"Periodic task {self.name} failed")
        finally:
            self.last_run_at = datetime.now(timezone.utc)

    async def _loop(self) -> None:
        if self.run_immediately:
            await self.run_once()
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.run_once()

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "running": self.running,
            "intervalSeconds": self.interval_seconds,
            "runCount": self.run_count,
            "errorCount": self.error_count,
            "lastRunAt": self.last_run_at.isoformat() if self.last_run_at else None,
        }
