"""
Bounded-concurrency priority queue for batch and background scoring work.

Work items are zero-argument coroutine factories. A single dispatcher task
drains the queue at a fixed poll cadence (default 100 ms), or immediately
when new work arrives, keeping at most ``max_concurrency`` items in flight.
Items run in submission order within a priority level; high priority work is
dispatched before normal, normal before low.

submit() returns an asyncio.Future resolved with the item's result or its
exception, so one failing item never affects the others.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from leadscore.models.enums import BatchPriority


logger = logging.getLogger(__name__)

WorkFactory = Callable[[], Awaitable[Any]]

_PRIORITY_RANK: Dict[BatchPriority, int] = {
    BatchPriority.HIGH: 0,
    BatchPriority.NORMAL: 1,
    BatchPriority.LOW: 2,
}


class RequestQueue:
    """
    Args:
        max_concurrency: Maximum items executing at once.
        poll_interval_seconds: Dispatcher wake-up cadence when idle.
    """

    def __init__(self, max_concurrency: int = 10, poll_interval_seconds: float = 0.1):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self._heap: List[Tuple[int, int, WorkFactory, asyncio.Future]] = []
        self._seq = itertools.count()
        self._active = 0
        self._wakeup: Optional[asyncio.Event] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._inflight: set = set()
        self.completed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._dispatcher.done()

    @property
    def pending(self) -> int:
        return len(self._heap)

    @property
    def active(self) -> int:
        return self._active

    def start(self) -> None:
        if self.running:
            return
        self._wakeup = asyncio.Event()
        self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="request-queue")
        logger.info(f"Request queue started (max concurrency {self.max_concurrency})")

    async def stop(self) -> None:
        """Stop dispatching; queued items are cancelled, in-flight items finish."""
        if self._dispatcher is None:
            return
        self._dispatcher.cancel()
        await asyncio.gather(self._dispatcher, return_exceptions=True)
        self._dispatcher = None

        while self._heap:
            _, _, _, future = heapq.heappop(self._heap)
            if not future.done():
                future.cancel()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("Request queue stopped")

    def submit(
        self,
        factory: WorkFactory,
        priority: BatchPriority = BatchPriority.NORMAL,
    ) -> asyncio.Future:
        """Enqueue work and return a future for its result. Starts the dispatcher if needed."""
        if not self.running:
            self.start()
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._heap, (_PRIORITY_RANK[BatchPriority(priority)], next(self._seq), factory, future))
        self._wakeup.set()
        return future

    async def _dispatch_loop(self) -> None:
        while True:
            self._drain()
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    def _drain(self) -> None:
        while self._heap and self._active < self.max_concurrency:
            _, _, factory, future = heapq.heappop(self._heap)
            if future.cancelled():
                continue
            self._active += 1
            task = asyncio.create_task(self._run(factory, future))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _run(self, factory: WorkFactory, future: asyncio.Future) -> None:
        try:
            result = await factory()
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            self.failed += 1
            if not future.done():
                future.set_exception(e)
        else:
            self.completed += 1
            if not future.done():
                future.set_result(result)
        finally:
            self._active -= 1
            if self._wakeup is not None:
                self._wakeup.set()

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "pending": self.pending,
            "active": self._active,
            "maxConcurrency": self.max_concurrency,
            "completed": self.completed,
            "failed": self.failed,
        }
