"""
Tests for the bounded-concurrency priority request queue.
"""

import asyncio

import pytest

from leadscore.models.enums import BatchPriority
from leadscore.services.request_queue import RequestQueue


pytestmark = pytest.mark.asyncio


class TestRequestQueue:

    async def test_results_resolve_through_futures(self) -> None:
        queue = RequestQueue(max_concurrency=2, poll_interval_seconds=0.01)

        async def work(value: int) -> int:
            await asyncio.sleep(0)
            return value * 2

        futures = [queue.submit(lambda v=v: work(v)) for v in range(5)]
        assert await asyncio.gather(*futures) == [0, 2, 4, 6, 8]
        assert queue.completed == 5
        await queue.stop()

    async def test_high_priority_dispatched_first(self) -> None:
        queue = RequestQueue(max_concurrency=1, poll_interval_seconds=0.01)
        order = []

        def record(label: str):
            async def run() -> str:
                order.append(label)
                return label
            return run

        futures = [
            queue.submit(record("low"), BatchPriority.LOW),
            queue.submit(record("normal-1"), BatchPriority.NORMAL),
            queue.submit(record("high"), BatchPriority.HIGH),
            queue.submit(record("normal-2"), BatchPriority.NORMAL),
        ]
        await asyncio.gather(*futures)

        assert order == ["high", "normal-1", "normal-2", "low"]
        await queue.stop()

    async def test_concurrency_is_bounded(self) -> None:
        queue = RequestQueue(max_concurrency=3, poll_interval_seconds=0.01)
        in_flight = 0
        peak = 0

        async def work() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1

        await asyncio.gather(*[queue.submit(work) for _ in range(10)])
        assert peak == 3
        await queue.stop()

    async def test_failure_is_isolated(self) -> None:
        queue = RequestQueue(max_concurrency=2, poll_interval_seconds=0.01)

        async def ok() -> str:
            return "ok"

        async def boom() -> str:
            raise RuntimeError("boom")

        results = await asyncio.gather(
            queue.submit(ok), queue.submit(boom), queue.submit(ok), return_exceptions=True
        )

        assert results[0] == "ok" and results[2] == "ok"
        assert isinstance(results[1], RuntimeError)
        assert queue.failed == 1
        await queue.stop()

    async def test_stop_cancels_pending_work(self) -> None:
        queue = RequestQueue(max_concurrency=1, poll_interval_seconds=0.01)
        release = asyncio.Event()

        async def blocker() -> None:
            await release.wait()

        first = queue.submit(blocker)
        second = queue.submit(blocker)
        await asyncio.sleep(0.02)

        release.set()
        await queue.stop()

        assert first.done() and not first.cancelled()
        assert second.cancelled()
