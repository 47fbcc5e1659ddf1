"""Tests for the inference thread pool."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest
from conftest import make_settings

from pcbscan.ml.inference import InferencePool


class TestInferencePool:
    async def test_run_returns_result(self, pool: InferencePool) -> None:
        assert await pool.run(sum, [1, 2, 3]) == 6

    async def test_runs_off_the_event_loop_thread(self, pool: InferencePool) -> None:
        worker = await pool.run(threading.current_thread)
        assert worker is not threading.current_thread()
        assert worker.name.startswith("pcb-inference")

    async def test_exception_propagates_and_counts_reset(self, pool: InferencePool) -> None:
        def fail() -> None:
            raise ValueError("bad tensor")

        with pytest.raises(ValueError, match="bad tensor"):
            await pool.run(fail)
        assert pool.active_count == 0
        assert pool.queue_depth == 0

    async def test_single_slot_serializes_work(self, pool: InferencePool) -> None:
        running = 0
        peak = 0
        lock = threading.Lock()

        def work() -> None:
            nonlocal running, peak
            with lock:
                running += 1
                peak = max(peak, running)
            time.sleep(0.01)
            with lock:
                running -= 1

        await asyncio.gather(*(pool.run(work) for _ in range(5)))

        assert peak == 1
        assert pool.active_count == 0

    async def test_queue_depth_visible_while_waiting(self, pool: InferencePool) -> None:
        release = threading.Event()
        first = asyncio.ensure_future(pool.run(release.wait, 5))
        second = asyncio.ensure_future(pool.run(lambda: None))
        await asyncio.sleep(0.05)

        assert pool.active_count == 1
        assert pool.queue_depth == 1

        release.set()
        await asyncio.gather(first, second)
        assert pool.queue_depth == 0

    async def test_wider_pool_runs_in_parallel(self) -> None:
        wide = InferencePool(make_settings(max_concurrent=3))
        barrier = threading.Barrier(3, timeout=5)
        try:
            await asyncio.gather(*(wide.run(barrier.wait) for _ in range(3)))
        finally:
            wide.shutdown()
