"""Thread pool for blocking ONNX Runtime work.

Session construction and forward passes block, so they run on worker
threads while the event loop keeps serving requests. A semaphore sized
like the pool gates admission; with the default size of 1 forward passes
are strictly serialized and at most one input/output pair is alive.
Waiting callers queue without a timeout and a running task is never
cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from pcbscan.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Runs synchronous callables on a bounded executor."""

    def __init__(self, settings: Settings) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="pcb-inference",
        )
        self._counts = {"active": 0, "queued": 0}
        self._counts_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Wait for a free slot, then run ``func(*args)`` on a worker thread.

        Exceptions raised by ``func`` propagate to the caller unchanged.
        """
        with self._counting("queued"):
            await self._slots.acquire()
        try:
            with self._counting("active"):
                return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
        finally:
            self._slots.release()

    @property
    def active_count(self) -> int:
        """Tasks currently running on a worker thread."""
        return self._read("active")

    @property
    def queue_depth(self) -> int:
        """Callers waiting for a free slot."""
        return self._read("queued")

    def shutdown(self) -> None:
        """Wait for running tasks and stop the worker threads."""
        self._executor.shutdown(wait=True)
        logger.info("Inference pool shut down")

    @contextmanager
    def _counting(self, key: str) -> Iterator[None]:
        with self._counts_lock:
            self._counts[key] += 1
        try:
            yield
        finally:
            with self._counts_lock:
                self._counts[key] -= 1

    def _read(self, key: str) -> int:
        with self._counts_lock:
            return self._counts[key]
