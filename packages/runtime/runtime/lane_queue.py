"""Per-key FIFO lanes with a global concurrency cap.

Jobs submitted to the same lane run strictly one after another; different
lanes run concurrently up to ``max_concurrency``. The job currently running in
a lane can be cancelled without stopping the lane.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[Any] | Any]


class LaneQueue:
    def __init__(self, max_concurrency: int = 4) -> None:
        self._lanes: Dict[str, asyncio.Queue[Tuple[Job, asyncio.Future[Any]]]] = {}
        self._workers: Dict[str, asyncio.Task[None]] = {}
        self._running: Dict[str, asyncio.Task[Any]] = {}
        self._state_lock = asyncio.Lock()
        self._global_semaphore = asyncio.Semaphore(max_concurrency)
        self._closed = False

    async def submit(self, lane_key: str, fn: Callable[[], Awaitable[T] | T]) -> T:
        if self._closed:
            raise RuntimeError("LaneQueue is closed")
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()

        async with self._state_lock:
            queue = self._lanes.get(lane_key)
            if queue is None:
                queue = asyncio.Queue()
                self._lanes[lane_key] = queue
                self._workers[lane_key] = asyncio.create_task(self._lane_worker(lane_key))

        await queue.put((fn, future))
        return await future

    def cancel_running(self, lane_key: str) -> bool:
        """Cancel the job currently running in ``lane_key``; queued jobs still run."""
        job = self._running.get(lane_key)
        if job is None or job.done():
            return False
        job.cancel()
        return True

    def is_busy(self, lane_key: str) -> bool:
        job = self._running.get(lane_key)
        return job is not None and not job.done()

    async def close(self) -> None:
        self._closed = True
        async with self._state_lock:
            workers = list(self._workers.values())
            self._workers.clear()
            self._lanes.clear()
        for job in list(self._running.values()):
            job.cancel()
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def _lane_worker(self, lane_key: str) -> None:
        queue = self._lanes[lane_key]
        while True:
            fn, future = await queue.get()
            try:
                async with self._global_semaphore:
                    job = asyncio.ensure_future(self._call(fn))
                    self._running[lane_key] = job
                    try:
                        result = await job
                    finally:
                        self._running.pop(lane_key, None)
                if not future.done():
                    future.set_result(result)
            except asyncio.CancelledError:
                if not future.done():
                    future.cancel()
                if self._closed:
                    raise
                logger.info("Job in lane %s was cancelled", lane_key)
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            finally:
                queue.task_done()

    @staticmethod
    async def _call(fn: Job) -> Any:
        result = fn()
        if inspect.isawaitable(result):
            result = await result
        return result
