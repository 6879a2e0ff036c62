"""Bounded asyncio worker pool for render jobs.

A fixed number of consumer tasks pull jobs from a bounded queue, so a burst
of requests cannot start an unbounded number of renders. Submissions beyond
the queue capacity are refused instead of piling up.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

from thumbreel.exceptions import RenderQueueFullError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenderWorkerPool(Generic[T]):
    """Runs ``handler`` for queued items on ``workers`` concurrent tasks."""

    def __init__(
        self,
        handler: Callable[[T], Awaitable[None]],
        workers: int = 2,
        queue_size: int = 16,
        name: str = "render",
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self._handler = handler
        self._workers = workers
        self._queue_size = queue_size
        self._name = name
        self._queue: asyncio.Queue[T] | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._accepting = False

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        """Items waiting in the queue (not yet picked up by a worker)."""
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self._tasks:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"{self._name}-worker-{i}")
            for i in range(self._workers)
        ]
        self._accepting = True
        logger.info(
            f"[QUEUE] Started {self._workers} {self._name} workers "
            f"(queue size {self._queue_size})"
        )

    def submit(self, item: T) -> None:
        """Enqueue an item without waiting.

        Raises:
            RenderQueueFullError: If the queue is at capacity or the pool is
                not accepting work.
        """
        if not self._accepting or self._queue is None:
            raise RenderQueueFullError("Render queue is not accepting jobs")
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull as e:
            logger.warning(f"[QUEUE] {self._name} queue full ({self._queue_size}), refusing job")
            raise RenderQueueFullError() from e

    async def shutdown(self, drain: bool = True, timeout: float | None = None) -> None:
        """Stop accepting work and stop the workers.

        Args:
            drain: Wait for queued and running items to finish first.
            timeout: Upper bound on the drain wait; workers are cancelled
                when it expires.
        """
        self._accepting = False
        if not self._tasks:
            return

        if drain and self._queue is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[QUEUE] Drain timed out with {self._queue.qsize()} jobs queued, cancelling workers"
                )

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"[QUEUE] {self._name} workers stopped")

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            try:
                await self._handler(item)
            except Exception:
                # Handler owns job failure reporting; keep the worker alive
                logger.exception(f"[QUEUE] Unhandled error in {self._name} worker {index}")
            finally:
                self._queue.task_done()
