"""Bounded async work queue whose concurrency follows memory pressure."""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from ..exceptions import QueueOverflowError
from .memory import MemoryReader, sample_memory
from .types import (
    ADJUST_INTERVAL,
    DEFAULT_CONCURRENCY,
    MAX_CONCURRENCY,
    MAX_QUEUE_SIZE,
    MEMORY_THRESHOLD,
    MIN_CONCURRENCY,
)

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


class WorkQueue:
    """FIFO job queue with a concurrency limit adjusted every tick.

    Each tick samples memory: above the threshold the limit drops by one,
    otherwise it grows by one, always staying within
    [min_concurrency, max_concurrency]. Only the queue mutates its own
    counters.
    """

    def __init__(
        self,
        concurrency: int = DEFAULT_CONCURRENCY,
        *,
        min_concurrency: int = MIN_CONCURRENCY,
        max_concurrency: int = MAX_CONCURRENCY,
        max_size: int = MAX_QUEUE_SIZE,
        memory_threshold: int = MEMORY_THRESHOLD,
        adjust_interval: float = ADJUST_INTERVAL,
        memory_reader: MemoryReader = sample_memory,
    ) -> None:
        if not min_concurrency <= concurrency <= max_concurrency:
            raise ValueError(
                f"concurrency {concurrency} outside "
                f"[{min_concurrency}, {max_concurrency}]"
            )
        self.min_concurrency = min_concurrency
        self.max_concurrency = max_concurrency
        self.max_size = max_size
        self.memory_threshold = memory_threshold
        self.adjust_interval = adjust_interval
        self.memory_reader = memory_reader
        self._concurrency = concurrency
        self._waiting: deque[tuple[Job, asyncio.Future]] = deque()
        self._running: dict[asyncio.Future, asyncio.Task] = {}
        self._adjuster: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "WorkQueue":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def size(self) -> int:
        """Jobs waiting for a slot."""
        return len(self._waiting)

    @property
    def pending(self) -> int:
        """Jobs currently running."""
        return len(self._running)

    def enqueue(self, job: Job) -> asyncio.Future:
        """Admit a job, returning a future that settles with its outcome.

        Never blocks: the job is either queued or rejected right away.
        Cancelling the returned future drops a waiting job or cancels a
        running one.

        Raises:
            QueueOverflowError: If waiting plus running jobs reach max_size
        """
        if len(self._waiting) + len(self._running) >= self.max_size:
            raise QueueOverflowError(
                f"Work queue full ({self.max_size} jobs), retry later"
            )

        future = asyncio.get_running_loop().create_future()
        self._waiting.append((job, future))
        self._fill()
        return future

    def _fill(self) -> None:
        while self._waiting and len(self._running) < self._concurrency:
            job, future = self._waiting.popleft()
            if future.done():
                # Cancelled by its owner while still waiting
                continue
            task = asyncio.create_task(self._run(job, future))
            self._running[future] = task
            task.add_done_callback(lambda t, f=future: self._on_task_done(f))
            future.add_done_callback(
                lambda f, t=task: t.cancel() if f.cancelled() and not t.done() else None
            )

    async def _run(self, job: Job, future: asyncio.Future) -> None:
        try:
            result = await job()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)

    def _on_task_done(self, future: asyncio.Future) -> None:
        self._running.pop(future, None)
        self._fill()

    async def cancel(self, futures: list[asyncio.Future]) -> None:
        """Cancel jobs by their futures and wait until running ones have unwound.

        Waiting jobs are dropped; running jobs get CancelledError at their
        current suspension point and finish their cleanup before this
        returns.
        """
        tasks = []
        for future in futures:
            task = self._running.get(future)
            future.cancel()
            if task is not None and not task.done():
                task.cancel()
                tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def adjust_concurrency(self) -> int:
        """Run one additive-increase/additive-decrease step.

        Returns:
            The new concurrency limit
        """
        sample = self.memory_reader()
        if sample.total > self.memory_threshold:
            new = max(self.min_concurrency, self._concurrency - 1)
        else:
            new = min(self.max_concurrency, self._concurrency + 1)

        if new != self._concurrency:
            logger.info(
                "Adjusting concurrency %d -> %d (memory %d bytes, threshold %d)",
                self._concurrency,
                new,
                sample.total,
                self.memory_threshold,
            )
            self._concurrency = new
            self._fill()
        return new

    async def _adjust_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.adjust_interval)
            try:
                self.adjust_concurrency()
            except Exception:
                logger.exception("Concurrency adjustment failed")

    def start(self) -> None:
        """Start the periodic concurrency adjuster."""
        if self._adjuster is None or self._adjuster.done():
            self._adjuster = asyncio.create_task(self._adjust_periodically())

    async def close(self) -> None:
        """Stop the adjuster and cancel every job, waiting for running ones to unwind."""
        if self._adjuster is not None:
            self._adjuster.cancel()
            try:
                await self._adjuster
            except asyncio.CancelledError:
                pass
            self._adjuster = None

        while self._waiting:
            _, future = self._waiting.popleft()
            future.cancel()

        running = list(self._running.items())
        for future, task in running:
            future.cancel()
            task.cancel()
        if running:
            await asyncio.gather(*(task for _, task in running), return_exceptions=True)

    def metrics(self) -> dict[str, Any]:
        """Read-only snapshot of queue state and memory."""
        sample = self.memory_reader()
        return {
            "queue_depth": self.size,
            "pending": self.pending,
            "concurrency": self._concurrency,
            "memory": {
                "heap_used": sample.heap_used,
                "external": sample.external,
                "total": sample.total,
                "sampled_at": sample.sampled_at,
            },
        }
