"""Process memory sampling and the per-job memory gate."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import psutil

from ..exceptions import MemoryGateAbortError
from .types import GATE_POLL_INTERVAL, MEMORY_THRESHOLD, MemorySample

logger = logging.getLogger(__name__)

MemoryReader = Callable[[], MemorySample]


def sample_memory() -> MemorySample:
    """Sample this process's memory.

    Private resident memory counts as heap in use; resident pages shared
    with other mappings (mmaps, shared libraries) count as external.
    """
    info = psutil.Process().memory_info()
    shared = getattr(info, "shared", 0)
    return MemorySample(
        heap_used=max(info.rss - shared, 0),
        external=shared,
        sampled_at=time.time(),
    )


def system_memory() -> dict[str, Any]:
    vm = psutil.virtual_memory()
    return {
        "total": vm.total,
        "available": vm.available,
        "used": vm.used,
        "percent": vm.percent,
    }


class MemoryGate:
    """Poll-and-wait guard that holds a job back while memory is tight.

    Protects against bursts between the work queue's concurrency
    adjustments; the queue handles sustained pressure.
    """

    def __init__(
        self,
        threshold: int = MEMORY_THRESHOLD,
        poll_interval: float = GATE_POLL_INTERVAL,
        memory_reader: MemoryReader = sample_memory,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.poll_interval = poll_interval
        self.memory_reader = memory_reader
        self.clock = clock

    def has_headroom(self) -> bool:
        return self.memory_reader().total < self.threshold

    def deadline_after(self, timeout: float | None) -> float | None:
        """Deadline on this gate's clock, or None for no timeout."""
        if timeout is None:
            return None
        return self.clock() + timeout

    async def wait(
        self,
        *,
        abort: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> None:
        """Return once usage is below the threshold.

        Raises:
            MemoryGateAbortError: If abort is set or deadline passes first
        """
        while True:
            if abort is not None and abort.is_set():
                raise MemoryGateAbortError("Aborted while waiting for memory headroom")

            sample = self.memory_reader()
            if sample.total < self.threshold:
                return

            if deadline is not None and self.clock() >= deadline:
                raise MemoryGateAbortError(
                    f"Timed out waiting for memory headroom "
                    f"({sample.total} >= {self.threshold} bytes)"
                )

            logger.warning(
                "Memory usage %d bytes above threshold %d, delaying task",
                sample.total,
                self.threshold,
            )
            await asyncio.sleep(self.poll_interval)
