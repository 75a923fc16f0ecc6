"""
Bounded Batch Runner
Processes a batch with a fixed pool of asyncio workers draining one queue.
Each item fails independently; the result reports per-item outcomes.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


@dataclass
class BatchResult:
    succeeded: int = 0
    failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    results: Dict[Any, Any] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {"succeeded": self.succeeded, "failed": self.failed, "errors": self.errors}


async def run_batch(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[Any]],
    concurrency: int = 5,
) -> BatchResult:
    """
    Run `worker` over every item with at most `concurrency` in flight.
    Exceptions are recorded against the item; they never abort the batch.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    queue: asyncio.Queue = asyncio.Queue()
    for item in items:
        queue.put_nowait(item)

    result = BatchResult()
    if queue.empty():
        return result

    async def _drain() -> None:
        while True:
            try:
                item = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                result.results[item] = await worker(item)
                result.succeeded += 1
            except Exception as e:
                logger.warning(f"Batch item {item} failed: {e}")
                result.failed += 1
                result.errors[str(item)] = str(e)
            finally:
                queue.task_done()

    pool_size = min(concurrency, queue.qsize())
    await asyncio.gather(*(_drain() for _ in range(pool_size)))
    logger.info(f"Batch finished: {result.succeeded} succeeded, {result.failed} failed")
    return result

