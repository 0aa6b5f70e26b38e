"""Bounded-concurrency dispatcher for per-symbol work.

``worker_count`` worker coroutines pull item indexes from a shared
asyncio.Queue, so at most that many tasks are ever in flight and the next
item is admitted as soon as any worker frees up. Every item yields exactly
one result: the task's return value or a WorkFailure. A failing item never
aborts the batch.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog

from collector.logging import get_logger
from collector.models import ErrorType, WorkFailure, WorkItem

logger = get_logger(__name__)

_PENDING = object()


def _item_label(item: Any) -> str:
    if isinstance(item, WorkItem):
        return item.symbol.name
    name = getattr(item, "name", None) or getattr(item, "symbol", None)
    return str(name) if name is not None else str(item)


def _failure_type(exc: BaseException) -> ErrorType:
    error_type = getattr(exc, "error_type", None)
    return error_type if isinstance(error_type, ErrorType) else ErrorType.PROCESSING_ERROR


class WorkerPool:
    """Runs ``task_fn`` over items with at most ``worker_count`` in flight.

    Args:
        worker_count: Maximum number of concurrent tasks.
        name: Label used in progress log events.
        progress_every: Log progress after this many completed items.
    """

    def __init__(self, worker_count: int, name: str = "pool", progress_every: int = 10) -> None:
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._worker_count = worker_count
        self._name = name
        self._progress_every = max(1, progress_every)
        self._stopping = False
        self._processed = 0
        self._total = 0

    @property
    def stopping(self) -> bool:
        return self._stopping

    @property
    def worker_count(self) -> int:
        return self._worker_count

    def stop(self) -> None:
        """Stop admitting new items. In-flight tasks run to completion."""
        if not self._stopping:
            logger.info("worker_pool_stopping", pool=self._name, processed=self._processed)
        self._stopping = True

    async def run(
        self,
        items: Sequence[Any],
        task_fn: Callable[[Any], Awaitable[Any]],
    ) -> list[Any]:
        """Process every item; ``results[i]`` corresponds to ``items[i]``.

        Items not admitted because of ``stop()`` become
        ``WorkFailure(reason="shutdown")``.
        """
        self._processed = 0
        self._total = len(items)
        results: list[Any] = [_PENDING] * len(items)
        if not items:
            return []

        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(len(items)):
            queue.put_nowait(index)

        async def worker() -> None:
            while not self._stopping:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[index] = await self._run_one(items[index], task_fn)
                self._record_progress()

        workers = min(self._worker_count, len(items))
        logger.info("worker_pool_started", pool=self._name, items=len(items), workers=workers)
        await asyncio.gather(*(worker() for _ in range(workers)))

        skipped = 0
        for index, result in enumerate(results):
            if result is _PENDING:
                results[index] = WorkFailure(
                    symbol=_item_label(items[index]),
                    reason="shutdown",
                    error_type=ErrorType.PROCESSING_ERROR,
                )
                skipped += 1

        logger.info(
            "worker_pool_finished",
            pool=self._name,
            processed=self._processed,
            skipped=skipped,
            total=len(items),
        )
        return results

    async def _run_one(self, item: Any, task_fn: Callable[[Any], Awaitable[Any]]) -> Any:
        label = _item_label(item)
        attempts = 0
        if isinstance(item, WorkItem):
            item.attempts += 1
            attempts = item.attempts
        # Each worker runs in its own task, so bound context does not leak
        with structlog.contextvars.bound_contextvars(worker_symbol=label):
            try:
                return await task_fn(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error_type = _failure_type(e)
                logger.warning(
                    "work_item_failed",
                    pool=self._name,
                    symbol=label,
                    error_type=error_type.value,
                    attempts=attempts,
                    error=str(e),
                )
                return WorkFailure(
                    symbol=label,
                    reason=str(e) or type(e).__name__,
                    error_type=error_type,
                    attempts=attempts,
                )

    def _record_progress(self) -> None:
        self._processed += 1
        if self._processed % self._progress_every == 0 or self._processed == self._total:
            logger.info(
                "worker_pool_progress",
                pool=self._name,
                processed=self._processed,
                total=self._total,
            )
