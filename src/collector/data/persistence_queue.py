"""Serialized write path from many concurrent workers into one SQLite writer.

SQLite allows a single writer transaction at a time; concurrent workers
writing directly contend for the lock and fail with "database is locked".
Every write is therefore enqueued here and applied by exactly one drain
task, in FIFO order, one transaction per batch.
"""

import asyncio
from collections.abc import Awaitable, Callable

from collector.data.models import WriteBatch
from collector.exceptions import QueueClosedError
from collector.logging import get_logger

logger = get_logger(__name__)


class PersistenceQueue:
    """FIFO queue of write batches drained by a single task.

    ``enqueue`` resolves once its batch is committed and raises whatever the
    writer raised for that batch only; other batches are unaffected.

    Usage:
        queue = PersistenceQueue(store.write_batch)
        inserted = await queue.enqueue(CandleBatch(symbol_id, symbol, candles))
        ...
        await queue.close()  # drains everything already enqueued
    """

    def __init__(self, writer: Callable[[WriteBatch], Awaitable[int]]) -> None:
        self._writer = writer
        self._queue: asyncio.Queue[tuple[WriteBatch, asyncio.Future] | None] = asyncio.Queue()
        self._drain_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._closing = False
        self._committed = 0
        self._failed = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def committed(self) -> int:
        return self._committed

    @property
    def failed(self) -> int:
        return self._failed

    def start(self) -> None:
        if self._drain_task is None:
            self._drain_task = asyncio.create_task(self._drain_loop())

    async def enqueue(self, batch: WriteBatch) -> int:
        """Queue ``batch`` and wait until it is committed.

        Returns the writer's row count. Raises QueueClosedError once
        ``close`` has been called.
        """
        if self._closing:
            raise QueueClosedError("Persistence queue is closed")
        self.start()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((batch, future))
        return await future

    async def close(self) -> None:
        """Stop accepting batches, commit everything already queued, then stop."""
        if self._closing:
            return
        self._closing = True
        if self._drain_task is None:
            return
        self._queue.put_nowait(None)
        await self._drain_task
        self._drain_task = None
        logger.info(
            "persistence_queue_closed",
            committed=self._committed,
            failed=self._failed,
        )

    async def _drain_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                batch, future = item
                try:
                    written = await self._writer(batch)
                except Exception as e:
                    self._failed += 1
                    logger.error(
                        "batch_commit_failed",
                        batch_type=type(batch).__name__,
                        error=str(e),
                    )
                    # The enqueuer may have been cancelled while waiting
                    if not future.done():
                        future.set_exception(e)
                else:
                    self._committed += 1
                    if not future.done():
                        future.set_result(written)
            finally:
                self._queue.task_done()
