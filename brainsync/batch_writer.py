"""
Write batching with a rolling time window.

Writes enqueued close together are committed to the remote store as one
atomic batch once the window closes with no new arrivals. Every enqueue
restarts the window. When the atomic commit is rejected, each write is
retried on its own as a single-operation batch; partial success is possible
and each write's future carries its own outcome.

The queue lives in memory only. A crash before commit loses the queue but
not the fallback-store copies the client already made.
"""

import asyncio
import logging
from typing import Optional

from .errors import BatchCommitFailed
from .protocol import RemoteStoreProtocol
from .types import PendingWrite

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 0.1  # seconds


def _consume(fut: asyncio.Future) -> None:
    # Outcomes are logged here; callers that never await the future
    # should not get "exception was never retrieved" noise.
    if not fut.cancelled():
        fut.exception()


class BatchWriter:
    """
    Coalesces writes issued within ``window`` seconds into one commit.

    Args:
        remote: Store receiving batch_commit() calls
        window: Quiet period in seconds that closes a batch
    """

    def __init__(self, remote: RemoteStoreProtocol, window: float = DEFAULT_WINDOW):
        self._remote = remote
        self.window = window
        self._queue: list[tuple[PendingWrite, asyncio.Future]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._commits: set[asyncio.Task] = set()
        self.batches_committed = 0
        self.batches_failed = 0

    def enqueue(self, write: PendingWrite) -> asyncio.Future:
        """
        Queue a write and (re)start the batch window.

        Returns a future that resolves to None once the write is committed,
        or fails with the error from its individual retry.
        """
        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        fut.add_done_callback(_consume)
        self._queue.append((write, fut))
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.window, self._close_window)
        logger.debug(
            "Queued %s %s (%d pending)", write.op.value, write.key, len(self._queue),
        )
        return fut

    def pending(self) -> int:
        return len(self._queue)

    def _close_window(self) -> None:
        self._timer = None
        if not self._queue:
            return
        batch, self._queue = self._queue, []
        task = asyncio.ensure_future(self._commit(batch))
        self._commits.add(task)
        task.add_done_callback(self._commits.discard)

    async def _commit(self, batch: list[tuple[PendingWrite, asyncio.Future]]) -> None:
        writes = [w for w, _ in batch]
        try:
            await self._remote.batch_commit(writes)
        except Exception as e:
            self.batches_failed += 1
            failure = BatchCommitFailed(len(writes), e)
            logger.warning("%s; retrying individually", failure)
            await self._commit_individually(batch)
            return
        self.batches_committed += 1
        logger.info("Batch committed: %d operations", len(writes))
        for _, fut in batch:
            if not fut.done():
                fut.set_result(None)

    async def _commit_individually(
        self, batch: list[tuple[PendingWrite, asyncio.Future]],
    ) -> None:
        for write, fut in batch:
            try:
                await self._remote.batch_commit([write])
            except Exception as e:
                logger.warning(
                    "Individual %s %s failed: %s", write.op.value, write.key, e,
                )
                if not fut.done():
                    fut.set_exception(e)
            else:
                if not fut.done():
                    fut.set_result(None)

    async def flush(self) -> None:
        """Commit whatever is queued now and wait for all commits to settle."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._close_window()
        if self._commits:
            await asyncio.gather(*self._commits, return_exceptions=True)
