"""Concurrency-limited FIFO queue for calls into the local model server."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[object]]


@dataclass(slots=True)
class QueuedRequest:
    key: str
    job: Job


@dataclass(frozen=True, slots=True)
class QueueStats:
    queue_size: int
    processing: int


class RequestQueue:
    """Runs at most ``max_concurrent`` jobs at once, pausing between jobs.

    Submission is fire-and-forget: ``add`` must be called from a running event
    loop, and a key that is already pending is ignored rather than replaced.
    Job failures are logged and never stop the queue.
    """

    def __init__(
        self,
        max_concurrent: int = 2,
        delay_between_requests: timedelta = timedelta(milliseconds=500),
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.delay_between_requests = delay_between_requests
        self._pending: deque[QueuedRequest] = deque()
        self._processing = 0
        self._tasks: set[asyncio.Task[None]] = set()

    def add(self, key: str, job: Job) -> bool:
        if any(item.key == key for item in self._pending):
            logger.debug("Skipped %s; already queued", key)
            return False
        self._pending.append(QueuedRequest(key=key, job=job))
        logger.debug(
            "Queued %s (queue size: %d, processing: %d)",
            key,
            len(self._pending),
            self._processing,
        )
        self._process_next()
        return True

    def _process_next(self) -> None:
        while self._processing < self.max_concurrent and self._pending:
            item = self._pending.popleft()
            self._processing += 1
            task = asyncio.get_running_loop().create_task(self._run(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run(self, item: QueuedRequest) -> None:
        try:
            try:
                await item.job()
            except Exception:
                logger.exception("Error processing queue item %s", item.key)
            delay = self.delay_between_requests.total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
        finally:
            self._processing -= 1
            self._process_next()

    def stats(self) -> QueueStats:
        return QueueStats(queue_size=len(self._pending), processing=self._processing)

    def clear(self) -> int:
        """Drop pending items; jobs already running finish normally."""
        dropped = len(self._pending)
        self._pending.clear()
        logger.info("Request queue cleared (%d pending dropped)", dropped)
        return dropped

    async def join(self) -> None:
        """Wait until nothing is pending or running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
