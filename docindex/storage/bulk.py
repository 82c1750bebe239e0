"""
Buffered bulk mutations.

Stores queue ``add_batch``/``batch_delete`` calls here; the buffer applies
them through a backend callback when it is full, when an enqueue finds the
flush interval elapsed, or when flushed explicitly. There is no background
timer: a lone queued operation stays pending until the next enqueue or an
explicit flush. Failures are reported per flush.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from ..errors import BulkIndexingError
from ..models.storage import BulkFailure, BulkOperation

logger = logging.getLogger(__name__)

ApplyCallback = Callable[[List[BulkOperation]], Awaitable[List[BulkFailure]]]


class BulkBuffer:
    """
    Ordered buffer of bulk operations with size and time based flushing.

    Operations are applied in the order they were queued. A flush never
    re-queues failed operations: they are raised in a ``BulkIndexingError``
    while the rest of the flush stays applied.
    """

    def __init__(
        self,
        apply: ApplyCallback,
        bulk_size: int = 1000,
        flush_interval: Optional[float] = 5.0
    ):
        """
        Initialize bulk buffer.

        Args:
            apply: Coroutine applying a list of operations, returning failures
            bulk_size: Number of queued operations that triggers a flush
            flush_interval: Seconds since the last flush that trigger a flush
                on the next enqueue; None disables time based flushing
        """
        if bulk_size < 1:
            raise ValueError(f"Bulk size must be >= 1, got {bulk_size}")
        self._apply = apply
        self.bulk_size = bulk_size
        self.flush_interval = flush_interval

        self._pending: List[BulkOperation] = []
        self._lock = asyncio.Lock()
        self._last_flush = time.monotonic()

        self.flush_count = 0
        self.failure_count = 0

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> List[BulkOperation]:
        return list(self._pending)

    def _should_flush(self) -> bool:
        if len(self._pending) >= self.bulk_size:
            return True
        if self.flush_interval is not None and self._pending:
            return time.monotonic() - self._last_flush >= self.flush_interval
        return False

    async def enqueue(self, operation: BulkOperation) -> None:
        """Queue an operation, flushing if a threshold is reached"""
        self._pending.append(operation)
        if self._should_flush():
            await self.flush()

    async def flush(self) -> int:
        """
        Apply every queued operation.

        Returns:
            Number of operations applied successfully

        Raises:
            BulkIndexingError: if any operation was rejected
        """
        async with self._lock:
            batch, self._pending = self._pending, []
            self._last_flush = time.monotonic()
            if not batch:
                return 0

            start_time = time.time()
            failures = await self._apply(batch)
            self.flush_count += 1
            self.failure_count += len(failures)
            elapsed = (time.time() - start_time) * 1000

            logger.debug(
                f"Flushed {len(batch)} bulk operations "
                f"({len(failures)} failed) in {elapsed:.2f}ms"
            )

        if failures:
            logger.error(f"Bulk flush: {len(failures)}/{len(batch)} operations failed")
            raise BulkIndexingError(failures)
        return len(batch)
