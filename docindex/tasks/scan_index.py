"""
Parallel exhaustive scan of an index.

``ScanIndexTask`` walks every document of an index with one sliced scroll
cursor per worker and records a SUCCESS outcome per document path in a
progress map. Page pulls that fail are retried with exponential backoff a
bounded number of times; a slice that keeps failing is aborted and reported,
so a scan always terminates.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from ..errors import CursorIOError, ScanError
from ..models.config import ScanSettings
from ..models.entities import Document
from ..models.storage import ProgressRecord
from ..storage.contract import IndexStore
from ..storage.cursor import Page, ScrollCursor
from ..storage.utils import MATCH_ALL
from .progress import ProgressMap, create_progress_map

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressMapFactory = Callable[[ScanSettings], ProgressMap]


class _IndexType:
    """Stands for the ``index-type`` configured on the scanned store"""

    def __repr__(self) -> str:
        return "INDEX_TYPE"


INDEX_TYPE: Any = _IndexType()


class RetryPolicy:
    """Bounded retry with exponential backoff for page pulls"""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: bool = True
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter

    @classmethod
    def from_settings(cls, settings: ScanSettings) -> "RetryPolicy":
        """One first attempt plus ``maxRetries`` retries"""
        return cls(max_attempts=settings.max_retries + 1, initial_delay=settings.retry_delay)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before retry number ``attempt`` (0-based)"""
        delay = self.initial_delay * (self.backoff_factor ** attempt)
        delay = min(delay, self.max_delay)

        if self.jitter:
            # Up to 20% extra, spreads retries of concurrent slices
            delay += delay * 0.2 * random.random()

        return delay


@dataclass
class SliceResult:
    """Outcome of one slice worker"""
    slice_index: int
    count: int = 0
    pages: int = 0
    skipped: int = 0
    retries: int = 0
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScanResult:
    """Reduced outcome of a scan"""
    total: int
    slices: List[SliceResult] = field(default_factory=list)
    timed_out: bool = False
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def failed_slices(self) -> List[SliceResult]:
        return [s for s in self.slices if not s.ok]

    @property
    def is_complete(self) -> bool:
        """True when every slice ran to exhaustion"""
        return not (self.failed_slices or self.timed_out or self.cancelled)

    @property
    def errors(self) -> Dict[int, str]:
        return {s.slice_index: s.error for s in self.failed_slices}

    @classmethod
    def reduce(cls, slices: Sequence[SliceResult], **kwargs: Any) -> "ScanResult":
        ordered = sorted(slices, key=lambda s: s.slice_index)
        return cls(total=sum(s.count for s in ordered), slices=ordered, **kwargs)


class ScanIndexTask:
    """
    Scan every document of ``settings.default_project`` in parallel slices.

    Each of the ``settings.scroll_slices`` workers owns one cursor and pulls
    pages of ``settings.scroll_size`` hits sequentially. The task resolves to
    the total number of documents scanned.
    """

    def __init__(
        self,
        store: IndexStore,
        settings: ScanSettings,
        progress_factory: ProgressMapFactory = create_progress_map,
        query: str = MATCH_ALL,
        doc_type: Optional[str] = INDEX_TYPE,
        source_fields: Optional[Sequence[str]] = ("path",),
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        fail_on_slice_error: Optional[bool] = None
    ):
        """
        Initialize the scan task.

        Args:
            store: Index store to scan
            settings: Scan settings (index, page size, slices, report name)
            progress_factory: Builds the progress map from the settings
            query: Query restricting the scanned documents
            doc_type: Document type to scan, None for every type; defaults to
                the store's configured ``index-type``
            source_fields: Source fields pulled per hit
            retry_policy: Page pull retry policy, defaults to the settings'
            timeout: Seconds before the scan is cancelled, defaults to the settings'
            fail_on_slice_error: Raise ScanError when a slice aborts

        Raises:
            ConfigError: if the progress map cannot be built
        """
        self.store = store
        self.settings = settings
        self.query = query
        if doc_type is INDEX_TYPE:
            config = getattr(store, "config", None)
            doc_type = config.index_type if config is not None else Document.doc_type
        self.doc_type = doc_type
        self.source_fields = list(source_fields) if source_fields is not None else None
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.timeout = timeout if timeout is not None else settings.scan_timeout
        self.fail_on_slice_error = (
            settings.fail_on_slice_error if fail_on_slice_error is None else fail_on_slice_error
        )

        self.index = settings.default_project
        self.slice_count = settings.scroll_slices
        self.page_size = settings.scroll_size

        self.progress = progress_factory(settings)
        self._cancel_requested = False
        # Bound to the loop running the scan, created by run()
        self._cancelled: Optional[asyncio.Event] = None

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Stop issuing page pulls; in-flight pulls finish and are recorded"""
        if not self._cancel_requested:
            logger.info(f"Cancelling scan of {self.index}")
            self._cancel_requested = True
            if self._cancelled is not None:
                self._cancelled.set()

    async def run(self) -> ScanResult:
        """
        Run all slices and close the progress map.

        Returns:
            ScanResult with the total scanned and per-slice outcomes

        Raises:
            ScanError: if a slice aborted and ``fail_on_slice_error`` is set
        """
        start_time = time.time()
        logger.info(
            f"Scanning {self.index} with {self.slice_count} slice(s) "
            f"of {self.page_size} hits per page"
        )
        self._cancelled = asyncio.Event()
        if self._cancel_requested:
            self._cancelled.set()

        semaphore = asyncio.Semaphore(self.slice_count)
        tasks = [
            asyncio.create_task(self._run_slice(slice_index, semaphore))
            for slice_index in range(self.slice_count)
        ]
        timed_out = False

        try:
            _, pending = await asyncio.wait(tasks, timeout=self.timeout)
            if pending:
                timed_out = True
                logger.warning(
                    f"Scan of {self.index} timed out after {self.timeout}s, "
                    f"waiting for {len(pending)} slice(s) to stop"
                )
                self.cancel()
                await asyncio.wait(pending)
            slices = [task.result() for task in tasks]

        except asyncio.CancelledError:
            self.cancel()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        finally:
            await self.progress.close()

        result = ScanResult.reduce(
            slices,
            timed_out=timed_out,
            cancelled=self.is_cancelled and not timed_out,
            elapsed=time.time() - start_time
        )
        logger.info(
            f"Scanned {result.total} documents of {self.index} in {result.elapsed:.2f}s "
            f"({len(result.failed_slices)} failed slice(s))"
        )

        if result.failed_slices and self.fail_on_slice_error:
            raise ScanError(
                f"{len(result.failed_slices)}/{self.slice_count} slice(s) of {self.index} failed",
                result=result,
                errors=result.errors
            )
        return result

    async def _run_slice(self, slice_index: int, semaphore: asyncio.Semaphore) -> SliceResult:
        result = SliceResult(slice_index=slice_index)
        cursor: Optional[ScrollCursor] = None

        async with semaphore:
            try:
                cursor = await self._retrying(
                    result,
                    lambda: self.store.open_cursor(
                        self.query,
                        page_size=self.page_size,
                        slice_index=slice_index,
                        slice_count=self.slice_count,
                        doc_type=self.doc_type,
                        indices=[self.index],
                        source_fields=self.source_fields
                    )
                )

                while cursor is not None and not self.is_cancelled:
                    page: Optional[Page] = await self._retrying(
                        result, lambda: self.store.next_page(cursor)
                    )
                    if page is None or page.is_empty:
                        break
                    await self._record_page(result, page)

                result.cancelled = self.is_cancelled and not (cursor and cursor.exhausted)

            except Exception as e:
                result.error = f"{type(e).__name__}: {e}"
                logger.error(
                    f"Slice {slice_index}/{self.slice_count} of {self.index} aborted "
                    f"after {result.count} documents: {e}"
                )

            finally:
                if cursor is not None:
                    try:
                        await self.store.close_cursor(cursor)
                    except Exception as e:
                        logger.warning(f"Failed to close cursor of slice {slice_index}: {e}")

        logger.debug(f"Slice {slice_index} done: {result.count} documents in {result.pages} pages")
        return result

    async def _record_page(self, result: SliceResult, page: Page) -> None:
        records: Dict[str, ProgressRecord] = {}
        for hit in page.docs:
            path = hit.get("path") if isinstance(hit, dict) else getattr(hit, "path", None)
            if not path:
                result.skipped += 1
                logger.warning(f"Skipping hit without path in slice {result.slice_index}: {_hit_id(hit)}")
                continue
            records[str(path)] = ProgressRecord.success()

        if records:
            await self.progress.put_all(records)
        result.count += len(page.docs)
        result.pages += 1

    async def _retrying(self, result: SliceResult, operation: Callable[[], Awaitable[T]]) -> Optional[T]:
        """
        Run ``operation``, retrying cursor failures with backoff.

        Returns None when the task is cancelled while waiting to retry.

        Raises:
            CursorIOError: once the retry policy is exhausted
        """
        attempts = self.retry_policy.max_attempts
        for attempt in range(attempts):
            try:
                return await operation()
            except CursorIOError as e:
                if attempt + 1 >= attempts:
                    raise
                delay = self.retry_policy.get_delay(attempt)
                result.retries += 1
                logger.warning(
                    f"Slice {result.slice_index}: page pull failed "
                    f"(attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s: {e}"
                )
                if await self._wait_cancelled(delay):
                    return None
        return None

    async def _wait_cancelled(self, delay: float) -> bool:
        """Sleep ``delay`` seconds; True if the task was cancelled meanwhile"""
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return False


def _hit_id(hit: Any) -> Any:
    if isinstance(hit, dict):
        return hit.get("_id")
    return getattr(hit, "id", None)
