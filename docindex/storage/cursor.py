"""
Scroll cursors over index stores.

A cursor is a resumable, sliceable pointer over every match of a query. Stores
create cursors in ``open_cursor``, advance them in ``next_page`` and release
them in ``close_cursor``; the position token is opaque to callers.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, NamedTuple, Optional, Sequence

from .utils import MATCH_ALL, validate_slice

logger = logging.getLogger(__name__)


@dataclass
class ScrollCursor:
    """State of one scroll over a query, restricted to one slice"""
    query: str = MATCH_ALL
    page_size: int = 1000
    slice_index: int = 0
    slice_count: int = 1
    doc_type: Optional[str] = None
    indices: List[str] = field(default_factory=list)
    source_fields: Optional[List[str]] = None

    # Backend position token, None before the first page
    position: Any = None

    exhausted: bool = False
    closed: bool = False
    pages_pulled: int = 0
    hits_pulled: int = 0
    cursor_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    opened_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        validate_slice(self.slice_index, self.slice_count)
        if self.page_size < 1:
            raise ValueError(f"Page size must be >= 1, got {self.page_size}")
        self.indices = list(self.indices)
        if self.source_fields is not None:
            self.source_fields = list(self.source_fields)

    @property
    def is_active(self) -> bool:
        return not (self.exhausted or self.closed)

    def advance(self, position: Any, hits: int) -> None:
        """Record a pulled page; a page without a next position exhausts the cursor"""
        self.pages_pulled += 1
        self.hits_pulled += hits
        self.position = position
        if position is None or hits == 0:
            self.exhausted = True

    def describe(self) -> Dict[str, Any]:
        return {
            "cursor_id": self.cursor_id,
            "query": self.query,
            "doc_type": self.doc_type,
            "indices": self.indices,
            "slice": f"{self.slice_index}/{self.slice_count}",
            "pages_pulled": self.pages_pulled,
            "hits_pulled": self.hits_pulled,
            "exhausted": self.exhausted,
            "closed": self.closed,
        }


class Page(NamedTuple):
    """One page of hits and the cursor it was pulled from"""
    docs: List[Any]
    cursor: ScrollCursor

    @property
    def is_empty(self) -> bool:
        return not self.docs


def project(hit: Dict[str, Any], source_fields: Optional[Sequence[str]]) -> Dict[str, Any]:
    """Keep only ``source_fields`` of a hit; identity keys are always kept"""
    if source_fields is None:
        return hit
    return {
        k: v for k, v in hit.items()
        if k in source_fields or k.startswith("_")
    }


async def iterate_pages(store, cursor: ScrollCursor, decoder=None) -> AsyncIterator[List[Any]]:
    """
    Yield non-empty pages of ``cursor`` until it is exhausted, then close it.

    Args:
        store: Index store that opened the cursor
        cursor: Cursor to drain
        decoder: Optional decoder applied to every hit

    Yields:
        Lists of hits
    """
    try:
        while True:
            page = await store.next_page(cursor, decoder=decoder)
            if page.is_empty:
                break
            yield page.docs
    finally:
        await store.close_cursor(cursor)
