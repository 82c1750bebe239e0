"""
Index store contract.

``IndexStore`` is the capability every backend implements: index lifecycle,
point operations, buffered bulk mutation, refresh/commit, free-text search,
structural parent/child joins, and sliced scroll cursors. Backends never retry:
transient failures are raised as typed errors and retry policy belongs to
callers.

Entity helpers at the bottom of the module work with any store.
"""

from typing import (
    Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Type, TypeVar,
    runtime_checkable
)

from ..models.config import IndexConfig
from ..models.entities import Decoder, Entity, decode_as
from .cursor import Page, ScrollCursor
from .utils import MATCH_ALL

E = TypeVar("E", bound=Entity)

# Offset based search windows cannot go past this many hits
MAX_RESULT_WINDOW = 10000


@runtime_checkable
class IndexStore(Protocol):
    """Backend-neutral document index store"""

    # Lifecycle

    async def await_ready(self, index: str, timeout: Optional[float] = None) -> bool:
        """Block until ``index`` answers; False on timeout, never raises"""
        ...

    async def create_index(self, index: str, config: Optional[IndexConfig] = None) -> bool:
        """Create ``index``; False if it already exists or creation failed"""
        ...

    async def delete_index(self, index: str) -> bool:
        """Delete ``index``; False if it is missing or deletion failed"""
        ...

    async def get_indices(self) -> List[str]:
        ...

    async def close(self) -> None:
        """Flush buffered mutations and release the backend connection"""
        ...

    # Point operations

    async def add(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        source: Dict[str, Any],
        parent: Optional[str] = None
    ) -> bool:
        """Upsert a document; raises IndexingError on rejection"""
        ...

    async def read(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        parent: Optional[str] = None,
        decoder: Optional[Decoder] = None
    ) -> Optional[Any]:
        """Point lookup; None when the document does not exist"""
        ...

    async def delete(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        parent: Optional[str] = None
    ) -> bool:
        """Delete a document; False when it does not exist"""
        ...

    # Bulk operations

    async def add_batch(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        source: Dict[str, Any],
        parent: Optional[str] = None
    ) -> None:
        """Queue an upsert; failures surface from the flush that applies it"""
        ...

    async def batch_delete(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        parent: Optional[str] = None
    ) -> None:
        """Queue a deletion; failures surface from the flush that applies it"""
        ...

    async def flush(self) -> None:
        """Apply buffered mutations; raises BulkIndexingError on failures"""
        ...

    async def refresh(self, *indices: str) -> bool:
        """Make pending writes visible; False if any index fails"""
        ...

    async def commit(self, *indices: str) -> bool:
        """Persist pending writes; False if any index fails"""
        ...

    # Search

    async def count(
        self,
        query: str = MATCH_ALL,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = ()
    ) -> int:
        ...

    def search(
        self,
        query: str = MATCH_ALL,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        """Lazy, finite, single-use stream of every match"""
        ...

    async def search_window(
        self,
        query: str,
        start: int,
        end: int,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> List[Any]:
        """Matches ``[start, end)``; bounded by MAX_RESULT_WINDOW"""
        ...

    def search_has_child(
        self,
        parent_type: str,
        child_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        """Parents having at least one child matching ``query``"""
        ...

    def search_has_no_child(
        self,
        parent_type: str,
        child_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        """Parents having no child matching ``query``"""
        ...

    def search_has_parent(
        self,
        child_type: str,
        parent_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        """Children whose parent matches ``query``"""
        ...

    def search_has_no_parent(
        self,
        child_type: str,
        parent_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        """Children without a parent matching ``query``"""
        ...

    # Scroll cursors

    async def open_cursor(
        self,
        query: str = MATCH_ALL,
        page_size: int = 1000,
        slice_index: int = 0,
        slice_count: int = 1,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = (),
        source_fields: Optional[Sequence[str]] = None
    ) -> ScrollCursor:
        ...

    async def next_page(self, cursor: ScrollCursor, decoder: Optional[Decoder] = None) -> Page:
        """Pull the next page; empty forever once exhausted. Raises CursorIOError"""
        ...

    async def close_cursor(self, cursor: ScrollCursor) -> None:
        """Release the cursor; safe to call more than once"""
        ...


def check_window(start: int, end: int) -> None:
    """Validate an offset window against MAX_RESULT_WINDOW"""
    if start < 0 or end < start:
        raise ValueError(f"Invalid search window [{start}, {end})")
    if end > MAX_RESULT_WINDOW:
        raise ValueError(
            f"Search window [{start}, {end}) exceeds the result window of "
            f"{MAX_RESULT_WINDOW}; use a scroll cursor instead"
        )


async def add_entity(store: IndexStore, index: str, entity: Entity) -> bool:
    return await store.add(index, entity.doc_type, entity.id, entity.to_source(), entity.parent)


async def add_entity_batch(store: IndexStore, index: str, entity: Entity) -> None:
    await store.add_batch(index, entity.doc_type, entity.id, entity.to_source(), entity.parent)


async def read_entity(
    store: IndexStore,
    index: str,
    model: Type[E],
    doc_id: str,
    parent: Optional[str] = None
) -> Optional[E]:
    """Read a document reified as ``model``; None when it does not exist"""
    return await store.read(index, model.doc_type, doc_id, parent, decoder=decode_as(model))


async def delete_entity(store: IndexStore, index: str, entity: Entity) -> bool:
    return await store.delete(index, entity.doc_type, entity.id, entity.parent)


async def batch_delete_entity(store: IndexStore, index: str, entity: Entity) -> None:
    await store.batch_delete(index, entity.doc_type, entity.id, entity.parent)
