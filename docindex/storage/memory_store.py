"""
In-process index store.

Implements the full index store contract over plain dictionaries. Used by the
test suite and by tools that need an index without a running search engine.
Documents are kept per index keyed by point ID; scroll order is point ID order,
the same order the Qdrant backend scrolls in.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Set

from ..errors import CursorIOError, IndexingError, UnsupportedQuery
from ..models.config import IndexConfig
from ..models.entities import Decoder, identity_decoder
from ..models.storage import BulkAction, BulkFailure, BulkOperation, IndexStats
from .bulk import BulkBuffer
from .contract import check_window
from .cursor import Page, ScrollCursor, iterate_pages
from .payload import PayloadCodec
from .utils import MATCH_ALL, SLICE_KEY_FIELD, SOURCE_ID_FIELD, entity_id_to_point_id, in_slice

logger = logging.getLogger(__name__)

Predicate = Callable[[Dict[str, Any]], bool]


class MemoryIndexStore:
    """Dictionary-backed index store"""

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        bulk_size: int = 1000,
        flush_interval: Optional[float] = 5.0,
        search_page_size: int = 500,
        ready_timeout: float = 5.0
    ):
        self.config = config or IndexConfig()
        self.codec = PayloadCodec(self.config)
        self.search_page_size = search_page_size
        self.ready_timeout = ready_timeout

        self._indices: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self._index_configs: Dict[str, IndexConfig] = {}
        self._cursors: Dict[str, ScrollCursor] = {}
        self._bulk = BulkBuffer(self._apply_bulk, bulk_size, flush_interval)
        self.stats = IndexStats()

    # Lifecycle

    async def await_ready(self, index: str, timeout: Optional[float] = None) -> bool:
        deadline = time.monotonic() + (self.ready_timeout if timeout is None else timeout)
        while index not in self._indices:
            if time.monotonic() >= deadline:
                logger.warning(f"Index {index} not ready before timeout")
                return False
            await asyncio.sleep(0.05)
        return True

    async def create_index(self, index: str, config: Optional[IndexConfig] = None) -> bool:
        if not index:
            return False
        if index in self._indices:
            logger.info(f"Index {index} already exists")
            return False
        self._indices[index] = {}
        self._index_configs[index] = config or self.config
        logger.info(f"Created index {index}")
        return True

    async def delete_index(self, index: str) -> bool:
        if self._indices.pop(index, None) is None:
            return False
        self._index_configs.pop(index, None)
        logger.info(f"Deleted index {index}")
        return True

    async def get_indices(self) -> List[str]:
        return sorted(self._indices)

    async def close(self) -> None:
        await self.flush()
        for cursor in list(self._cursors.values()):
            await self.close_cursor(cursor)

    # Point operations

    def _points(self, index: str) -> Dict[int, Dict[str, Any]]:
        points = self._indices.get(index)
        if points is None:
            raise IndexingError(f"Index {index} does not exist", index=index)
        return points

    def _put(self, index: str, doc_type: str, doc_id: str, source: Any, parent: Optional[str]) -> None:
        points = self._points(index)
        try:
            payload = self.codec.to_payload(index, doc_type, doc_id, source, parent)
        except ValueError as e:
            raise IndexingError(str(e), index=index, doc_id=doc_id) from e
        points[entity_id_to_point_id(doc_type, str(doc_id))] = payload
        self.stats.indexed += 1

    def _remove(self, index: str, doc_type: str, doc_id: str, parent: Optional[str]) -> bool:
        points = self._points(index)
        point_id = entity_id_to_point_id(doc_type, str(doc_id))
        payload = points.get(point_id)
        if payload is None:
            return False
        if parent is not None and self.codec.parent_of(payload) != parent:
            return False
        del points[point_id]
        self.stats.deleted += 1
        return True

    async def add(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        source: Dict[str, Any],
        parent: Optional[str] = None
    ) -> bool:
        self._put(index, doc_type, doc_id, source, parent)
        return True

    async def read(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        parent: Optional[str] = None,
        decoder: Optional[Decoder] = None
    ) -> Optional[Any]:
        points = self._indices.get(index)
        if points is None:
            return None
        payload = points.get(entity_id_to_point_id(doc_type, str(doc_id)))
        if payload is None:
            return None
        if parent is not None and self.codec.parent_of(payload) != parent:
            return None
        return (decoder or identity_decoder)(self.codec.to_hit(index, payload))

    async def delete(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        parent: Optional[str] = None
    ) -> bool:
        if index not in self._indices:
            return False
        return self._remove(index, doc_type, doc_id, parent)

    # Bulk operations

    async def add_batch(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        source: Dict[str, Any],
        parent: Optional[str] = None
    ) -> None:
        await self._bulk.enqueue(BulkOperation(
            action=BulkAction.INDEX, index=index, doc_type=doc_type,
            doc_id=doc_id, source=source, parent=parent
        ))

    async def batch_delete(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        parent: Optional[str] = None
    ) -> None:
        await self._bulk.enqueue(BulkOperation(
            action=BulkAction.DELETE, index=index, doc_type=doc_type,
            doc_id=doc_id, parent=parent
        ))

    async def _apply_bulk(self, operations: List[BulkOperation]) -> List[BulkFailure]:
        failures = []
        for op in operations:
            try:
                if op.action == BulkAction.INDEX:
                    self._put(op.index, op.doc_type, op.doc_id, op.source, op.parent)
                else:
                    self._remove(op.index, op.doc_type, op.doc_id, op.parent)
            except IndexingError as e:
                failures.append(BulkFailure(operation=op, error=str(e)))
        self.stats.bulk_flushes += 1
        self.stats.bulk_failures += len(failures)
        return failures

    async def flush(self) -> None:
        await self._bulk.flush()

    async def refresh(self, *indices: str) -> bool:
        await self.flush()
        missing = [index for index in indices if index not in self._indices]
        if missing:
            logger.error(f"Cannot refresh missing indices: {missing}")
            return False
        return True

    async def commit(self, *indices: str) -> bool:
        return await self.refresh(*indices)

    # Search

    def _resolve(self, indices: Sequence[str]) -> List[str]:
        return list(indices) if indices else sorted(self._indices)

    def _filter(
        self,
        query: Optional[str],
        doc_type: Optional[str],
        slice_index: int = 0,
        slice_count: int = 1
    ) -> Predicate:
        def matches(payload: Dict[str, Any]) -> bool:
            if doc_type is not None and self.codec.type_of(payload) != doc_type:
                return False
            if slice_count > 1 and not in_slice(payload[SLICE_KEY_FIELD], slice_index, slice_count):
                return False
            return self.codec.matches_text(payload, query)
        return matches

    def _select(self, index: str, predicate: Predicate) -> List[Dict[str, Any]]:
        points = self._indices.get(index, {})
        return [points[pid] for pid in sorted(points) if predicate(points[pid])]

    async def count(
        self,
        query: str = MATCH_ALL,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = ()
    ) -> int:
        predicate = self._filter(query, doc_type)
        return sum(len(self._select(index, predicate)) for index in self._resolve(indices))

    async def search(
        self,
        query: str = MATCH_ALL,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        cursor = await self.open_cursor(
            query, page_size=self.search_page_size, doc_type=doc_type, indices=indices
        )
        async for docs in iterate_pages(self, cursor, decoder):
            for doc in docs:
                yield doc

    async def search_window(
        self,
        query: str,
        start: int,
        end: int,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> List[Any]:
        check_window(start, end)
        decode = decoder or identity_decoder
        predicate = self._filter(query, doc_type)
        hits = [
            self.codec.to_hit(index, payload)
            for index in self._resolve(indices)
            for payload in self._select(index, predicate)
        ]
        return [decode(hit) for hit in hits[start:end]]

    # Structural joins

    def _check_joins(self) -> None:
        if not self.config.supports_joins:
            raise UnsupportedQuery("No join field configured: parent/child queries are unavailable")

    def _join(
        self,
        target_type: str,
        related_type: str,
        query: Optional[str],
        indices: Sequence[str],
        decoder: Optional[Decoder],
        related_key: Callable[[Dict[str, Any]], Optional[str]],
        target_key: Callable[[Dict[str, Any]], Optional[str]],
        negate: bool
    ) -> AsyncIterator[Any]:
        self._check_joins()
        return self._iter_join(
            target_type, related_type, query, indices, decoder or identity_decoder,
            related_key, target_key, negate
        )

    async def _iter_join(
        self,
        target_type: str,
        related_type: str,
        query: Optional[str],
        indices: Sequence[str],
        decode: Decoder,
        related_key: Callable[[Dict[str, Any]], Optional[str]],
        target_key: Callable[[Dict[str, Any]], Optional[str]],
        negate: bool
    ) -> AsyncIterator[Any]:
        for index in self._resolve(indices):
            related = self._select(index, self._filter(query, related_type))
            keys: Set[str] = {k for k in (related_key(p) for p in related) if k is not None}
            for payload in self._select(index, self._filter(MATCH_ALL, target_type)):
                if (target_key(payload) in keys) != negate:
                    yield decode(self.codec.to_hit(index, payload))

    def search_has_child(
        self,
        parent_type: str,
        child_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        return self._join(
            parent_type, child_type, query, indices, decoder,
            related_key=self.codec.parent_of,
            target_key=lambda p: p.get(SOURCE_ID_FIELD),
            negate=False
        )

    def search_has_no_child(
        self,
        parent_type: str,
        child_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        return self._join(
            parent_type, child_type, query, indices, decoder,
            related_key=self.codec.parent_of,
            target_key=lambda p: p.get(SOURCE_ID_FIELD),
            negate=True
        )

    def search_has_parent(
        self,
        child_type: str,
        parent_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        return self._join(
            child_type, parent_type, query, indices, decoder,
            related_key=lambda p: p.get(SOURCE_ID_FIELD),
            target_key=self.codec.parent_of,
            negate=False
        )

    def search_has_no_parent(
        self,
        child_type: str,
        parent_type: str,
        query: Optional[str] = None,
        indices: Sequence[str] = (),
        decoder: Optional[Decoder] = None
    ) -> AsyncIterator[Any]:
        return self._join(
            child_type, parent_type, query, indices, decoder,
            related_key=lambda p: p.get(SOURCE_ID_FIELD),
            target_key=self.codec.parent_of,
            negate=True
        )

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
        cursor = ScrollCursor(
            query=query,
            page_size=page_size,
            slice_index=slice_index,
            slice_count=slice_count,
            doc_type=doc_type,
            indices=self._resolve(indices),
            source_fields=source_fields
        )
        self._cursors[cursor.cursor_id] = cursor
        logger.debug(f"Opened cursor {cursor.cursor_id}: {cursor.describe()}")
        return cursor

    async def next_page(self, cursor: ScrollCursor, decoder: Optional[Decoder] = None) -> Page:
        if not cursor.is_active:
            return Page([], cursor)

        decode = decoder or identity_decoder
        predicate = self._filter(cursor.query, cursor.doc_type, cursor.slice_index, cursor.slice_count)
        index_pos, after = cursor.position or (0, None)
        docs = []

        while index_pos < len(cursor.indices) and len(docs) < cursor.page_size:
            index = cursor.indices[index_pos]
            points = self._indices.get(index)
            if points is None:
                raise CursorIOError(f"Index {index} does not exist", cursor.cursor_id)

            candidates = [
                pid for pid in sorted(points)
                if (after is None or pid > after) and predicate(points[pid])
            ]
            taken = candidates[:cursor.page_size - len(docs)]
            docs.extend(
                decode(self.codec.to_hit(index, points[pid], cursor.source_fields))
                for pid in taken
            )
            if len(taken) < len(candidates):
                after = taken[-1]
            else:
                index_pos, after = index_pos + 1, None

        position = (index_pos, after) if index_pos < len(cursor.indices) else None
        cursor.advance(position, len(docs))
        self.stats.pages_pulled += 1
        if cursor.exhausted:
            self._cursors.pop(cursor.cursor_id, None)
        return Page(docs, cursor)

    async def close_cursor(self, cursor: ScrollCursor) -> None:
        cursor.closed = True
        self._cursors.pop(cursor.cursor_id, None)
