"""
Qdrant index store for docindex.

Maps the index store contract onto Qdrant: an index is a collection, a
document is a point whose payload holds the source, and scroll cursors are
Qdrant scrolls restricted to a slice key range. Parent/child joins run as two
filtered scrolls, the second one keyed on the ids collected by the first.
"""

import asyncio
import logging
import threading
import time
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance, FieldCondition, Filter, MatchAny, MatchText, MatchValue,
    PayloadSchemaType, PointIdsList, PointStruct, Range, TextIndexParams,
    TokenizerType, VectorParams
)

from ..errors import CursorIOError, DocIndexError, IndexingError, UnsupportedQuery
from ..models.config import IndexConfig
from ..models.entities import Decoder, identity_decoder
from ..models.storage import BulkAction, BulkFailure, BulkOperation, IndexStats
from .bulk import BulkBuffer
from .contract import check_window
from .cursor import Page, ScrollCursor, iterate_pages
from .payload import PayloadCodec
from .utils import (
    MATCH_ALL, SLICE_KEY_FIELD, SOURCE_ID_FIELD, entity_id_to_point_id,
    is_match_all, slice_bounds
)

logger = logging.getLogger(__name__)

# Points carry no embeddings; Qdrant still needs a vector per point
PLACEHOLDER_VECTOR = [1.0]


class QdrantIndexStore:
    """
    Index store backed by a Qdrant server or an embedded Qdrant instance.

    Features:
    - Collection lifecycle with shard/replica settings from ``IndexConfig``
    - Buffered bulk upserts and deletions
    - Sliced scroll cursors over payload filters
    - Parent/child joins on the configured join field
    """

    def __init__(
        self,
        config: Optional[IndexConfig] = None,
        url: Optional[str] = None,
        location: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[QdrantClient] = None,
        bulk_size: int = 1000,
        flush_interval: Optional[float] = 5.0,
        search_page_size: int = 500,
        ready_timeout: float = 30.0,
        serialize_requests: Optional[bool] = None
    ):
        """
        Initialize the Qdrant index store.

        Args:
            config: Index configuration (field names, shards, replicas, hosts)
            url: Qdrant server URL; defaults to the first configured host
            location: Embedded Qdrant location (":memory:" or a path)
            api_key: Optional API key for authentication
            timeout: Request timeout in seconds
            client: Ready-made client, overrides url/location
            bulk_size: Buffered operations that trigger a bulk flush
            flush_interval: Seconds between time based bulk flushes
            search_page_size: Page size used by lazy searches and joins
            ready_timeout: Default timeout of ``await_ready``
            serialize_requests: Run one request at a time; defaults to True
                for embedded instances, which are not thread safe
        """
        self.config = config or IndexConfig()
        self.codec = PayloadCodec(self.config)
        self.url = url or self.config.url
        self.location = location
        self.api_key = api_key
        self.timeout = timeout
        self.search_page_size = search_page_size
        self.ready_timeout = ready_timeout

        self._client = client
        if serialize_requests is None:
            serialize_requests = location is not None or client is not None
        self._request_lock = threading.Lock() if serialize_requests else None

        self._cursors: Dict[str, ScrollCursor] = {}
        self._bulk = BulkBuffer(self._apply_bulk, bulk_size, flush_interval)
        self.stats = IndexStats()

        # Performance tracking
        self._total_requests = 0
        self._total_request_time = 0.0
        self._failed_requests = 0

        logger.info(f"Initialized QdrantIndexStore: {location or self.url}")

    @property
    def client(self) -> QdrantClient:
        """Get Qdrant client instance"""
        if self._client is None:
            if self.location is not None:
                self._client = QdrantClient(location=self.location)
            else:
                self._client = QdrantClient(url=self.url, api_key=self.api_key, timeout=self.timeout)
        return self._client

    def _invoke(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if self._request_lock is None:
            return fn(*args, **kwargs)
        with self._request_lock:
            return fn(*args, **kwargs)

    async def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        """Run a blocking client method in a worker thread"""
        start_time = time.time()
        self._total_requests += 1
        try:
            return await asyncio.to_thread(self._invoke, getattr(self.client, method), *args, **kwargs)
        except Exception:
            self._failed_requests += 1
            raise
        finally:
            self._total_request_time += time.time() - start_time

    # Lifecycle

    async def _exists(self, index: str) -> bool:
        return await self._call("collection_exists", collection_name=index)

    async def await_ready(self, index: str, timeout: Optional[float] = None) -> bool:
        deadline = time.monotonic() + (self.ready_timeout if timeout is None else timeout)
        delay = 0.1
        while True:
            try:
                if await self._exists(index):
                    return True
            except Exception as e:
                logger.debug(f"Index {index} not reachable yet: {e}")
            if time.monotonic() >= deadline:
                logger.warning(f"Index {index} not ready before timeout")
                return False
            await asyncio.sleep(min(delay, max(0.0, deadline - time.monotonic())))
            delay = min(delay * 2, 2.0)

    async def create_index(self, index: str, config: Optional[IndexConfig] = None) -> bool:
        config = config or self.config
        start_time = time.time()
        try:
            if await self._exists(index):
                logger.info(f"Index {index} already exists")
                return False

            await self._call(
                "create_collection",
                collection_name=index,
                vectors_config=VectorParams(size=len(PLACEHOLDER_VECTOR), distance=Distance.DOT),
                shard_number=config.shards,
                replication_factor=config.replicas + 1
            )
            await self._create_payload_indexes(index)

            processing_time = (time.time() - start_time) * 1000
            logger.info(
                f"Created index '{index}' ({config.shards} shards, "
                f"{config.replicas} replicas) in {processing_time:.2f}ms"
            )
            return True

        except Exception as e:
            logger.error(f"Failed to create index {index}: {e}")
            return False

    async def _create_payload_indexes(self, index: str) -> None:
        """Index the payload fields used by filters"""
        schemas: Dict[str, Union[PayloadSchemaType, TextIndexParams]] = {
            self.codec.doc_type_field: PayloadSchemaType.KEYWORD,
            SOURCE_ID_FIELD: PayloadSchemaType.KEYWORD,
            SLICE_KEY_FIELD: PayloadSchemaType.INTEGER,
            self.codec.text_field: TextIndexParams(
                type="text",
                tokenizer=TokenizerType.WORD,
                min_token_len=2,
                max_token_len=40,
                lowercase=True
            ),
        }
        if self.codec.join_field:
            schemas[self.codec.join_field] = PayloadSchemaType.KEYWORD

        for field_name, schema in schemas.items():
            try:
                await self._call(
                    "create_payload_index",
                    collection_name=index,
                    field_name=field_name,
                    field_schema=schema
                )
            except Exception as e:
                logger.warning(f"Failed to create index on {index}.{field_name}: {e}")

    async def delete_index(self, index: str) -> bool:
        try:
            if not await self._exists(index):
                return False
            await self._call("delete_collection", collection_name=index)
            logger.info(f"Deleted index {index}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete index {index}: {e}")
            return False

    async def get_indices(self) -> List[str]:
        collections = await self._call("get_collections")
        return sorted(c.name for c in collections.collections)

    async def close(self) -> None:
        try:
            await self.flush()
        finally:
            for cursor in list(self._cursors.values()):
                await self.close_cursor(cursor)
            if self._client is not None:
                self._client.close()
                self._client = None
            logger.info("Closed QdrantIndexStore")

    # Point operations

    def _point(self, index: str, doc_type: str, doc_id: str, source: Any, parent: Optional[str]) -> PointStruct:
        try:
            payload = self.codec.to_payload(index, doc_type, doc_id, source, parent)
        except ValueError as e:
            raise IndexingError(str(e), index=index, doc_id=doc_id) from e
        return PointStruct(
            id=entity_id_to_point_id(doc_type, str(doc_id)),
            vector=PLACEHOLDER_VECTOR,
            payload=payload
        )

    async def add(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        source: Dict[str, Any],
        parent: Optional[str] = None
    ) -> bool:
        point = self._point(index, doc_type, doc_id, source, parent)
        try:
            await self._call("upsert", collection_name=index, points=[point], wait=True)
        except Exception as e:
            raise IndexingError(f"Failed to index {doc_type}/{doc_id} in {index}: {e}", index, doc_id) from e
        self.stats.indexed += 1
        return True

    async def _retrieve(self, index: str, doc_type: str, doc_id: str) -> Optional[Dict[str, Any]]:
        records = await self._call(
            "retrieve",
            collection_name=index,
            ids=[entity_id_to_point_id(doc_type, str(doc_id))],
            with_payload=True,
            with_vectors=False
        )
        return (records[0].payload or {}) if records else None

    async def read(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        parent: Optional[str] = None,
        decoder: Optional[Decoder] = None
    ) -> Optional[Any]:
        try:
            if not await self._exists(index):
                return None
            payload = await self._retrieve(index, doc_type, doc_id)
        except Exception as e:
            raise DocIndexError(f"Failed to read {doc_type}/{doc_id} from {index}: {e}") from e
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
        try:
            if not await self._exists(index):
                return False
            payload = await self._retrieve(index, doc_type, doc_id)
            if payload is None:
                return False
            if parent is not None and self.codec.parent_of(payload) != parent:
                return False
            await self._call(
                "delete",
                collection_name=index,
                points_selector=PointIdsList(points=[entity_id_to_point_id(doc_type, str(doc_id))]),
                wait=True
            )
        except Exception as e:
            raise IndexingError(f"Failed to delete {doc_type}/{doc_id} from {index}: {e}", index, doc_id) from e
        self.stats.deleted += 1
        return True

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

    @staticmethod
    def _group_runs(operations: List[BulkOperation]) -> Iterable[List[BulkOperation]]:
        """Split operations into consecutive runs sharing action and index"""
        run: List[BulkOperation] = []
        for op in operations:
            if run and (run[-1].action, run[-1].index) != (op.action, op.index):
                yield run
                run = []
            run.append(op)
        if run:
            yield run

    async def _routed_point_ids(self, index: str, run: List[BulkOperation]) -> List[int]:
        """Point ids of a delete run, without deletions whose parent does not match"""
        point_ids = [entity_id_to_point_id(op.doc_type, str(op.doc_id)) for op in run]
        routed = {
            point_id: op.parent
            for point_id, op in zip(point_ids, run)
            if op.parent is not None
        }
        if not routed:
            return point_ids

        records = await self._call(
            "retrieve",
            collection_name=index,
            ids=list(routed),
            with_payload=True,
            with_vectors=False
        )
        stored = {record.id: self.codec.parent_of(record.payload or {}) for record in records}
        return [
            point_id for point_id in point_ids
            if point_id not in routed or stored.get(point_id) == routed[point_id]
        ]

    async def _apply_bulk(self, operations: List[BulkOperation]) -> List[BulkFailure]:
        failures: List[BulkFailure] = []
        for run in self._group_runs(operations):
            index = run[0].index
            try:
                if run[0].action == BulkAction.INDEX:
                    points = []
                    for op in run:
                        try:
                            points.append(self._point(op.index, op.doc_type, op.doc_id, op.source, op.parent))
                        except IndexingError as e:
                            failures.append(BulkFailure(operation=op, error=str(e)))
                    if points:
                        await self._call("upsert", collection_name=index, points=points, wait=True)
                        self.stats.indexed += len(points)
                else:
                    point_ids = await self._routed_point_ids(index, run)
                    if point_ids:
                        await self._call(
                            "delete",
                            collection_name=index,
                            points_selector=PointIdsList(points=point_ids),
                            wait=True
                        )
                        self.stats.deleted += len(point_ids)
            except Exception as e:
                logger.error(f"Bulk {run[0].action.value} of {len(run)} operations on {index} failed: {e}")
                failed = {id(f.operation) for f in failures}
                failures.extend(
                    BulkFailure(operation=op, error=str(e)) for op in run if id(op) not in failed
                )
        self.stats.bulk_flushes += 1
        self.stats.bulk_failures += len(failures)
        return failures

    async def flush(self) -> None:
        await self._bulk.flush()

    async def refresh(self, *indices: str) -> bool:
        await self.flush()
        try:
            for index in indices:
                if not await self._exists(index):
                    logger.error(f"Cannot refresh missing index {index}")
                    return False
            return True
        except Exception as e:
            logger.error(f"Failed to refresh {indices}: {e}")
            return False

    async def commit(self, *indices: str) -> bool:
        # Writes are sent with wait=True, so they are durable once acknowledged
        return await self.refresh(*indices)

    # Search

    async def _resolve(self, indices: Sequence[str]) -> List[str]:
        return list(indices) if indices else await self.get_indices()

    def _build_filter(
        self,
        query: Optional[str] = None,
        doc_type: Optional[str] = None,
        slice_index: int = 0,
        slice_count: int = 1,
        must: Optional[List[FieldCondition]] = None,
        must_not: Optional[List[FieldCondition]] = None
    ) -> Optional[Filter]:
        conditions = list(must or [])
        if doc_type is not None:
            conditions.append(FieldCondition(key=self.codec.doc_type_field, match=MatchValue(value=doc_type)))
        if slice_count > 1:
            lower, upper = slice_bounds(slice_index, slice_count)
            conditions.append(FieldCondition(key=SLICE_KEY_FIELD, range=Range(gte=lower, lt=upper)))
        if not is_match_all(query):
            conditions.append(FieldCondition(key=self.codec.text_field, match=MatchText(text=query.strip())))
        if not conditions and not must_not:
            return None
        return Filter(must=conditions or None, must_not=must_not or None)

    async def _scroll_all(self, index: str, scroll_filter: Optional[Filter]) -> AsyncIterator[Dict[str, Any]]:
        """Yield the payload of every point matching ``scroll_filter``"""
        next_page_offset = None
        while True:
            points, next_page_offset = await self._call(
                "scroll",
                collection_name=index,
                scroll_filter=scroll_filter,
                limit=self.search_page_size,
                offset=next_page_offset,
                with_payload=True,
                with_vectors=False
            )
            for point in points:
                yield point.payload or {}
            if not points or next_page_offset is None:
                break

    async def count(
        self,
        query: str = MATCH_ALL,
        doc_type: Optional[str] = None,
        indices: Sequence[str] = ()
    ) -> int:
        count_filter = self._build_filter(query, doc_type)
        total = 0
        for index in await self._resolve(indices):
            result = await self._call("count", collection_name=index, count_filter=count_filter, exact=True)
            total += result.count if result else 0
        return total

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
        scroll_filter = self._build_filter(query, doc_type)
        hits: List[Dict[str, Any]] = []
        for index in await self._resolve(indices):
            async for payload in self._scroll_all(index, scroll_filter):
                hits.append(self.codec.to_hit(index, payload))
                if len(hits) >= end:
                    return [decode(hit) for hit in hits[start:end]]
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
        related_key: str,
        target_key: str,
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
        related_key: str,
        target_key: str,
        negate: bool
    ) -> AsyncIterator[Any]:
        """
        Two-phase join: collect ``related_key`` values of related documents
        matching ``query``, then scroll targets whose ``target_key`` is (or,
        negated, is not) one of them.
        """
        for index in await self._resolve(indices):
            keys: Set[str] = set()
            async for payload in self._scroll_all(index, self._build_filter(query, related_type)):
                value = payload.get(related_key)
                if value is not None:
                    keys.add(str(value))

            if not keys and not negate:
                continue
            key_condition = [FieldCondition(key=target_key, match=MatchAny(any=sorted(keys)))] if keys else None
            target_filter = self._build_filter(
                doc_type=target_type,
                must=None if negate else key_condition,
                must_not=key_condition if negate else None
            )
            async for payload in self._scroll_all(index, target_filter):
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
            related_key=self.codec.join_field, target_key=SOURCE_ID_FIELD, negate=False
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
            related_key=self.codec.join_field, target_key=SOURCE_ID_FIELD, negate=True
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
            related_key=SOURCE_ID_FIELD, target_key=self.codec.join_field, negate=False
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
            related_key=SOURCE_ID_FIELD, target_key=self.codec.join_field, negate=True
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
        try:
            resolved = await self._resolve(indices)
        except Exception as e:
            raise CursorIOError(f"Failed to list indices: {e}") from e
        cursor = ScrollCursor(
            query=query,
            page_size=page_size,
            slice_index=slice_index,
            slice_count=slice_count,
            doc_type=doc_type,
            indices=resolved,
            source_fields=source_fields
        )
        self._cursors[cursor.cursor_id] = cursor
        logger.debug(f"Opened cursor {cursor.cursor_id}: {cursor.describe()}")
        return cursor

    def _payload_selector(self, cursor: ScrollCursor) -> Union[bool, List[str]]:
        if cursor.source_fields is None:
            return True
        keys = list(cursor.source_fields) + [SOURCE_ID_FIELD, self.codec.doc_type_field]
        if self.codec.join_field:
            keys.append(self.codec.join_field)
        return keys

    async def next_page(self, cursor: ScrollCursor, decoder: Optional[Decoder] = None) -> Page:
        if not cursor.is_active:
            return Page([], cursor)

        decode = decoder or identity_decoder
        scroll_filter = self._build_filter(
            cursor.query, cursor.doc_type, cursor.slice_index, cursor.slice_count
        )
        index_pos, offset = cursor.position or (0, None)
        docs: List[Any] = []

        while index_pos < len(cursor.indices) and len(docs) < cursor.page_size:
            index = cursor.indices[index_pos]
            try:
                points, next_page_offset = await self._call(
                    "scroll",
                    collection_name=index,
                    scroll_filter=scroll_filter,
                    limit=cursor.page_size - len(docs),
                    offset=offset,
                    with_payload=self._payload_selector(cursor),
                    with_vectors=False
                )
            except Exception as e:
                raise CursorIOError(
                    f"Failed to pull page {cursor.pages_pulled + 1} from {index} "
                    f"(slice {cursor.slice_index}/{cursor.slice_count}): {e}",
                    cursor.cursor_id
                ) from e

            docs.extend(
                decode(self.codec.to_hit(index, point.payload or {}, cursor.source_fields))
                for point in points
            )
            if next_page_offset is None:
                index_pos, offset = index_pos + 1, None
            else:
                offset = next_page_offset

        position = (index_pos, offset) if index_pos < len(cursor.indices) else None
        cursor.advance(position, len(docs))
        self.stats.pages_pulled += 1
        if cursor.exhausted:
            self._cursors.pop(cursor.cursor_id, None)
        return Page(docs, cursor)

    async def close_cursor(self, cursor: ScrollCursor) -> None:
        # Qdrant scrolls hold no server-side state
        cursor.closed = True
        self._cursors.pop(cursor.cursor_id, None)

    def get_performance_metrics(self) -> Dict[str, Any]:
        """Get client performance metrics"""
        return {
            "total_requests": self._total_requests,
            "total_request_time_s": self._total_request_time,
            "failed_requests": self._failed_requests,
            "average_request_time_ms": (
                self._total_request_time / max(1, self._total_requests) * 1000
            ),
            "open_cursors": len(self._cursors),
            "url": self.location or self.url
        }
