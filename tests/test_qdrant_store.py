"""
Tests for QdrantIndexStore.

Runs the index store contract against an embedded in-memory Qdrant instance
and covers error mapping with mocked clients.
"""

import pytest
from unittest.mock import MagicMock

from qdrant_client.http.exceptions import ResponseHandlingException

from docindex.errors import BulkIndexingError, CursorIOError, IndexingError, UnsupportedQuery
from docindex.models.config import IndexConfig, NodeType
from docindex.models.entities import Document
from docindex.storage.contract import IndexStore, read_entity
from docindex.storage.cursor import iterate_pages
from docindex.storage.qdrant_store import QdrantIndexStore

INDEX = "test-index"


@pytest.fixture
def store():
    """Create store over an in-memory Qdrant instance"""
    return QdrantIndexStore(location=":memory:", bulk_size=50, flush_interval=None, search_page_size=16)


async def populate(store, count: int, index: str = INDEX):
    await store.create_index(index)
    for i in range(count):
        await store.add_batch(index, "Document", f"doc-{i}", {"path": f"/data/{i}.txt", "content": f"text {i}"})
    await store.refresh(index)


async def collect(iterator):
    return [item async for item in iterator]


class TestQdrantLifecycle:
    """Test collection lifecycle"""

    def test_implements_contract(self, store):
        assert isinstance(store, IndexStore)

    def test_url_from_config(self):
        store = QdrantIndexStore(IndexConfig.build(NodeType.REMOTE))
        assert store.url == "http://kc.icij.org:6333"
        assert store._request_lock is None

    @pytest.mark.asyncio
    async def test_create_and_delete_index(self, store):
        assert await store.create_index(INDEX) is True
        assert await store.create_index(INDEX) is False
        assert await store.get_indices() == [INDEX]
        assert await store.await_ready(INDEX, timeout=1.0) is True

        assert await store.delete_index(INDEX) is True
        assert await store.delete_index(INDEX) is False

    @pytest.mark.asyncio
    async def test_await_ready_timeout(self, store):
        assert await store.await_ready("missing", timeout=0.2) is False

    @pytest.mark.asyncio
    async def test_create_index_failure_returns_false(self):
        client = MagicMock()
        client.collection_exists.return_value = False
        client.create_collection.side_effect = ResponseHandlingException(Exception("unreachable"))
        store = QdrantIndexStore(client=client)

        assert await store.create_index(INDEX) is False

    @pytest.mark.asyncio
    async def test_create_index_uses_shards_and_replicas(self):
        client = MagicMock()
        client.collection_exists.return_value = False
        store = QdrantIndexStore(IndexConfig.build(NodeType.REMOTE), client=client)

        assert await store.create_index(INDEX) is True

        kwargs = client.create_collection.call_args.kwargs
        assert kwargs["shard_number"] == 8
        assert kwargs["replication_factor"] == 3
        indexed_fields = {c.kwargs["field_name"] for c in client.create_payload_index.call_args_list}
        assert {"type", "join", "_id", "_slice_key", "content"} <= indexed_fields


class TestQdrantPointOperations:
    """Test point operations"""

    @pytest.mark.asyncio
    async def test_add_read_delete(self, store):
        await store.create_index(INDEX)
        assert await store.add(INDEX, "Document", "doc-1", {"path": "/a.txt"}) is True

        hit = await store.read(INDEX, "Document", "doc-1")
        assert hit["path"] == "/a.txt"
        assert hit["_id"] == "doc-1"
        assert hit["_index"] == INDEX
        assert "_slice_key" not in hit

        assert await store.delete(INDEX, "Document", "doc-1") is True
        assert await store.delete(INDEX, "Document", "doc-1") is False
        assert await store.read(INDEX, "Document", "doc-1") is None

    @pytest.mark.asyncio
    async def test_read_missing_index(self, store):
        assert await store.read("missing", "Document", "doc-1") is None

    @pytest.mark.asyncio
    async def test_read_entity(self, store):
        await store.create_index(INDEX)
        await store.add(INDEX, "Document", "doc-1", {"path": "/a.txt", "content": "hello"})

        doc = await read_entity(store, INDEX, Document, "doc-1")
        assert doc.path == "/a.txt"

    @pytest.mark.asyncio
    async def test_parent_routing(self, store):
        await store.create_index(INDEX)
        await store.add(INDEX, "NamedEntity", "C1", {"mention": "ACME"}, parent="P1")

        assert await store.read(INDEX, "NamedEntity", "C1", parent="P1") is not None
        assert await store.read(INDEX, "NamedEntity", "C1", parent="P2") is None

    @pytest.mark.asyncio
    async def test_add_to_missing_index(self, store):
        with pytest.raises(IndexingError):
            await store.add("missing", "Document", "doc-1", {"path": "/a"})

    @pytest.mark.asyncio
    async def test_malformed_payload(self, store):
        await store.create_index(INDEX)
        with pytest.raises(IndexingError):
            await store.add(INDEX, "Document", "doc-1", ["not", "a", "mapping"])

    @pytest.mark.asyncio
    async def test_bulk_failures(self, store):
        await store.create_index(INDEX)
        await store.add_batch(INDEX, "Document", "ok", {"path": "/ok"})
        await store.add_batch("missing", "Document", "lost", {"path": "/lost"})

        with pytest.raises(BulkIndexingError) as exc_info:
            await store.flush()

        assert [f.operation.doc_id for f in exc_info.value.failures] == ["lost"]
        assert await store.read(INDEX, "Document", "ok") is not None

    @pytest.mark.asyncio
    async def test_batch_delete_respects_parent(self, store):
        await store.create_index(INDEX)
        await store.add(INDEX, "NamedEntity", "C1", {"mention": "ACME"}, parent="P1")
        await store.add(INDEX, "NamedEntity", "C2", {"mention": "Globex"}, parent="P1")

        await store.batch_delete(INDEX, "NamedEntity", "C1", parent="P2")
        await store.batch_delete(INDEX, "NamedEntity", "C2", parent="P1")
        await store.flush()

        assert await store.read(INDEX, "NamedEntity", "C1") is not None
        assert await store.read(INDEX, "NamedEntity", "C2") is None
        assert store.stats.deleted == 1

    @pytest.mark.asyncio
    async def test_performance_metrics(self, store):
        await populate(store, 3)
        before = store.get_performance_metrics()
        await store.read(INDEX, "Document", "doc-0")
        with pytest.raises(IndexingError):
            await store.add("missing", "Document", "doc-1", {"path": "/a"})

        metrics = store.get_performance_metrics()
        assert metrics["total_requests"] > before["total_requests"]
        assert metrics["failed_requests"] == before["failed_requests"] + 1
        assert metrics["average_request_time_ms"] >= 0
        assert metrics["url"] == ":memory:"


class TestQdrantSearch:
    """Test search and cursors"""

    @pytest.mark.asyncio
    async def test_count_and_search(self, store):
        await populate(store, 40)

        assert await store.count(indices=[INDEX]) == 40
        hits = await collect(store.search(doc_type="Document", indices=[INDEX]))
        assert len(hits) == 40

    @pytest.mark.asyncio
    async def test_search_window(self, store):
        await populate(store, 30)

        all_hits = await store.search_window("*", 0, 30, indices=[INDEX])
        assert await store.search_window("*", 5, 9, indices=[INDEX]) == all_hits[5:9]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slice_count", [1, 3])
    async def test_slices_partition_match_set(self, store, slice_count):
        await populate(store, 90)
        seen = []
        for slice_index in range(slice_count):
            cursor = await store.open_cursor(
                page_size=20, slice_index=slice_index, slice_count=slice_count,
                doc_type="Document", indices=[INDEX], source_fields=["path"]
            )
            async for docs in iterate_pages(store, cursor):
                seen.extend(hit["_id"] for hit in docs)
                assert all("content" not in hit for hit in docs)

        assert sorted(seen) == sorted(f"doc-{i}" for i in range(90))

    @pytest.mark.asyncio
    async def test_page_pull_failure_raises_cursor_error(self):
        client = MagicMock()
        client.scroll.side_effect = ResponseHandlingException(Exception("timeout"))
        store = QdrantIndexStore(client=client)
        cursor = await store.open_cursor(indices=[INDEX])

        with pytest.raises(CursorIOError):
            await store.next_page(cursor)

        # A failed pull leaves the cursor where it was
        assert cursor.position is None
        assert cursor.pages_pulled == 0
        assert cursor.is_active


class TestQdrantJoins:
    """Test parent/child queries"""

    @pytest.mark.asyncio
    async def test_joins(self, store):
        await store.create_index(INDEX)
        await store.add(INDEX, "Document", "P1", {"path": "/p1", "content": "parent one"})
        await store.add(INDEX, "Document", "P2", {"path": "/p2", "content": "parent two"})
        await store.add(INDEX, "NamedEntity", "C1", {"content": "acme"}, parent="P1")
        await store.add(INDEX, "NamedEntity", "C2", {"content": "globex"}, parent="P1")

        has_child = await collect(store.search_has_child("Document", "NamedEntity", indices=[INDEX]))
        has_no_child = await collect(store.search_has_no_child("Document", "NamedEntity", indices=[INDEX]))
        has_parent = await collect(store.search_has_parent("NamedEntity", "Document", indices=[INDEX]))
        has_no_parent = await collect(store.search_has_no_parent("NamedEntity", "Document", indices=[INDEX]))

        assert [h["_id"] for h in has_child] == ["P1"]
        assert [h["_id"] for h in has_no_child] == ["P2"]
        assert {h["_id"] for h in has_parent} == {"C1", "C2"}
        assert has_no_parent == []

    @pytest.mark.asyncio
    async def test_joins_with_query(self, store):
        await store.create_index(INDEX)
        await store.add(INDEX, "Document", "P1", {"path": "/p1", "content": "parent one"})
        await store.add(INDEX, "Document", "P2", {"path": "/p2", "content": "parent two"})
        await store.add(INDEX, "NamedEntity", "C1", {"content": "acme"}, parent="P1")
        await store.add(INDEX, "NamedEntity", "C2", {"content": "globex"}, parent="P1")

        has_child = await collect(store.search_has_child("Document", "NamedEntity", "acme", indices=[INDEX]))
        has_no_child = await collect(store.search_has_no_child("Document", "NamedEntity", "acme", indices=[INDEX]))

        assert [h["_id"] for h in has_child] == ["P1"]
        assert [h["_id"] for h in has_no_child] == ["P2"]

    def test_joins_unsupported_without_join_field(self):
        store = QdrantIndexStore(IndexConfig(join_field=""), location=":memory:")
        with pytest.raises(UnsupportedQuery):
            store.search_has_parent("NamedEntity", "Document")
