"""
Index stores for docindex

Backend-neutral contract, scroll cursors, bulk buffering, and the Qdrant and
in-memory backends.
"""

from .contract import (
    IndexStore, MAX_RESULT_WINDOW, add_entity, add_entity_batch, read_entity,
    delete_entity, batch_delete_entity
)
from .cursor import Page, ScrollCursor, iterate_pages
from .bulk import BulkBuffer
from .memory_store import MemoryIndexStore
from .qdrant_store import QdrantIndexStore
from .utils import MATCH_ALL, entity_id_to_point_id, slice_bounds, slice_key

__all__ = [
    "IndexStore",
    "MAX_RESULT_WINDOW",
    "add_entity",
    "add_entity_batch",
    "read_entity",
    "delete_entity",
    "batch_delete_entity",
    "Page",
    "ScrollCursor",
    "iterate_pages",
    "BulkBuffer",
    "MemoryIndexStore",
    "QdrantIndexStore",
    "MATCH_ALL",
    "entity_id_to_point_id",
    "slice_bounds",
    "slice_key",
]
