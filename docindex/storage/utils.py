"""
Storage utilities shared by every index store backend.

Point ID derivation, slice keys, and query helpers must be identical across
backends so that slicing partitions documents the same way everywhere.
"""

import hashlib
import json
import zlib
from typing import Any, Dict, Optional, Tuple


SLICE_KEY_FIELD = "_slice_key"
SOURCE_ID_FIELD = "_id"
SLICE_KEY_SPACE = 2 ** 32
MATCH_ALL = "*"


def entity_id_to_point_id(doc_type: str, doc_id: str) -> int:
    """
    Convert a typed document id to a backend point ID using SHA256 hashing.

    Args:
        doc_type: Document type
        doc_id: Document id, unique within the type

    Returns:
        Unsigned 64-bit integer point ID
    """
    hash_digest = hashlib.sha256(f"{doc_type}:{doc_id}".encode("utf-8")).digest()
    return int.from_bytes(hash_digest[:8], byteorder="big", signed=False)


def slice_key(doc_type: str, doc_id: str) -> int:
    """Stable 32-bit key deciding which slice a document belongs to"""
    return zlib.crc32(f"{doc_type}:{doc_id}".encode("utf-8")) & 0xFFFFFFFF


def slice_bounds(slice_index: int, slice_count: int) -> Tuple[int, int]:
    """
    Half-open slice key range ``[lower, upper)`` covered by a slice.

    Ranges of ``0..slice_count-1`` are disjoint and cover the whole key space.
    """
    validate_slice(slice_index, slice_count)
    lower = slice_index * SLICE_KEY_SPACE // slice_count
    upper = (slice_index + 1) * SLICE_KEY_SPACE // slice_count
    return lower, upper


def in_slice(key: int, slice_index: int, slice_count: int) -> bool:
    lower, upper = slice_bounds(slice_index, slice_count)
    return lower <= key < upper


def validate_slice(slice_index: int, slice_count: int) -> None:
    if slice_count < 1:
        raise ValueError(f"Slice count must be >= 1, got {slice_count}")
    if not 0 <= slice_index < slice_count:
        raise ValueError(f"Slice index must be in [0, {slice_count}), got {slice_index}")


def is_match_all(query: Optional[str]) -> bool:
    return query is None or not query.strip() or query.strip() == MATCH_ALL


def validate_source(index: str, doc_id: str, source: Any) -> Dict[str, Any]:
    """
    Check that a document body can be stored.

    Raises:
        ValueError: if the id is empty or the body is not a JSON object
    """
    if not index:
        raise ValueError("Index name cannot be empty")
    if not doc_id or not str(doc_id).strip():
        raise ValueError("Document id cannot be empty")
    if not isinstance(source, dict):
        raise ValueError(f"Document source must be a mapping, got {type(source).__name__}")
    try:
        json.dumps(source)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Document source is not JSON serializable: {e}")
    return source
