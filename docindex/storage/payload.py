"""
Stored payload layout shared by the index store backends.

A stored payload is the document source plus bookkeeping keys: the document
type under ``doc_type_field``, the parent id under ``join_field``, the document
id under ``_id`` and the slice key under ``_slice_key``. Hits handed back to
callers drop the slice key and gain ``_index`` and ``_parent``.
"""

from typing import Any, Dict, Optional, Sequence

from ..models.config import IndexConfig
from ..models.entities import HIT_INDEX, HIT_PARENT
from .cursor import project
from .utils import SLICE_KEY_FIELD, SOURCE_ID_FIELD, is_match_all, slice_key, validate_source


class PayloadCodec:
    """Builds stored payloads and caller-facing hits for one index configuration"""

    def __init__(self, config: IndexConfig):
        self.config = config

    @property
    def doc_type_field(self) -> str:
        return self.config.doc_type_field

    @property
    def join_field(self) -> str:
        return self.config.join_field

    @property
    def text_field(self) -> str:
        return self.config.text_field

    def to_payload(
        self,
        index: str,
        doc_type: str,
        doc_id: str,
        source: Any,
        parent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Build the stored payload of a document.

        Raises:
            ValueError: if the document cannot be stored
        """
        validate_source(index, doc_id, source)
        payload = {
            k: v for k, v in source.items()
            if k not in (SLICE_KEY_FIELD, SOURCE_ID_FIELD, HIT_INDEX, HIT_PARENT)
        }
        payload[self.doc_type_field] = doc_type
        if parent is not None and self.join_field:
            payload[self.join_field] = parent
        elif self.join_field:
            payload.pop(self.join_field, None)
        payload[SOURCE_ID_FIELD] = str(doc_id)
        payload[SLICE_KEY_FIELD] = slice_key(doc_type, str(doc_id))
        return payload

    def to_hit(
        self,
        index: str,
        payload: Dict[str, Any],
        source_fields: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        hit = {k: v for k, v in payload.items() if k != SLICE_KEY_FIELD}
        hit[HIT_INDEX] = index
        hit[HIT_PARENT] = self.parent_of(payload)
        return project(hit, source_fields)

    def parent_of(self, payload: Dict[str, Any]) -> Optional[str]:
        if not self.join_field:
            return None
        return payload.get(self.join_field)

    def type_of(self, payload: Dict[str, Any]) -> Optional[str]:
        return payload.get(self.doc_type_field)

    def matches_text(self, payload: Dict[str, Any], query: Optional[str]) -> bool:
        """Substring match of ``query`` on the text field; match-all queries always match"""
        if is_match_all(query):
            return True
        value = payload.get(self.text_field)
        return isinstance(value, str) and query.strip() in value
