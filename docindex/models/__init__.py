"""
Core data models for docindex

Pydantic models for entities, configuration, and storage.
"""

from .entities import Entity, EntityRef, Document, Decoder, decode_as
from .config import IndexConfig, IndexProperty, NodeType, ScanSettings, GlobalSettings
from .storage import (
    BulkAction, BulkFailure, BulkOperation, ExtractionStatus, IndexStats, ProgressRecord
)

__all__ = [
    # Entities
    "Entity",
    "EntityRef",
    "Document",
    "Decoder",
    "decode_as",

    # Configuration
    "IndexConfig",
    "IndexProperty",
    "NodeType",
    "ScanSettings",
    "GlobalSettings",

    # Storage
    "BulkAction",
    "BulkFailure",
    "BulkOperation",
    "ExtractionStatus",
    "IndexStats",
    "ProgressRecord",
]
