"""
Storage models for index mutations and scan progress.

Covers buffered bulk actions, their failures, and the per-document progress
records written by the scan task.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class ExtractionStatus(Enum):
    """Processing outcome of a document"""
    SUCCESS = "SUCCESS"
    FAILURE_NOT_FOUND = "FAILURE_NOT_FOUND"
    FAILURE_UNREADABLE = "FAILURE_UNREADABLE"
    FAILURE_NOT_DECRYPTED = "FAILURE_NOT_DECRYPTED"
    FAILURE_NOT_PARSED = "FAILURE_NOT_PARSED"
    FAILURE_UNKNOWN = "FAILURE_UNKNOWN"

    @property
    def is_failure(self) -> bool:
        return self is not ExtractionStatus.SUCCESS


class ProgressRecord(BaseModel):
    """Outcome recorded for one document path"""
    model_config = ConfigDict(frozen=True)

    status: ExtractionStatus
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "ProgressRecord":
        return cls(status=ExtractionStatus.SUCCESS)

    @classmethod
    def failure(
        cls,
        error: str,
        status: ExtractionStatus = ExtractionStatus.FAILURE_UNKNOWN
    ) -> "ProgressRecord":
        return cls(status=status, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressRecord":
        return cls.model_validate(data)


class BulkAction(Enum):
    """Kind of buffered mutation"""
    INDEX = "index"
    DELETE = "delete"


@dataclass
class BulkOperation:
    """One buffered mutation"""
    action: BulkAction
    index: str
    doc_type: str
    doc_id: str
    source: Optional[Dict[str, Any]] = None
    parent: Optional[str] = None
    queued_at: datetime = field(default_factory=datetime.now)


@dataclass
class BulkFailure:
    """A buffered mutation that the backend rejected"""
    operation: BulkOperation
    error: str

    def __str__(self) -> str:
        op = self.operation
        return f"{op.action.value} {op.index}/{op.doc_type}/{op.doc_id}: {self.error}"


class IndexStats(BaseModel):
    """Counters kept by a store instance"""
    indexed: int = 0
    deleted: int = 0
    bulk_flushes: int = 0
    bulk_failures: int = 0
    pages_pulled: int = 0
    started_at: datetime = Field(default_factory=datetime.now)
