"""
Error types raised by the index store backends and the scan task.

A point read that finds nothing is not an error: stores return ``None``.
"""

from typing import Any, Dict, List, Optional


class DocIndexError(Exception):
    """Base class for docindex errors"""
    pass


class ConfigError(DocIndexError):
    """Missing or invalid configuration"""
    pass


class IndexingError(DocIndexError):
    """Backend rejected a mutation or the payload is malformed"""

    def __init__(
        self,
        message: str,
        index: Optional[str] = None,
        doc_id: Optional[str] = None
    ):
        super().__init__(message)
        self.index = index
        self.doc_id = doc_id


class BulkIndexingError(IndexingError):
    """One or more buffered mutations failed when the bulk buffer was flushed"""

    def __init__(self, failures: List[Any]):
        self.failures = list(failures)
        summary = "; ".join(str(f) for f in self.failures[:5])
        if len(self.failures) > 5:
            summary += f"; ... ({len(self.failures) - 5} more)"
        super().__init__(f"{len(self.failures)} bulk action(s) failed: {summary}")


class UnsupportedQuery(DocIndexError):
    """The backend cannot express the requested structural join"""
    pass


class CursorIOError(DocIndexError):
    """Failure while pulling a page from a scroll cursor"""

    def __init__(self, message: str, cursor_id: Optional[str] = None):
        super().__init__(message)
        self.cursor_id = cursor_id


class ScanError(DocIndexError):
    """At least one slice of a scan aborted while failures were configured as fatal"""

    def __init__(self, message: str, result: Any = None, errors: Optional[Dict[int, str]] = None):
        super().__init__(message)
        self.result = result
        self.errors = errors or {}
