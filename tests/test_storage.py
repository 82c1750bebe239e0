"""
Unit tests for storage models and errors.

Tests progress records, bulk failures, index stats and error types.
"""

import pytest
from pydantic import ValidationError

from docindex.errors import (
    BulkIndexingError, CursorIOError, DocIndexError, IndexingError, ScanError
)
from docindex.models.storage import (
    BulkAction, BulkFailure, BulkOperation, ExtractionStatus, IndexStats, ProgressRecord
)


class TestProgressRecord:
    """Test ProgressRecord model"""

    def test_success(self):
        record = ProgressRecord.success()

        assert record.status == ExtractionStatus.SUCCESS
        assert record.error is None
        assert not record.status.is_failure
        assert record.to_dict() == {"status": "SUCCESS"}

    def test_failure(self):
        record = ProgressRecord.failure("cannot decrypt", ExtractionStatus.FAILURE_NOT_DECRYPTED)

        assert record.status.is_failure
        assert record.to_dict() == {"status": "FAILURE_NOT_DECRYPTED", "error": "cannot decrypt"}

    def test_from_dict(self):
        record = ProgressRecord.from_dict({"status": "FAILURE_UNKNOWN", "error": "x"})
        assert record == ProgressRecord.failure("x")

    def test_equal_records(self):
        assert ProgressRecord.success() == ProgressRecord.success()

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            ProgressRecord.from_dict({"status": "DONE"})


class TestBulkModels:
    """Test bulk operation models"""

    def test_failure_str(self):
        op = BulkOperation(action=BulkAction.DELETE, index="idx", doc_type="Document", doc_id="7")
        failure = BulkFailure(operation=op, error="missing index")

        assert str(failure) == "delete idx/Document/7: missing index"

    def test_index_stats_defaults(self):
        stats = IndexStats()
        assert stats.indexed == 0
        assert stats.bulk_failures == 0


class TestErrors:
    """Test error hierarchy"""

    def test_hierarchy(self):
        assert issubclass(BulkIndexingError, IndexingError)
        assert issubclass(IndexingError, DocIndexError)
        assert issubclass(CursorIOError, DocIndexError)
        assert not issubclass(IndexingError, IndexError)

    def test_bulk_error_summary(self):
        failures = [
            BulkFailure(
                operation=BulkOperation(action=BulkAction.INDEX, index="idx", doc_type="Document", doc_id=str(i)),
                error="rejected"
            )
            for i in range(8)
        ]
        error = BulkIndexingError(failures)

        assert len(error.failures) == 8
        assert str(error).startswith("8 bulk action(s) failed")
        assert "(3 more)" in str(error)

    def test_scan_error_carries_errors(self):
        error = ScanError("failed", result="partial", errors={1: "boom"})
        assert error.result == "partial"
        assert error.errors == {1: "boom"}

    def test_cursor_error_id(self):
        assert CursorIOError("pull failed", "abc").cursor_id == "abc"
