"""
Unit tests for progress maps.

Tests in-memory and JSON file progress maps and the progress map factory.
"""

import asyncio
import json
import pytest

from docindex.errors import ConfigError
from docindex.models.config import ScanSettings
from docindex.models.storage import ExtractionStatus, ProgressRecord
from docindex.tasks.progress import (
    JsonFileProgressMap, MemoryProgressMap, ProgressMap, create_progress_map
)


class TestMemoryProgressMap:
    """Test MemoryProgressMap"""

    @pytest.mark.asyncio
    async def test_put_and_get(self):
        progress = MemoryProgressMap()
        await progress.put("/a.txt", ProgressRecord.success())

        assert isinstance(progress, ProgressMap)
        assert len(progress) == 1
        assert (await progress.get("/a.txt")).status == ExtractionStatus.SUCCESS
        assert await progress.get("/missing") is None

    @pytest.mark.asyncio
    async def test_concurrent_put_all(self):
        progress = MemoryProgressMap()

        async def writer(worker: int):
            for page in range(10):
                await progress.put_all({
                    f"/{worker}/{page}/{i}": ProgressRecord.success() for i in range(20)
                })
                await asyncio.sleep(0)

        await asyncio.gather(*(writer(w) for w in range(5)))
        assert len(progress) == 5 * 10 * 20

    @pytest.mark.asyncio
    async def test_rewrite_is_idempotent(self):
        progress = MemoryProgressMap()
        await progress.put_all({"/a": ProgressRecord.success(), "/b": ProgressRecord.success()})
        before = progress.snapshot()
        await progress.put_all({"/a": ProgressRecord.success(), "/b": ProgressRecord.success()})

        assert progress.snapshot() == before

    @pytest.mark.asyncio
    async def test_close(self):
        progress = MemoryProgressMap()
        await progress.close()
        assert progress.closed


class TestJsonFileProgressMap:
    """Test JsonFileProgressMap"""

    @pytest.mark.asyncio
    async def test_writes_on_close(self, tmp_path):
        report = tmp_path / "reports" / "scan.json"
        progress = JsonFileProgressMap(report)

        await progress.put("/a.txt", ProgressRecord.success())
        await progress.put("/b.txt", ProgressRecord.failure("unreadable", ExtractionStatus.FAILURE_UNREADABLE))
        assert not report.exists()

        await progress.close()

        data = json.loads(report.read_text(encoding="utf-8"))
        assert data == {
            "/a.txt": {"status": "SUCCESS"},
            "/b.txt": {"status": "FAILURE_UNREADABLE", "error": "unreadable"},
        }
        assert not report.with_suffix(".tmp").exists()

    @pytest.mark.asyncio
    async def test_periodic_sync(self, tmp_path):
        report = tmp_path / "scan.json"
        progress = JsonFileProgressMap(report, sync_every=10)

        await progress.put_all({f"/{i}": ProgressRecord.success() for i in range(9)})
        assert not report.exists()

        await progress.put_all({"/9": ProgressRecord.success()})
        assert report.exists()
        assert len(json.loads(report.read_text(encoding="utf-8"))) == 10

    @pytest.mark.asyncio
    async def test_loads_existing_report(self, tmp_path):
        report = tmp_path / "scan.json"
        report.write_text(json.dumps({"/old": {"status": "FAILURE_NOT_PARSED"}}), encoding="utf-8")
        progress = JsonFileProgressMap(report)

        assert (await progress.get("/old")).status == ExtractionStatus.FAILURE_NOT_PARSED

        await progress.put("/old", ProgressRecord.success())
        await progress.close()

        data = json.loads(report.read_text(encoding="utf-8"))
        assert data == {"/old": {"status": "SUCCESS"}}

    @pytest.mark.asyncio
    async def test_unchanged_records_do_not_rewrite(self, tmp_path):
        report = tmp_path / "scan.json"
        progress = JsonFileProgressMap(report, sync_every=1)

        await progress.put("/a", ProgressRecord.success())
        await progress.put("/a", ProgressRecord.success())
        await progress.close()

        assert progress.writes == 1

    @pytest.mark.asyncio
    async def test_untouched_map_writes_nothing(self, tmp_path):
        report = tmp_path / "scan.json"
        progress = JsonFileProgressMap(report)
        await progress.close()

        assert not report.exists()

    @pytest.mark.asyncio
    async def test_corrupted_report(self, tmp_path):
        report = tmp_path / "scan.json"
        report.write_text("{broken", encoding="utf-8")
        progress = JsonFileProgressMap(report)

        with pytest.raises(ConfigError):
            await progress.get("/a")

    @pytest.mark.asyncio
    async def test_put_after_close(self, tmp_path):
        progress = JsonFileProgressMap(tmp_path / "scan.json")
        await progress.close()

        with pytest.raises(RuntimeError):
            await progress.put("/a", ProgressRecord.success())

    def test_invalid_sync_every(self, tmp_path):
        with pytest.raises(ValueError):
            JsonFileProgressMap(tmp_path / "scan.json", sync_every=0)


class TestCreateProgressMap:
    """Test progress map factory"""

    def test_missing_report_name(self):
        with pytest.raises(ConfigError):
            create_progress_map(ScanSettings())

    def test_memory_report(self):
        progress = create_progress_map(ScanSettings(report_name="memory:scan-1"))

        assert isinstance(progress, MemoryProgressMap)
        assert progress.name == "scan-1"

    def test_file_report(self, tmp_path):
        progress = create_progress_map(ScanSettings(report_name="scan-1", reports_dir=tmp_path))

        assert isinstance(progress, JsonFileProgressMap)
        assert progress.path == tmp_path / "scan-1.json"

    def test_invalid_report_name(self, tmp_path):
        with pytest.raises(ConfigError):
            create_progress_map(ScanSettings(report_name="../escape", reports_dir=tmp_path))
