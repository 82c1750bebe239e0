"""
Unit tests for CLI functionality.

Tests the index-scan command-line interface commands: scan, indices.
"""

import asyncio
import json
import pytest
from unittest.mock import patch
from click.testing import CliRunner

from config.defaults import ENV_VAR_MAPPING
from docindex.errors import CursorIOError
from docindex.storage.memory_store import MemoryIndexStore
from index_scan.cli import main

INDEX = "local-datashare"


class BrokenStore(MemoryIndexStore):
    """Memory store whose page pulls always fail"""

    async def next_page(self, cursor, decoder=None):
        raise CursorIOError("backend unreachable", cursor.cursor_id)


async def populate(store, count: int, index: str = INDEX, doc_type: str = "Document"):
    await store.create_index(index)
    for i in range(count):
        await store.add(index, doc_type, f"doc-{i}", {"path": f"/data/{i}.txt"})
    return store


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep DOCINDEX_* variables of the host out of the tests"""
    for env_var in ENV_VAR_MAPPING:
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.delenv("DOCINDEX_LOG_TO_FILE", raising=False)
    monkeypatch.delenv("DOCINDEX_LOG_LEVEL", raising=False)


@pytest.fixture
def runner():
    return CliRunner()


class TestMainGroup:
    """Test the command group"""

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])

        assert result.exit_code == 0
        assert "scan" in result.output
        assert "indices" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.output


class TestScanCommand:
    """Test the scan command"""

    def test_scan_success(self, runner):
        store = asyncio.run(populate(MemoryIndexStore(), 25))

        with patch("index_scan.cli._build_store", return_value=store) as mock_build:
            result = runner.invoke(main, [
                "scan", "--report-name", "memory:cli", "--slices", "2", "--scroll-size", "10"
            ])

        assert result.exit_code == 0, result.output
        assert "Scanned 25 documents" in result.output
        app_config = mock_build.call_args.args[0]
        assert app_config.scan.scroll_slices == 2
        assert app_config.scan.scroll_size == 10

    def test_scan_with_config_file(self, runner, tmp_path):
        store = asyncio.run(populate(MemoryIndexStore(), 5, index="project-a"))
        config_file = tmp_path / "scan.json"
        config_file.write_text(json.dumps({
            "defaultProject": "project-a",
            "reportName": "report",
            "reportsDir": str(tmp_path / "reports"),
        }), encoding="utf-8")

        with patch("index_scan.cli._build_store", return_value=store):
            result = runner.invoke(main, ["scan", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        report = json.loads((tmp_path / "reports" / "report.json").read_text(encoding="utf-8"))
        assert len(report) == 5

    def test_scan_uses_configured_index_type(self, runner, tmp_path):
        store = asyncio.run(populate(MemoryIndexStore(), 5, doc_type="Doc"))
        config_file = tmp_path / "scan.json"
        config_file.write_text(json.dumps({"index-type": "Doc"}), encoding="utf-8")

        with patch("index_scan.cli._build_store", return_value=store):
            result = runner.invoke(main, [
                "scan", "--config", str(config_file), "--report-name", "memory:cli"
            ])

        assert result.exit_code == 0, result.output
        assert "Scanned 5 documents" in result.output

    def test_scan_requires_report_name(self, runner):
        with patch("index_scan.cli._build_store", return_value=MemoryIndexStore()):
            result = runner.invoke(main, ["scan"])

        assert result.exit_code == 1
        assert "reportName" in result.output

    def test_scan_invalid_option(self, runner):
        result = runner.invoke(main, ["scan", "--report-name", "memory:cli", "--scroll-size", "0"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_scan_fail_on_slice_error(self, runner, tmp_path):
        store = asyncio.run(populate(BrokenStore(), 5))
        config_file = tmp_path / "scan.json"
        config_file.write_text(json.dumps({"maxRetries": 0}), encoding="utf-8")

        with patch("index_scan.cli._build_store", return_value=store):
            result = runner.invoke(main, [
                "scan", "--config", str(config_file),
                "--report-name", "memory:cli", "--fail-on-slice-error"
            ])

        assert result.exit_code == 1
        assert "Scan failed" in result.output

    def test_scan_partial_failure_without_flag(self, runner, tmp_path):
        store = asyncio.run(populate(BrokenStore(), 5))
        config_file = tmp_path / "scan.json"
        config_file.write_text(json.dumps({"maxRetries": 0}), encoding="utf-8")

        with patch("index_scan.cli._build_store", return_value=store):
            result = runner.invoke(main, [
                "scan", "--config", str(config_file), "--report-name", "memory:cli"
            ])

        assert result.exit_code == 0
        assert "slice(s) failed" in result.output


class TestIndicesCommand:
    """Test the indices command"""

    def test_list_indices(self, runner):
        store = MemoryIndexStore()
        asyncio.run(populate(store, 3))
        asyncio.run(populate(store, 2, index="project-b"))

        with patch("index_scan.cli._build_store", return_value=store):
            result = runner.invoke(main, ["indices"])

        assert result.exit_code == 0, result.output
        assert INDEX in result.output
        assert "project-b" in result.output

    def test_no_indices(self, runner):
        with patch("index_scan.cli._build_store", return_value=MemoryIndexStore()):
            result = runner.invoke(main, ["indices"])

        assert result.exit_code == 0
        assert "No indices found" in result.output

    def test_backend_failure(self, runner):
        with patch("index_scan.cli._build_store", side_effect=RuntimeError("connection refused")):
            result = runner.invoke(main, ["indices"])

        assert result.exit_code == 1
        assert "connection refused" in result.output
