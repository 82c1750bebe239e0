"""
CLI commands for index-scan.

Provides the `index-scan` command-line interface to run a parallel scan of an
index and to list the indices of a backend.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from config.loader import AppConfig, ConfigurationLoader
from docindex import __version__
from docindex.errors import ConfigError, ScanError
from docindex.models.config import GlobalSettings
from docindex.storage.qdrant_store import QdrantIndexStore
from docindex.tasks.scan_index import ScanIndexTask, ScanResult

console = Console()
logger = logging.getLogger(__name__)


def _setup_logging(settings: GlobalSettings) -> None:
    """Route log records to the terminal and, if enabled, to a log file"""
    handlers: list = [RichHandler(console=Console(stderr=True), show_path=False)]
    log_file = settings.get_log_file()
    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True
    )


def _load_config(config_file: Optional[Path], overrides: Dict[str, Any]) -> AppConfig:
    return ConfigurationLoader().load(config_file, overrides)


def _build_store(app_config: AppConfig, url: Optional[str], location: Optional[str]) -> QdrantIndexStore:
    return QdrantIndexStore(app_config.index, url=url, location=location)


def _result_table(result: ScanResult, index: str) -> Table:
    table = Table(title=f"Scan of {index}")
    table.add_column("Slice", justify="right", style="cyan")
    table.add_column("Documents", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Status")

    for s in result.slices:
        if s.error:
            status = f"[red]failed: {escape(s.error)}[/red]"
        elif s.cancelled:
            status = "[yellow]cancelled[/yellow]"
        else:
            status = "[green]done[/green]"
        table.add_row(
            str(s.slice_index), str(s.count), str(s.pages),
            str(s.skipped), str(s.retries), status
        )

    table.add_row("total", f"[bold]{result.total}[/bold]", "", "", "", f"{result.elapsed:.2f}s")
    return table


@click.group()
@click.version_option(version=__version__, prog_name="index-scan")
def main():
    """
    Index scan CLI.

    Walk document indices with sliced scroll cursors and record per-document
    progress reports.
    """
    _setup_logging(GlobalSettings())


@main.command()
@click.option(
    '--config', '-c', 'config_file',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='JSON properties file'
)
@click.option('--index', '-i', help='Index to scan (default: defaultProject)')
@click.option('--report-name', '-r', help='Progress report name; "memory:<name>" keeps it in memory')
@click.option('--scroll-size', type=int, help='Hits per page')
@click.option('--slices', '-s', type=int, help='Number of parallel slices')
@click.option('--timeout', type=float, help='Seconds before the scan is cancelled')
@click.option(
    '--fail-on-slice-error/--no-fail-on-slice-error',
    default=None,
    help='Exit with an error if any slice aborts'
)
@click.option('--url', help='Qdrant server URL (default: first configured host)')
@click.option('--location', help='Embedded Qdrant location, ":memory:" or a directory')
def scan(
    config_file: Optional[Path],
    index: Optional[str],
    report_name: Optional[str],
    scroll_size: Optional[int],
    slices: Optional[int],
    timeout: Optional[float],
    fail_on_slice_error: Optional[bool],
    url: Optional[str],
    location: Optional[str]
):
    """Scan every document of an index and record its progress."""
    try:
        app_config = _load_config(config_file, {
            "defaultProject": index,
            "reportName": report_name,
            "scrollSize": scroll_size,
            "scrollSlices": slices,
            "scanTimeout": timeout,
            "failOnSliceError": fail_on_slice_error,
        })
    except ConfigError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)

    settings = app_config.scan
    console.print(
        f"[blue]🔍 Scanning {settings.default_project} "
        f"({settings.scroll_slices} slice(s), {settings.scroll_size} hits per page)[/blue]"
    )

    try:
        result = asyncio.run(_run_scan(app_config, url, location))
    except ConfigError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)
    except ScanError as e:
        if e.result is not None:
            console.print(_result_table(e.result, settings.default_project))
        console.print(f"[red]❌ Scan failed: {escape(str(e))}[/red]")
        sys.exit(1)

    console.print(_result_table(result, settings.default_project))
    if result.timed_out:
        console.print(f"[yellow]⚠️  Scan timed out, {result.total} documents recorded[/yellow]")
    elif result.failed_slices:
        console.print(f"[yellow]⚠️  {len(result.failed_slices)} slice(s) failed[/yellow]")
    else:
        console.print(f"[green]✅ Scanned {result.total} documents[/green]")


async def _run_scan(app_config: AppConfig, url: Optional[str], location: Optional[str]) -> ScanResult:
    store = _build_store(app_config, url, location)
    try:
        task = ScanIndexTask(store, app_config.scan, doc_type=app_config.index.index_type)
        return await task.run()
    finally:
        await store.close()


@main.command()
@click.option(
    '--config', '-c', 'config_file',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='JSON properties file'
)
@click.option('--url', help='Qdrant server URL (default: first configured host)')
@click.option('--location', help='Embedded Qdrant location, ":memory:" or a directory')
def indices(config_file: Optional[Path], url: Optional[str], location: Optional[str]):
    """List the indices of the backend."""
    try:
        app_config = _load_config(config_file, {})
    except ConfigError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        sys.exit(1)

    try:
        names = asyncio.run(_list_indices(app_config, url, location))
    except Exception as e:
        console.print(f"[red]❌ Failed to list indices: {escape(str(e))}[/red]")
        sys.exit(1)

    if not names:
        console.print("[yellow]No indices found[/yellow]")
        return

    table = Table(title="Indices")
    table.add_column("Index", style="cyan")
    table.add_column("Documents", justify="right")
    for name, count in names:
        table.add_row(name, str(count))
    console.print(table)


async def _list_indices(app_config: AppConfig, url: Optional[str], location: Optional[str]):
    store = _build_store(app_config, url, location)
    try:
        return [(name, await store.count(indices=[name])) for name in await store.get_indices()]
    finally:
        await store.close()


if __name__ == "__main__":
    main()
