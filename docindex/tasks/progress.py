"""
Progress maps: durable per-document outcome records of a scan.

A progress map is keyed by document path and holds one ``ProgressRecord``
per path. Slices of a scan write to the same map concurrently, so every
implementation guards its records with a lock.
"""

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Dict, Mapping, Optional, Protocol, runtime_checkable

import aiofiles

from ..errors import ConfigError
from ..models.config import ScanSettings
from ..models.storage import ProgressRecord

logger = logging.getLogger(__name__)

MEMORY_PREFIX = "memory:"


@runtime_checkable
class ProgressMap(Protocol):
    """Concurrent map of document path to processing outcome"""

    async def put(self, key: str, record: ProgressRecord) -> None:
        ...

    async def put_all(self, records: Mapping[str, ProgressRecord]) -> None:
        """Write several records at once; no write is lost under concurrency"""
        ...

    async def get(self, key: str) -> Optional[ProgressRecord]:
        ...

    async def close(self) -> None:
        ...

    def __len__(self) -> int:
        ...


class MemoryProgressMap:
    """Progress map held in process memory"""

    def __init__(self, name: str = "memory"):
        self.name = name
        self._records: Dict[str, ProgressRecord] = {}
        self._lock = threading.Lock()
        self.closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    async def put(self, key: str, record: ProgressRecord) -> None:
        with self._lock:
            self._records[key] = record

    async def put_all(self, records: Mapping[str, ProgressRecord]) -> None:
        with self._lock:
            self._records.update(records)

    async def get(self, key: str) -> Optional[ProgressRecord]:
        with self._lock:
            return self._records.get(key)

    def snapshot(self) -> Dict[str, ProgressRecord]:
        with self._lock:
            return dict(self._records)

    async def close(self) -> None:
        self.closed = True


class JsonFileProgressMap:
    """
    Progress map persisted as a JSON report file.

    Records are loaded from an existing report on first use, kept in memory,
    and written back atomically (temporary file then rename) every
    ``sync_every`` changed records and on ``close()``.
    """

    def __init__(self, path: Path, sync_every: int = 1000):
        """
        Initialize JSON file progress map.

        Args:
            path: Report file location
            sync_every: Changed records between two writes of the report
        """
        if sync_every < 1:
            raise ValueError(f"sync_every must be >= 1, got {sync_every}")
        self.path = Path(path)
        self.sync_every = sync_every

        self._records: Dict[str, ProgressRecord] = {}
        self._lock = asyncio.Lock()
        self._loaded = False
        self._dirty = 0
        self.closed = False
        self.writes = 0

    def __len__(self) -> int:
        return len(self._records)

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.path.exists():
            return

        try:
            async with aiofiles.open(self.path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
            self._records = {
                key: ProgressRecord.from_dict(value) for key, value in data.items()
            }
            logger.info(f"Loaded {len(self._records)} progress records from {self.path}")
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Corrupted progress report {self.path}: {e}") from e

    async def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {key: record.to_dict() for key, record in self._records.items()}

        temp_file = self.path.with_suffix('.tmp')
        async with aiofiles.open(temp_file, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(data, indent=2))
        temp_file.replace(self.path)

        self._dirty = 0
        self.writes += 1
        logger.debug(f"Saved {len(data)} progress records to {self.path}")

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError(f"Progress map {self.path} is closed")

    async def put(self, key: str, record: ProgressRecord) -> None:
        await self.put_all({key: record})

    async def put_all(self, records: Mapping[str, ProgressRecord]) -> None:
        self._check_open()
        async with self._lock:
            await self._ensure_loaded()
            for key, record in records.items():
                if self._records.get(key) != record:
                    self._records[key] = record
                    self._dirty += 1
            if self._dirty >= self.sync_every:
                await self._save()

    async def get(self, key: str) -> Optional[ProgressRecord]:
        async with self._lock:
            await self._ensure_loaded()
            return self._records.get(key)

    async def close(self) -> None:
        if self.closed:
            return
        async with self._lock:
            if self._dirty or (self._loaded and not self.path.exists()):
                await self._save()
            self.closed = True
        logger.info(f"Closed progress map {self.path} ({len(self._records)} records)")


def create_progress_map(settings: ScanSettings) -> ProgressMap:
    """
    Build the progress map named by ``settings.report_name``.

    Names starting with ``memory:`` give an in-memory map; any other name is
    a JSON report under ``settings.reports_dir``.

    Raises:
        ConfigError: if no report name is configured
    """
    name = settings.report_name
    if not name:
        raise ConfigError("reportName is required to record scan progress")

    if name.startswith(MEMORY_PREFIX):
        return MemoryProgressMap(name[len(MEMORY_PREFIX):] or "memory")

    if "/" in name or "\\" in name or name in (".", ".."):
        raise ConfigError(f"Invalid report name: {name}")
    return JsonFileProgressMap(Path(settings.reports_dir) / f"{name}.json")
