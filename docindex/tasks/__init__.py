"""
Long running tasks over index stores
"""

from .progress import JsonFileProgressMap, MemoryProgressMap, ProgressMap, create_progress_map
from .scan_index import RetryPolicy, ScanIndexTask, ScanResult, SliceResult

__all__ = [
    "ProgressMap",
    "MemoryProgressMap",
    "JsonFileProgressMap",
    "create_progress_map",
    "RetryPolicy",
    "ScanIndexTask",
    "ScanResult",
    "SliceResult",
]
