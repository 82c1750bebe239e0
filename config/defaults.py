"""
Default configuration values for docindex.

Centralized defaults that can be overridden by a properties file, environment
variables, or command line options.
"""

from pathlib import Path
from typing import Any, Dict

# Global default settings, one section per consumer
DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    # Scan task
    "scan": {
        "scrollSize": 1000,
        "scrollSlices": 1,
        "defaultProject": "local-datashare",
        "reportName": None,
        "reportsDir": str(Path.home() / ".docindex" / "reports"),
        "scanTimeout": None,
        "failOnSliceError": False,
        "maxRetries": 3,
        "retryDelay": 1.0,
    },

    # Index backend; hosts, shards and replicas come from the node type
    "index": {
        "node-type": "local",
        "ports": "6333",
        "cluster": "datashare",
        "index-type": "Document",
        "index-join-field": "join",
        "doc-type-field": "type",
        "text-field": "content",
    },
}

# Environment variable mappings
ENV_VAR_MAPPING = {
    'DOCINDEX_SCROLL_SIZE': 'scan.scrollSize',
    'DOCINDEX_SCROLL_SLICES': 'scan.scrollSlices',
    'DOCINDEX_DEFAULT_PROJECT': 'scan.defaultProject',
    'DOCINDEX_REPORT_NAME': 'scan.reportName',
    'DOCINDEX_REPORTS_DIR': 'scan.reportsDir',
    'DOCINDEX_SCAN_TIMEOUT': 'scan.scanTimeout',
    'DOCINDEX_FAIL_ON_SLICE_ERROR': 'scan.failOnSliceError',
    'DOCINDEX_MAX_RETRIES': 'scan.maxRetries',
    'DOCINDEX_RETRY_DELAY': 'scan.retryDelay',
    'DOCINDEX_NODE_TYPE': 'index.node-type',
    'DOCINDEX_HOSTS': 'index.hosts',
    'DOCINDEX_PORTS': 'index.ports',
    'DOCINDEX_CLUSTER': 'index.cluster',
    'DOCINDEX_SHARDS': 'index.shards',
    'DOCINDEX_REPLICAS': 'index.replicas',
    'DOCINDEX_INDEX_TYPE': 'index.index-type',
    'DOCINDEX_INDEX_JOIN_FIELD': 'index.index-join-field',
    'DOCINDEX_DOC_TYPE_FIELD': 'index.doc-type-field',
    'DOCINDEX_TEXT_FIELD': 'index.text-field',
}


def get_default_settings() -> Dict[str, Dict[str, Any]]:
    """Get a mutable copy of the default settings"""
    return {section: dict(values) for section, values in DEFAULT_SETTINGS.items()}
