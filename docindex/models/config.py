"""
Configuration models for docindex.

Handles index backend settings, scan task settings, and process-wide settings.
Property names follow the platform conventions: scan options are camelCase
(``scrollSize``), index options are lower-case-hyphenated (``node-type``).
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_PORT = 6333


class NodeType(Enum):
    """Index node deployment type"""
    LOCAL = "local"
    REMOTE = "remote"

    @property
    def default_host(self) -> str:
        return NODE_TYPE_DEFAULTS[self]["host"]

    @property
    def default_shards(self) -> int:
        return NODE_TYPE_DEFAULTS[self]["shards"]

    @property
    def default_replicas(self) -> int:
        return NODE_TYPE_DEFAULTS[self]["replicas"]

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["NodeType"]:
        """Parse a node type name, case-insensitively; None if unknown or empty"""
        if not value:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


NODE_TYPE_DEFAULTS: Dict[NodeType, Dict[str, Any]] = {
    NodeType.LOCAL: {"host": "localhost", "shards": 1, "replicas": 0},
    NodeType.REMOTE: {"host": "kc.icij.org", "shards": 8, "replicas": 2},
}


class IndexProperty(Enum):
    """Index backend property keys"""
    NODE_TYPE = "node_type"
    HOSTS = "hosts"
    PORTS = "ports"
    CLUSTER = "cluster"
    SHARDS = "shards"
    REPLICAS = "replicas"
    INDEX_TYPE = "index_type"
    INDEX_JOIN_FIELD = "join_field"
    DOC_TYPE_FIELD = "doc_type_field"
    TEXT_FIELD = "text_field"

    @property
    def property_name(self) -> str:
        """Lower-case-hyphenated property name, e.g. ``index-join-field``"""
        return self.name.lower().replace("_", "-")

    @classmethod
    def names(cls) -> List[str]:
        return [p.property_name for p in cls]


def _split_comma(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class IndexConfig(BaseModel):
    """
    Index backend configuration.

    ``node_type`` selects defaults for hosts, shards and replicas; each of them
    can be overridden. Immutable once built.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True
    )

    node_type: NodeType = Field(default=NodeType.LOCAL, alias="node-type")
    hosts: List[str] = Field(default_factory=list)
    ports: List[int] = Field(default_factory=lambda: [DEFAULT_PORT])
    cluster: str = "datashare"
    shards: int = Field(default=1, ge=1)
    replicas: int = Field(default=0, ge=0)
    index_type: str = Field(default="Document", alias="index-type")
    join_field: str = Field(default="join", alias="index-join-field")
    doc_type_field: str = Field(default="type", alias="doc-type-field")
    text_field: str = Field(default="content", alias="text-field")

    @model_validator(mode="before")
    @classmethod
    def apply_node_type_defaults(cls, data: Any) -> Any:
        """Fill hosts, shards and replicas from the node type when not given"""
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if v is not None}

        raw_type = data.get("node-type", data.get("node_type", NodeType.LOCAL))
        if isinstance(raw_type, NodeType):
            node_type = raw_type
        else:
            node_type = NodeType.parse(str(raw_type))
            if node_type is None:
                raise ValueError(f"Unknown node type: {raw_type}")
        data.pop("node_type", None)
        data["node-type"] = node_type

        if not _split_comma(data.get("hosts")):
            data["hosts"] = [node_type.default_host]
        data.setdefault("shards", node_type.default_shards)
        data.setdefault("replicas", node_type.default_replicas)
        return data

    @field_validator("hosts", "ports", mode="before")
    @classmethod
    def split_lists(cls, v: Any) -> Any:
        return _split_comma(v)

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: List[int]) -> List[int]:
        if not v:
            return [DEFAULT_PORT]
        for port in v:
            if not 0 < port < 65536:
                raise ValueError(f"Invalid port: {port}")
        return v

    @classmethod
    def build(cls, node_type: NodeType, **overrides: Any) -> "IndexConfig":
        """Build a configuration for ``node_type`` with per-field overrides"""
        return cls.model_validate({"node_type": node_type, **overrides})

    @classmethod
    def from_properties(cls, properties: Mapping[str, Any]) -> "IndexConfig":
        """Build from hyphenated properties; unrelated keys are ignored"""
        known = set(IndexProperty.names())
        return cls.model_validate({k: v for k, v in properties.items() if k in known})

    def to_properties(self) -> Dict[str, str]:
        """Flatten to hyphenated string properties (lists comma-joined)"""
        properties = {}
        for prop in IndexProperty:
            value = getattr(self, prop.value)
            if isinstance(value, NodeType):
                value = value.value
            elif isinstance(value, list):
                value = ",".join(str(item) for item in value)
            properties[prop.property_name] = str(value)
        return properties

    @property
    def url(self) -> str:
        """URL of the first configured node"""
        return f"http://{self.hosts[0]}:{self.ports[0]}"

    @property
    def supports_joins(self) -> bool:
        return bool(self.join_field)


class ScanSettings(BaseModel):
    """Settings of the index scan task"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True
    )

    scroll_size: int = Field(default=1000, ge=1)
    scroll_slices: int = Field(default=1, ge=1)
    default_project: str = "local-datashare"
    report_name: Optional[str] = None
    reports_dir: Path = Field(default_factory=lambda: Path.home() / ".docindex" / "reports")
    scan_timeout: Optional[float] = Field(default=None, gt=0)
    fail_on_slice_error: bool = False
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0.0)

    @field_validator("default_project")
    @classmethod
    def validate_project(cls, v: str) -> str:
        if not v:
            raise ValueError("defaultProject cannot be empty")
        return v

    @field_validator("report_name")
    @classmethod
    def validate_report_name(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @classmethod
    def property_names(cls) -> List[str]:
        return [field.alias or name for name, field in cls.model_fields.items()]


class GlobalSettings(BaseSettings):
    """Process-wide settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="DOCINDEX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_to_file: bool = False
    config_dir: Path = Field(default_factory=lambda: Path.home() / ".docindex")

    def get_log_file(self) -> Optional[Path]:
        """Get log file path if logging to file is enabled"""
        if not self.log_to_file:
            return None
        log_dir = self.config_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir / "docindex.log"
