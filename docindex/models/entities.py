"""
Entity identity models.

Defines the minimal addressing model shared by the index stores and the scan
task, the ``Document`` entity, and decoder helpers that turn raw search hits
into typed models.
"""

from typing import Any, Callable, ClassVar, Dict, Optional, Type, TypeVar
from pydantic import BaseModel, ConfigDict, Field, field_validator


# Keys added to every hit returned by a store
HIT_ID = "_id"
HIT_INDEX = "_index"
HIT_PARENT = "_parent"

T = TypeVar("T")
E = TypeVar("E", bound="Entity")

Decoder = Callable[[Dict[str, Any]], T]


class EntityRef(BaseModel):
    """Address of an entity inside an index"""
    model_config = ConfigDict(frozen=True)

    index: str
    type: str
    id: str
    parent: Optional[str] = None

    @field_validator("index", "type", "id")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Entity reference fields cannot be empty")
        return v

    def __str__(self) -> str:
        parent = f"@{self.parent}" if self.parent else ""
        return f"{self.index}/{self.type}/{self.id}{parent}"


class Entity(BaseModel):
    """
    Base model for anything stored in an index.

    Subclasses set ``doc_type``; identity travels as ``_id``/``_parent`` in hits
    and is kept out of the stored source.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow"
    )

    doc_type: ClassVar[str] = "Entity"

    id: str = Field(alias=HIT_ID)
    parent: Optional[str] = Field(default=None, alias=HIT_PARENT)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Entity id cannot be empty")
        return v

    def ref(self, index: str) -> EntityRef:
        """Build the reference of this entity in ``index``"""
        return EntityRef(index=index, type=self.doc_type, id=self.id, parent=self.parent)

    def to_source(self) -> Dict[str, Any]:
        """Stored body of the entity, without identity and hit metadata"""
        source = self.model_dump(exclude={"id", "parent"}, exclude_none=True)
        return {k: v for k, v in source.items() if not k.startswith("_")}


class Document(Entity):
    """Extracted document; ``path`` locates its source and keys scan progress"""

    doc_type: ClassVar[str] = "Document"

    path: str
    content: Optional[str] = None
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    extraction_level: int = 0

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v:
            raise ValueError("Document path cannot be empty")
        return v


def decode_as(model: Type[E]) -> Decoder:
    """Decoder validating raw hits into ``model`` instances"""
    def decode(hit: Dict[str, Any]) -> E:
        data = {k: v for k, v in hit.items() if k != HIT_INDEX}
        return model.model_validate(data)
    return decode


def identity_decoder(hit: Dict[str, Any]) -> Dict[str, Any]:
    return hit
