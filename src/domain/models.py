from typing import Any, Dict, Literal, Optional, Tuple, Type
from pydantic import BaseModel, Field, ConfigDict, model_validator

PrimitiveType = Literal["string", "number", "boolean", "date"]


class BaseEntity(BaseModel):
    """
    Immutable base for every entity stored through a repository.
    The identity is optional on creation and assigned by the backend.
    """
    # Enforces immutability: edits go through model_copy(update=...).
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = Field(None, description="Backend-assigned identity")


class PropertyMapping(BaseModel):
    """How one entity field maps to one resource field."""
    model_config = ConfigDict(frozen=True)

    to: str = Field(..., min_length=1, description="Key of the field in the resource")
    type: PrimitiveType = Field(..., description="Coercion rule applied across the boundary")
    optional: bool = Field(False, description="Whether the field may be absent")


class EntityMapping(BaseModel):
    """
    Declarative correspondence between an entity class and its resource shape.

    Every field of ``entity_type`` must have exactly one entry in ``fields``.
    Resource keys must be unique unless ``allow_aliasing`` is set.

    Example:
        EntityMapping.of(TaskEntity, {
            "id": {"to": "id", "type": "string", "optional": True},
            "title": {"to": "summary", "type": "string"},
            "done": {"to": "status", "type": "boolean"},
        })
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    entity_type: Type[BaseModel]
    fields: Dict[str, PropertyMapping]
    identity_field: str = "id"
    allow_aliasing: bool = False

    @model_validator(mode="after")
    def _check_fields(self) -> "EntityMapping":
        entity_fields = set(self.entity_type.model_fields)
        mapped = set(self.fields)

        missing = entity_fields - mapped
        if missing:
            raise ValueError(f"Unmapped entity fields: {sorted(missing)}")
        unknown = mapped - entity_fields
        if unknown:
            raise ValueError(f"Mapping names fields absent from {self.entity_type.__name__}: {sorted(unknown)}")

        if self.identity_field not in self.fields:
            raise ValueError(f"Identity field '{self.identity_field}' is not mapped.")

        if not self.allow_aliasing:
            targets = [prop.to for prop in self.fields.values()]
            duplicates = {t for t in targets if targets.count(t) > 1}
            if duplicates:
                raise ValueError(f"Resource keys mapped more than once: {sorted(duplicates)}")
        return self

    @classmethod
    def of(cls, entity_type: Type[BaseModel], fields: Dict[str, Any], **kwargs: Any) -> "EntityMapping":
        return cls(entity_type=entity_type, fields=fields, **kwargs)

    @property
    def identity_key(self) -> str:
        """Resource key that carries the identity."""
        return self.fields[self.identity_field].to


class RepositoryChanges(BaseModel):
    """
    Immutable result of one change computation.
    Each sequence keeps the order in which entities were discovered.
    """
    model_config = ConfigDict(frozen=True)

    added: Tuple[BaseModel, ...] = ()
    modified: Tuple[BaseModel, ...] = ()
    deleted: Tuple[BaseModel, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)
