"""
Data models for the graph memory store.

This module defines the documents kept in the store (entities and relations),
the knowledge graph container, and the request/result models exchanged with
tool callers. Field names on the wire keep the store's JSON layout (`_id`,
`_rev`, `entityType`, `from`, `relationType`, ...) via aliases, while Python
code uses snake_case attributes.
"""

from datetime import datetime, timezone
from typing import Any, Literal
from pydantic import (
    BaseModel,
    Field,
    ConfigDict,
    field_validator,
)


def get_current_datetime() -> datetime:
    """Get the current datetime (UTC)."""
    return datetime.now(timezone.utc)


def get_current_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a `Z` suffix."""
    return get_current_datetime().isoformat(timespec="milliseconds").replace("+00:00", "Z")


class KnowledgeGraphException(Exception):
    """
    Base exception for the knowledge graph.

    KnowledgeGraphException should be raised when there is an issue involving interactions between
    elements or components of the knowledge graph.
    - Exceptions involving data validity should be raised as a `ValueError` instead.
    - Failures of the underlying document store are raised as `StoreError` (a `RuntimeError`).
    """

    pass


class EntityNotFoundError(KnowledgeGraphException):
    """Raised when a request names an entity that does not exist in the graph."""

    def __init__(self, entity_name: str):
        self.entity_name = entity_name
        super().__init__(f"Entity with name {entity_name} not found")


def _dedupe_strings(values: list[str]) -> list[str]:
    """Drop repeated strings, keeping first-occurrence order."""
    seen: set[str] = set()
    result: list[str] = []
    for v in values:
        if v not in seen:
            seen.add(v)
            result.append(v)
    return result


class Entity(BaseModel):
    """
    Primary nodes in the knowledge graph.

    Each entity has a unique name, a free-text type label and an ordered list of
    observations (free-text facts). The name is the primary key; `id` is the
    persistence identifier of the backing document and `rev` its current store revision.

    Example: {'_id': 'entity_3f2a...', 'name': 'Alice', 'entityType': 'person', 'observations': ['likes tea'], 'type': 'entity'}
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
        validate_by_alias=True,
    )
    id: str = Field(
        ...,
        alias="_id",
        title="Document ID",
        description="Persistence identifier of the entity document",
    )
    rev: str | None = Field(
        default=None,
        alias="_rev",
        title="Revision",
        description="Store revision of the entity document",
    )
    name: str = Field(
        ...,
        title="Entity name",
        description="The unique name of the entity",
    )
    entity_type: str = Field(
        ...,
        alias="entityType",
        title="Entity type",
        description="Type classification (e.g., 'person', 'organization', 'event')",
    )
    observations: list[str] = Field(
        default_factory=list,
        title="Observations",
        description="Ordered free-text facts about the entity",
    )
    type: Literal["entity"] = "entity"

    @field_validator("observations", mode="after")
    @classmethod
    def _unique_observations(cls, v: list[str]) -> list[str]:
        return _dedupe_strings(v)

    def to_doc(self) -> dict[str, Any]:
        """Return the entity as a store document (wire field names)."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_doc(cls, doc: dict) -> "Entity":
        """Initialize the entity from a store document."""
        return cls.model_validate(doc)

    def __str__(self) -> str:
        return f"{self.name} ({self.entity_type})"


class Relation(BaseModel):
    """
    Directed connections between entities, identified by entity name.

    The triple (from, to, relation_type) is the uniqueness key: several relation types may
    connect the same pair. Endpoints are not required to exist.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
        validate_by_alias=True,
    )
    id: str = Field(
        ...,
        alias="_id",
        title="Document ID",
        description="Persistence identifier of the relation document",
    )
    rev: str | None = Field(
        default=None,
        alias="_rev",
        title="Revision",
        description="Store revision of the relation document",
    )
    from_entity: str = Field(
        ...,
        alias="from",
        title="From entity",
        description="Name of the entity where the relation starts",
    )
    to_entity: str = Field(
        ...,
        alias="to",
        title="To entity",
        description="Name of the entity where the relation ends",
    )
    relation_type: str = Field(
        ...,
        alias="relationType",
        title="Relation type",
        description="The type of the relation, in active voice",
    )
    type: Literal["relation"] = "relation"

    @property
    def key(self) -> tuple[str, str, str]:
        """The (from, to, relation_type) uniqueness key."""
        return (self.from_entity, self.to_entity, self.relation_type)

    def to_doc(self) -> dict[str, Any]:
        """Return the relation as a store document (wire field names)."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_doc(cls, doc: dict) -> "Relation":
        """Initialize the relation from a store document."""
        return cls.model_validate(doc)

    def __str__(self):
        return f"{self.from_entity} {self.relation_type} {self.to_entity}"


class KnowledgeGraph(BaseModel):
    """
    Complete knowledge graph containing entities and their relations.

    Entities are the nodes in the graph, and relations are the directed, typed edges
    between entity names. A graph is loaded in full for every operation and discarded
    afterwards; it is never cached.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
    )
    entities: list[Entity] = Field(
        default_factory=list, title="Entities", description="All entities in the knowledge graph"
    )
    relations: list[Relation] = Field(
        default_factory=list, title="Relations", description="All relations between entities"
    )

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Return the graph with wire field names, e.g. for a tool response."""
        return {
            "entities": [e.to_doc() for e in self.entities],
            "relations": [r.to_doc() for r in self.relations],
        }

    def entity_names(self) -> set[str]:
        return {e.name for e in self.entities}


# ---------- Requests and results ----------


class CreateEntityRequest(BaseModel):
    """
    Request model used to create an entity.

    Properties:
        name (str): The name of the new entity to create.
        entity_type (str): The type of the entity. Arbitrary, but should be a noun.
        observations (list[str]): Observations about the entity. Optional, but recommended.

    If the name is new, the entity is assigned a document ID by the manager.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
        validate_by_alias=True,
    )
    name: str = Field(
        ...,
        title="Entity name",
        description="The name of the entity",
    )
    entity_type: str = Field(
        ...,
        alias="entityType",
        title="Entity type",
        description="The type of the entity",
    )
    observations: list[str] = Field(
        default_factory=list,
        title="Observations",
        description="An array of observation contents associated with the entity",
    )


class CreateRelationRequest(BaseModel):
    """Request model used to create a relation between two entity names."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
        validate_by_alias=True,
    )
    from_entity: str = Field(
        ...,
        alias="from",
        title="From entity",
        description="The name of the entity where the relation starts",
    )
    to_entity: str = Field(
        ...,
        alias="to",
        title="To entity",
        description="The name of the entity where the relation ends",
    )
    relation_type: str = Field(
        ...,
        alias="relationType",
        title="Relation type",
        description="The type of the relation",
    )

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.from_entity, self.to_entity, self.relation_type)


class DeleteRelationRequest(CreateRelationRequest):
    """Identifies a relation to delete by its (from, to, relationType) triple."""

    pass


class ObservationRequest(BaseModel):
    """Request model for adding observations to an existing entity."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
        validate_by_alias=True,
    )
    entity_name: str = Field(
        ...,
        alias="entityName",
        title="Entity name",
        description="The name of the entity to add the observations to",
    )
    contents: list[str] = Field(
        ...,
        title="Contents",
        description="An array of observation contents to add",
    )


class AddObservationResult(BaseModel):
    """The observations that were actually added to one entity."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
        validate_by_alias=True,
    )
    entity_name: str = Field(..., alias="entityName", title="Entity name")
    added_observations: list[str] = Field(
        default_factory=list,
        alias="addedObservations",
        title="Added observations",
    )


class DeleteObservationRequest(BaseModel):
    """Request model for removing observations from an entity."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_by_name=True,
        validate_by_alias=True,
    )
    entity_name: str = Field(
        ...,
        alias="entityName",
        title="Entity name",
        description="The name of the entity containing the observations",
    )
    observations: list[str] = Field(
        ...,
        title="Observations",
        description="An array of observations to delete",
    )

    def __repr__(self):
        return f"DeleteObservationRequest(entity_name={self.entity_name}, observations={self.observations})"


class WriteResult(BaseModel):
    """Outcome of writing one document in a bulk write."""

    id: str
    rev: str | None = None
    ok: bool = True
    error: str | None = None
