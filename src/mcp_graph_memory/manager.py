"""
Knowledge Graph Manager.

This module contains the core business logic for managing the knowledge graph: the
create/delete merge rules for entities, relations, and observations, and the dual
write of every new state to the document store and the backup file.

Every operation loads the full graph from the store, applies one mutation to that
in-memory copy, persists the whole copy, and returns only what changed. Nothing is
cached between calls.
"""

from uuid import uuid4

from .backup import BackupWriter
from .graph_logging import logger
from .models import (
    AddObservationResult,
    CreateEntityRequest,
    CreateRelationRequest,
    DeleteObservationRequest,
    DeleteRelationRequest,
    Entity,
    EntityNotFoundError,
    KnowledgeGraph,
    ObservationRequest,
    Relation,
    WriteResult,
    get_current_timestamp,
)
from .query import open_graph, search_graph
from .settings import GraphMemorySettings
from .store import DocumentStore, StoreError


class KnowledgeGraphManager:
    """
    Core manager for knowledge graph operations.

    The manager does not own its store: the caller opens the `DocumentStore`, passes it in,
    and closes it when done.
    """

    def __init__(self, store: DocumentStore, backup: BackupWriter | None = None):
        """
        Initialize the knowledge graph manager.

        Args:
            store: An open document store, the source of truth
            backup: Writer for the JSONL mirror; a disabled writer when omitted
        """
        self.store = store
        self.backup = backup or BackupWriter(None)

    @classmethod
    def from_settings(
        cls, store: DocumentStore, settings: GraphMemorySettings
    ) -> "KnowledgeGraphManager":
        """Build a manager for an open store, with the backup file configured by the settings."""
        backup_path = None if settings.disable_memory_file else settings.memory_path
        return cls(store, BackupWriter(backup_path))

    # ---------- Helpers ----------
    def _generate_new_doc_id(self, kind: str, taken: set[str]) -> str:
        """Generate a document ID for `kind` ("entity" or "relation") not already in `taken`, and reserve it."""
        while True:
            new_id = f"{kind}_{uuid4().hex}"
            if new_id not in taken:
                break
        taken.add(new_id)
        return new_id

    def _taken_ids(self, graph: KnowledgeGraph) -> set[str]:
        return {e.id for e in graph.entities} | {r.id for r in graph.relations}

    async def _load_graph(self) -> KnowledgeGraph:
        """Load the full graph from the store. A failed load yields an empty graph."""
        logger.debug("manager._load_graph() called")
        return await self.store.load_all()

    def _apply_write_results(
        self, items: list[Entity | Relation], results: list[WriteResult]
    ) -> list[WriteResult]:
        """Copy new revisions onto the written models; return the failed results."""
        by_id = {r.id: r for r in results}
        failed: list[WriteResult] = []
        for item in items:
            res = by_id.get(item.id)
            if res is None:
                continue
            if res.ok:
                item.rev = res.rev
            else:
                failed.append(res)
        return failed

    async def _save_graph(self, graph: KnowledgeGraph) -> None:
        """
        Persist the whole graph: every document to the store, then the backup file.

        Raises:
            StoreError: if the store write fails; the backup file is then left untouched
        """
        items: list[Entity | Relation] = [*graph.entities, *graph.relations]
        logger.debug(f"manager._save_graph() called, writing {len(items)} documents")
        try:
            results = await self.store.bulk_write([i.to_doc() for i in items])
        except Exception as e:
            logger.error(f"⛔ Failed to save graph: {e}")
            raise StoreError(f"⛔ Failed to save graph: {e}") from e

        for res in self._apply_write_results(items, results):
            logger.warning(f"⚠️ Document {res.id} was not saved: {res.error}")

        self.backup.write(graph)

    async def _delete_documents(self, items: list[Entity | Relation]) -> None:
        """Tombstone the given documents in the store."""
        if not items:
            return
        try:
            results = await self.store.bulk_write([{**i.to_doc(), "_deleted": True} for i in items])
        except Exception as e:
            logger.error(f"⛔ Failed to delete documents: {e}")
            raise StoreError(f"⛔ Failed to delete documents: {e}") from e
        for res in self._apply_write_results(items, results):
            logger.warning(f"⚠️ Document {res.id} was not deleted: {res.error}")

    # ---------- Operations ----------
    async def get_current_time(self) -> str:
        """Return the current UTC time as an ISO-8601 string."""
        return get_current_timestamp()

    async def create_entities(self, new_entities: list[CreateEntityRequest]) -> list[Entity]:
        """
        Add multiple new entities to the knowledge graph.

        Args:
            new_entities: list of entities to add

        Returns:
            list of entities that were actually created (excludes names that already exist,
            including repeats within this batch)
        """
        graph = await self._load_graph()
        existing_names = graph.entity_names()
        taken_ids = self._taken_ids(graph)

        created: list[Entity] = []
        for request in new_entities:
            if request.name in existing_names:
                logger.debug(f'Entity "{request.name}" already exists; skipped')
                continue
            entity = Entity(
                id=self._generate_new_doc_id("entity", taken_ids),
                name=request.name,
                entity_type=request.entity_type,
                observations=list(request.observations),
            )
            existing_names.add(entity.name)
            created.append(entity)

        graph.entities.extend(created)
        await self._save_graph(graph)
        if created:
            logger.info(f"👤 Created {len(created)} entities")
        return created

    async def create_relations(self, relations: list[CreateRelationRequest]) -> list[Relation]:
        """
        Create multiple new relations between entities.

        Endpoints are not checked: a relation may name an entity that does not exist (yet).

        Args:
            relations: list of relations to create

        Returns:
            list of relations that were actually created (excludes duplicates)
        """
        graph = await self._load_graph()
        existing_keys = {r.key for r in graph.relations}
        taken_ids = self._taken_ids(graph)

        created: list[Relation] = []
        for request in relations:
            if request.key in existing_keys:
                logger.debug(f"Relation {request.key} already exists; skipped")
                continue
            relation = Relation(
                id=self._generate_new_doc_id("relation", taken_ids),
                from_entity=request.from_entity,
                to_entity=request.to_entity,
                relation_type=request.relation_type,
            )
            existing_keys.add(relation.key)
            created.append(relation)

        graph.relations.extend(created)
        await self._save_graph(graph)
        if created:
            logger.info(f"🔗 Created {len(created)} relations")
        return created

    async def add_observations(
        self, requests: list[ObservationRequest]
    ) -> list[AddObservationResult]:
        """
        Add new observations to existing entities.

        Args:
            requests: list of observation addition requests

        Returns:
            list of results showing, per request, the observations that were actually added

        Raises:
            EntityNotFoundError: If any named entity is missing. Nothing is persisted in that case.
        """
        graph = await self._load_graph()
        entities_by_name = {e.name: e for e in graph.entities}

        # Validate the whole batch before touching anything
        for request in requests:
            if request.entity_name not in entities_by_name:
                raise EntityNotFoundError(request.entity_name)

        results: list[AddObservationResult] = []
        for request in requests:
            entity = entities_by_name[request.entity_name]
            present = set(entity.observations)
            added: list[str] = []
            for content in request.contents:
                if content not in present:
                    present.add(content)
                    added.append(content)
            entity.observations.extend(added)
            results.append(
                AddObservationResult(entity_name=request.entity_name, added_observations=added)
            )

        await self._save_graph(graph)
        return results

    async def delete_entities(self, entity_names: list[str]) -> None:
        """
        Delete multiple entities and every relation that starts or ends at one of them.

        Names that do not exist are ignored.
        """
        graph = await self._load_graph()
        names = set(entity_names)

        doomed_entities = [e for e in graph.entities if e.name in names]
        doomed_relations = [
            r for r in graph.relations if r.from_entity in names or r.to_entity in names
        ]
        await self._delete_documents([*doomed_entities, *doomed_relations])

        graph.entities = [e for e in graph.entities if e.name not in names]
        graph.relations = [
            r for r in graph.relations if r.from_entity not in names and r.to_entity not in names
        ]
        await self._save_graph(graph)
        if doomed_entities:
            logger.info(
                f"🗑️ Deleted {len(doomed_entities)} entities and {len(doomed_relations)} relations"
            )

    async def delete_observations(self, deletions: list[DeleteObservationRequest]) -> None:
        """
        Delete specific observations from entities.

        Unknown entities and observations that are not present are ignored.
        """
        graph = await self._load_graph()
        entities_by_name = {e.name: e for e in graph.entities}

        for deletion in deletions:
            entity = entities_by_name.get(deletion.entity_name)
            if entity is None:
                logger.debug(f"delete_observations: no entity named {deletion.entity_name}")
                continue
            to_delete = set(deletion.observations)
            entity.observations = [o for o in entity.observations if o not in to_delete]

        await self._save_graph(graph)

    async def delete_relations(self, relations: list[DeleteRelationRequest]) -> None:
        """
        Delete relations matching the given (from, to, relationType) triples exactly.
        """
        graph = await self._load_graph()
        to_delete = {r.key for r in relations}

        doomed = [r for r in graph.relations if r.key in to_delete]
        await self._delete_documents(doomed)

        graph.relations = [r for r in graph.relations if r.key not in to_delete]
        await self._save_graph(graph)

    async def read_graph(self) -> KnowledgeGraph:
        """
        Read the entire knowledge graph.

        Returns:
            The complete knowledge graph
        """
        return await self._load_graph()

    async def search_nodes(self, query: str) -> KnowledgeGraph:
        """
        Search for nodes in the knowledge graph based on a query.

        Args:
            query: Search query to match against names, types, and observation content

        Returns:
            Filtered knowledge graph containing only matching entities and the relations between them
        """
        graph = await self._load_graph()
        return search_graph(graph, query)

    async def open_nodes(self, names: list[str]) -> KnowledgeGraph:
        """
        Open specific nodes (entities) in the knowledge graph by their exact names.

        Returns:
            The named entities and the relations between them
        """
        graph = await self._load_graph()
        return open_graph(graph, names)
