"""Read-only projections of a knowledge graph."""

from .models import Entity, KnowledgeGraph, Relation


def prune_relations(entities: list[Entity], relations: list[Relation]) -> list[Relation]:
    """Keep only relations whose endpoints are both among the given entities."""
    names = {e.name for e in entities}
    return [r for r in relations if r.from_entity in names and r.to_entity in names]


def entity_matches(entity: Entity, query_lower: str) -> bool:
    """Case-insensitive substring match on name, type, or any observation."""
    if query_lower in entity.name.lower():
        return True
    if query_lower in entity.entity_type.lower():
        return True
    return any(query_lower in o.lower() for o in entity.observations)


def search_graph(graph: KnowledgeGraph, query: str) -> KnowledgeGraph:
    """
    Project the graph onto the entities matching `query`.

    Args:
        graph: The graph to search
        query: Substring matched case-insensitively against names, types, and observation content

    Returns:
        A graph of the matching entities and the relations between them
    """
    query_lower = query.lower()
    entities = [e for e in graph.entities if entity_matches(e, query_lower)]
    return KnowledgeGraph(entities=entities, relations=prune_relations(entities, graph.relations))


def open_graph(graph: KnowledgeGraph, names: list[str]) -> KnowledgeGraph:
    """Project the graph onto the entities with exactly the given names (no case folding)."""
    wanted = set(names)
    entities = [e for e in graph.entities if e.name in wanted]
    return KnowledgeGraph(entities=entities, relations=prune_relations(entities, graph.relations))
