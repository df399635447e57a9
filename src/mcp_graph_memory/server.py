"""
FastMCP Server implementation for the graph memory store.

This module exposes the knowledge graph operations as MCP tools. Tool results are JSON
text using the store's wire field names (`_id`, `entityType`, `from`, `relationType`, ...).
"""

import asyncio
import json
import signal
from contextlib import suppress
from typing import Annotated, Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from .context import ctx
from .graph_logging import logger
from .manager import KnowledgeGraphManager
from .models import (
    CreateEntityRequest,
    CreateRelationRequest,
    DeleteObservationRequest,
    DeleteRelationRequest,
    KnowledgeGraph,
    ObservationRequest,
)
from .settings import GraphMemorySettings
from .store import open_document_store
from .version import GRAPH_MEMORY_VERSION


def _to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _graph_json(graph: KnowledgeGraph) -> str:
    return _to_json(graph.to_dict())


def build_server(manager: KnowledgeGraphManager) -> FastMCP:
    """Create the FastMCP server with every knowledge graph tool bound to `manager`."""
    mcp = FastMCP(name="graph-memory", version=GRAPH_MEMORY_VERSION)

    @mcp.tool
    async def get_current_time() -> str:
        """Get the current time"""
        return await manager.get_current_time()

    @mcp.tool
    async def create_entities(
        entities: Annotated[
            list[CreateEntityRequest],
            Field(description="Entities to add, each with a name, an entityType and observations"),
        ],
    ) -> str:
        """
        Create multiple new entities in the knowledge graph.

        Entities whose name already exists are skipped. Returns only the entities that were created.
        """
        try:
            created = await manager.create_entities(entities)
        except Exception as e:
            raise ToolError(f"Failed to create entities: {e}")
        return _to_json([e.to_doc() for e in created])

    @mcp.tool
    async def create_relations(
        relations: Annotated[
            list[CreateRelationRequest],
            Field(description="Relations to add, each with from, to and relationType"),
        ],
    ) -> str:
        """
        Create multiple new relations between entities in the knowledge graph. Relations should be in active voice.

        Relations that already exist are skipped. Returns only the relations that were created.
        """
        try:
            created = await manager.create_relations(relations)
        except Exception as e:
            raise ToolError(f"Failed to create relations: {e}")
        return _to_json([r.to_doc() for r in created])

    @mcp.tool
    async def add_observations(
        observations: Annotated[
            list[ObservationRequest],
            Field(description="Observations to add, each with an entityName and contents"),
        ],
    ) -> str:
        """
        Add new observations to existing entities in the knowledge graph.

        Fails without changing anything if any named entity does not exist.
        """
        try:
            results = await manager.add_observations(observations)
        except Exception as e:
            raise ToolError(f"Failed to add observations: {e}")
        return _to_json([r.model_dump(by_alias=True) for r in results])

    @mcp.tool
    async def delete_entities(
        entityNames: Annotated[list[str], Field(description="An array of entity names to delete")],
    ) -> str:
        """Delete multiple entities and their associated relations from the knowledge graph"""
        try:
            await manager.delete_entities(entityNames)
        except Exception as e:
            raise ToolError(f"Failed to delete entities: {e}")
        return "Entities deleted successfully"

    @mcp.tool
    async def delete_observations(
        deletions: Annotated[
            list[DeleteObservationRequest],
            Field(description="Observations to delete, each with an entityName and observations"),
        ],
    ) -> str:
        """Delete specific observations from entities in the knowledge graph"""
        try:
            await manager.delete_observations(deletions)
        except Exception as e:
            raise ToolError(f"Failed to delete observations: {e}")
        return "Observations deleted successfully"

    @mcp.tool
    async def delete_relations(
        relations: Annotated[
            list[DeleteRelationRequest],
            Field(description="An array of relations to delete"),
        ],
    ) -> str:
        """Delete multiple relations from the knowledge graph"""
        try:
            await manager.delete_relations(relations)
        except Exception as e:
            raise ToolError(f"Failed to delete relations: {e}")
        return "Relations deleted successfully"

    @mcp.tool
    async def read_graph() -> str:
        """Read the entire knowledge graph"""
        try:
            graph = await manager.read_graph()
        except Exception as e:
            raise ToolError(f"Failed to read graph: {e}")
        return _graph_json(graph)

    @mcp.tool
    async def search_nodes(
        query: Annotated[
            str,
            Field(
                description="The search query to match against entity names, types, and observation content"
            ),
        ],
    ) -> str:
        """Search for nodes in the knowledge graph based on a query"""
        try:
            graph = await manager.search_nodes(query)
        except Exception as e:
            raise ToolError(f"Failed to search nodes: {e}")
        return _graph_json(graph)

    @mcp.tool
    async def open_nodes(
        names: Annotated[list[str], Field(description="An array of entity names to retrieve")],
    ) -> str:
        """Open specific nodes in the knowledge graph by their names"""
        try:
            graph = await manager.open_nodes(names)
        except Exception as e:
            raise ToolError(f"Failed to open nodes: {e}")
        return _graph_json(graph)

    return mcp


# ----- MAIN APPLICATION ENTRY POINT -----#


async def startup_check(manager: KnowledgeGraphManager) -> None:
    """Load the graph once so that an unreadable store shows up in the logs at startup."""
    graph = await manager.read_graph()
    logger.info(
        f"✅ Startup check passed: {len(graph.entities)} entities, {len(graph.relations)} relations"
    )


def _install_signal_handlers(task: asyncio.Task) -> None:
    """Cancel the server task on SIGTERM/SIGHUP so the store is closed on the way out."""
    loop = asyncio.get_running_loop()
    for name in ("SIGTERM", "SIGHUP"):
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        # Not available on Windows event loops
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, task.cancel)


async def start_server(settings: GraphMemorySettings | None = None) -> None:
    """Common entry point for the MCP server."""
    settings = settings or ctx.settings
    validated_transport = settings.transport
    logger.debug(f"🚌 Transport selected: {validated_transport}")
    if validated_transport == "http":
        transport_kwargs = {
            "host": settings.streamable_http_host,
            "port": settings.port,
            "path": settings.streamable_http_path,
            "log_level": "debug" if settings.debug else "info",
        }
        transport_kwargs = {k: v for k, v in transport_kwargs.items() if v is not None}
    else:
        transport_kwargs = {}

    task = asyncio.current_task()
    if task is not None:
        _install_signal_handlers(task)

    async with open_document_store(settings.store_path, settings.store_options) as store:
        manager = KnowledgeGraphManager.from_settings(store, settings)
        await startup_check(manager)
        mcp = build_server(manager)
        await mcp.run_async(transport=validated_transport, **transport_kwargs)
