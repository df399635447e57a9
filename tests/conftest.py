"""
Pytest configuration and fixtures for the graph memory tests.

This module provides shared fixtures for setting up isolated test environments:
an initialized application context, a temporary document store and backup file,
and a manager wired to both.
"""

from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from mcp_graph_memory.backup import BackupWriter
from mcp_graph_memory.context import ctx
from mcp_graph_memory.manager import KnowledgeGraphManager
from mcp_graph_memory.models import CreateEntityRequest, CreateRelationRequest
from mcp_graph_memory.settings import GraphMemorySettings, StoreOptions
from mcp_graph_memory.store import DocumentStore, open_document_store


def fast_options(**overrides) -> StoreOptions:
    """Store options with retry delays short enough for tests."""
    values = dict(initial_delay_ms=1, max_delay_ms=4, settle_delay_ms=0)
    values.update(overrides)
    return StoreOptions(**values)


@pytest.fixture
def settings(tmp_path: Path) -> GraphMemorySettings:
    """Settings pointing at a temporary store directory and backup file."""
    return GraphMemorySettings(
        debug=True,
        transport="stdio",
        port=8000,
        memory_path=tmp_path / "memory.jsonl",
        store_path=tmp_path / "memory_db",
        store_options=fast_options(),
    )


@pytest.fixture(autouse=True)
def app_context(settings: GraphMemorySettings) -> Generator[GraphMemorySettings, None, None]:
    """Initialize the application context for each test and reset it afterwards."""
    ctx.reset()
    ctx.init(settings)
    try:
        yield settings
    finally:
        ctx.reset()


@pytest_asyncio.fixture
async def store(settings: GraphMemorySettings) -> AsyncGenerator[DocumentStore, None]:
    """An open document store in a temporary directory; closed after the test."""
    async with open_document_store(settings.store_path, settings.store_options) as s:
        yield s


@pytest_asyncio.fixture
async def manager(
    store: DocumentStore, settings: GraphMemorySettings
) -> AsyncGenerator[KnowledgeGraphManager, None]:
    """A KnowledgeGraphManager over the temporary store and backup file."""
    yield KnowledgeGraphManager(store, BackupWriter(settings.memory_path))


@pytest.fixture
def sample_entities() -> list[CreateEntityRequest]:
    """Sample entity requests with varied types and observations."""
    return [
        CreateEntityRequest(
            name="Alice Johnson",
            entity_type="person",
            observations=["Software engineer at TechCorp", "Lives in San Francisco"],
        ),
        CreateEntityRequest(
            name="TechCorp",
            entity_type="organization",
            observations=["Technology company founded in 2010", "Specializes in cloud computing"],
        ),
        CreateEntityRequest(
            name="Project Alpha",
            entity_type="project",
            observations=["Machine learning initiative"],
        ),
    ]


@pytest.fixture
def sample_relations() -> list[CreateRelationRequest]:
    """Sample relation requests between the sample entities."""
    return [
        CreateRelationRequest(
            from_entity="Alice Johnson", to_entity="TechCorp", relation_type="works at"
        ),
        CreateRelationRequest(
            from_entity="Alice Johnson", to_entity="Project Alpha", relation_type="leads"
        ),
        CreateRelationRequest(
            from_entity="TechCorp", to_entity="Project Alpha", relation_type="sponsors"
        ),
    ]


@pytest_asyncio.fixture
async def populated_manager(
    manager: KnowledgeGraphManager,
    sample_entities: list[CreateEntityRequest],
    sample_relations: list[CreateRelationRequest],
) -> AsyncGenerator[KnowledgeGraphManager, None]:
    """A manager with the sample entities and relations already stored."""
    await manager.create_entities(sample_entities)
    await manager.create_relations(sample_relations)
    yield manager
