"""
Tests for the MCP server tool functions.

These tests drive the FastMCP server in memory through a `fastmcp.Client`, covering every
tool, its JSON output, and how failures are reported to the caller.
"""

import json
from datetime import datetime

import pytest
import pytest_asyncio
from fastmcp import Client
from fastmcp.exceptions import ToolError

from mcp_graph_memory.manager import KnowledgeGraphManager
from mcp_graph_memory.server import build_server

pytestmark = pytest.mark.integration


EXPECTED_TOOLS = {
    "get_current_time",
    "create_entities",
    "create_relations",
    "add_observations",
    "delete_entities",
    "delete_observations",
    "delete_relations",
    "read_graph",
    "search_nodes",
    "open_nodes",
}


@pytest_asyncio.fixture
async def client(manager: KnowledgeGraphManager):
    """An in-memory client connected to a server bound to the test manager."""
    async with Client(build_server(manager)) as c:
        yield c


async def call(client: Client, tool: str, **arguments) -> str:
    result = await client.call_tool(tool, arguments)
    return result.content[0].text


async def seed(client: Client) -> None:
    await call(
        client,
        "create_entities",
        entities=[
            {"name": "John Doe", "entityType": "person", "observations": ["Software developer", "Lives in NYC"]},
            {"name": "Acme Corp", "entityType": "organization", "observations": ["Technology company"]},
            {"name": "Widget", "entityType": "product", "observations": ["Made by Acme"]},
        ],
    )
    await call(
        client,
        "create_relations",
        relations=[
            {"from": "John Doe", "to": "Acme Corp", "relationType": "works at"},
            {"from": "Acme Corp", "to": "Widget", "relationType": "makes"},
        ],
    )


class TestToolRegistry:
    async def test_all_tools_registered(self, client: Client):
        tools = await client.list_tools()
        assert {t.name for t in tools} == EXPECTED_TOOLS

    async def test_get_current_time(self, client: Client):
        text = await call(client, "get_current_time")
        assert text.endswith("Z")
        datetime.fromisoformat(text.replace("Z", "+00:00"))


class TestEntityTools:
    """Test suite for entity tools."""

    async def test_create_entities_returns_created(self, client: Client):
        text = await call(
            client,
            "create_entities",
            entities=[{"name": "Jane Smith", "entityType": "person", "observations": ["Data scientist"]}],
        )
        created = json.loads(text)

        assert len(created) == 1
        assert created[0]["name"] == "Jane Smith"
        assert created[0]["entityType"] == "person"
        assert created[0]["type"] == "entity"
        assert created[0]["_id"].startswith("entity_")
        assert created[0]["_rev"].startswith("1-")

    async def test_create_entities_duplicate_prevention(self, client: Client):
        payload = [{"name": "Jane Smith", "entityType": "person", "observations": []}]
        await call(client, "create_entities", entities=payload)
        second = json.loads(await call(client, "create_entities", entities=payload))

        assert second == []

    async def test_delete_entities(self, client: Client):
        await seed(client)
        text = await call(client, "delete_entities", entityNames=["Acme Corp", "Nobody"])
        graph = json.loads(await call(client, "read_graph"))

        assert text == "Entities deleted successfully"
        assert [e["name"] for e in graph["entities"]] == ["John Doe", "Widget"]
        assert graph["relations"] == []

    async def test_delete_entities_takes_entity_names_wire_argument(self, client: Client):
        await call(client, "create_entities", entities=[{"name": "A", "entityType": "test"}])
        await client.call_tool("delete_entities", {"entityNames": ["A"]})
        graph = json.loads(await call(client, "read_graph"))

        assert graph["entities"] == []
        tools = {t.name: t for t in await client.list_tools()}
        assert list(tools["delete_entities"].inputSchema["properties"]) == ["entityNames"]

    async def test_open_nodes(self, client: Client):
        await seed(client)
        graph = json.loads(await call(client, "open_nodes", names=["John Doe", "Acme Corp", "Ghost"]))

        assert [e["name"] for e in graph["entities"]] == ["John Doe", "Acme Corp"]
        assert [(r["from"], r["to"], r["relationType"]) for r in graph["relations"]] == [
            ("John Doe", "Acme Corp", "works at")
        ]

    async def test_open_nodes_empty_list(self, client: Client):
        await seed(client)
        graph = json.loads(await call(client, "open_nodes", names=[]))
        assert graph == {"entities": [], "relations": []}


class TestRelationTools:
    """Test suite for relation tools."""

    async def test_create_relations(self, client: Client):
        created = json.loads(
            await call(
                client,
                "create_relations",
                relations=[
                    {"from": "A", "to": "B", "relationType": "knows"},
                    {"from": "A", "to": "B", "relationType": "knows"},
                ],
            )
        )

        assert len(created) == 1
        assert created[0]["from"] == "A"
        assert created[0]["type"] == "relation"
        assert created[0]["_id"].startswith("relation_")

    async def test_delete_relations(self, client: Client):
        await seed(client)
        text = await call(
            client,
            "delete_relations",
            relations=[{"from": "Acme Corp", "to": "Widget", "relationType": "makes"}],
        )
        graph = json.loads(await call(client, "read_graph"))

        assert text == "Relations deleted successfully"
        assert [r["relationType"] for r in graph["relations"]] == ["works at"]


class TestObservationTools:
    """Test suite for observation tools."""

    async def test_add_observations(self, client: Client):
        await seed(client)
        results = json.loads(
            await call(
                client,
                "add_observations",
                observations=[{"entityName": "John Doe", "contents": ["Lives in NYC", "Plays chess"]}],
            )
        )

        assert results == [{"entityName": "John Doe", "addedObservations": ["Plays chess"]}]

    async def test_add_observations_nonexistent_entity(self, client: Client):
        await seed(client)
        with pytest.raises(ToolError, match="Entity with name Ghost not found"):
            await client.call_tool(
                "add_observations",
                {"observations": [{"entityName": "Ghost", "contents": ["x"]}]},
            )

        graph = json.loads(await call(client, "read_graph"))
        assert all("x" not in e["observations"] for e in graph["entities"])

    async def test_delete_observations(self, client: Client):
        await seed(client)
        text = await call(
            client,
            "delete_observations",
            deletions=[{"entityName": "John Doe", "observations": ["Lives in NYC"]}],
        )
        graph = json.loads(await call(client, "open_nodes", names=["John Doe"]))

        assert text == "Observations deleted successfully"
        assert graph["entities"][0]["observations"] == ["Software developer"]


class TestGraphTools:
    """Test suite for whole-graph tools."""

    async def test_read_graph_empty(self, client: Client):
        graph = json.loads(await call(client, "read_graph"))
        assert graph == {"entities": [], "relations": []}

    async def test_read_graph_populated(self, client: Client):
        await seed(client)
        graph = json.loads(await call(client, "read_graph"))

        assert len(graph["entities"]) == 3
        assert len(graph["relations"]) == 2

    async def test_search_nodes_by_observation(self, client: Client):
        await seed(client)
        graph = json.loads(await call(client, "search_nodes", query="ACME"))

        assert [e["name"] for e in graph["entities"]] == ["Acme Corp", "Widget"]
        assert [r["relationType"] for r in graph["relations"]] == ["makes"]

    async def test_search_nodes_by_entity_type(self, client: Client):
        await seed(client)
        graph = json.loads(await call(client, "search_nodes", query="person"))

        assert [e["name"] for e in graph["entities"]] == ["John Doe"]

    async def test_search_nodes_no_match(self, client: Client):
        await seed(client)
        graph = json.loads(await call(client, "search_nodes", query="zebra"))
        assert graph == {"entities": [], "relations": []}

    async def test_store_failure_reported_as_tool_error(self, client: Client, manager, monkeypatch):
        def broken(docs):
            raise OSError("disk full")

        monkeypatch.setattr(manager.store, "_bulk_write_sync", broken)
        with pytest.raises(ToolError, match="Failed to create entities"):
            await client.call_tool(
                "create_entities", {"entities": [{"name": "X", "entityType": "thing"}]}
            )
