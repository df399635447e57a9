"""
Graph memory MCP server package.

Lightweight package init without importing heavy submodules to avoid side effects
during test discovery and simple metadata imports. Import submodules directly,
e.g. `from mcp_graph_memory.manager import KnowledgeGraphManager`.
"""

from .version import GRAPH_MEMORY_VERSION

__version__ = GRAPH_MEMORY_VERSION

__all__: list[str] = [
    "__version__",
]
