"""Centralized application/version constants for graph-memory-mcp."""

# Bump when application version changes
GRAPH_MEMORY_VERSION: str = "1.0.0"
