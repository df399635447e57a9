"""
Plain-text backup of the knowledge graph.

After every mutation the full graph is rendered as JSON lines (all entities, then all
relations, one document per line, `_id` and `_rev` included) and the backup file is
overwritten in full. The backup is a mirror, not the source of truth: write failures are
logged and never undo the store write that preceded them.
"""

import json
from pathlib import Path

from .graph_logging import logger
from .models import KnowledgeGraph


def serialize_graph(graph: KnowledgeGraph) -> list[str]:
    """Render the graph as one JSON record per line: entities first, then relations."""
    lines: list[str] = []
    for e in graph.entities:
        lines.append(json.dumps(e.to_doc(), ensure_ascii=False))
    for r in graph.relations:
        lines.append(json.dumps(r.to_doc(), ensure_ascii=False))
    return lines


class BackupWriter:
    """Writes the JSONL backup file. A writer without a path is disabled and writes nothing."""

    def __init__(self, path: str | Path | None):
        self.path = Path(path) if path else None

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def write(self, graph: KnowledgeGraph) -> bool:
        """
        Overwrite the backup file with the given graph.

        Returns:
            True if the file was written, False if the backup is disabled or the write failed
        """
        if self.path is None:
            logger.debug("Backup file disabled; skipping write")
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                f.write("\n".join(serialize_graph(graph)))
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"⚠️ Failed to write backup file {self.path}: {e}")
            return False
        logger.debug(f"💾 Wrote backup file {self.path}")
        return True
