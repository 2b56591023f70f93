"""
Graph Registry - CRUD for saved graph documents with version control.
In-memory store; every saved change appends a deep-copied version to the
document's history. Live Editor sessions are opened lazily per document.
"""

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from flowsynth.compiler.definitions import DefinitionRegistry
from flowsynth.compiler.editor import Editor
from flowsynth.compiler.persistence import GraphRecord, dump_store, load_store


def _now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentVersion(BaseModel):
    """Version metadata for a graph document."""
    version: int = 1
    created_at: datetime = Field(default_factory=_now)
    created_by: str = "user"
    change_note: str = ""


class GraphDocument(BaseModel):
    """A named, versioned graph."""
    graph_id: str = Field(default_factory=lambda: f"GR-{uuid.uuid4().hex[:8].upper()}")
    name: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    record: GraphRecord = Field(default_factory=GraphRecord)
    version_info: DocumentVersion = Field(default_factory=DocumentVersion)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class GraphRegistry:
    """
    Central registry for graph documents with full version history and one
    Editor session per open document.
    """

    def __init__(self, definitions: Optional[DefinitionRegistry] = None):
        self.definitions = definitions if definitions is not None else DefinitionRegistry.with_builtins()
        self._graphs: Dict[str, GraphDocument] = {}
        self._version_history: Dict[str, List[GraphDocument]] = {}  # graph_id -> [versions]
        self._editors: Dict[str, Editor] = {}

    # ── CRUD ──────────────────────────────────────────────────────────

    def create(self, document: GraphDocument) -> GraphDocument:
        """Create a new graph document."""
        document.created_at = _now()
        document.updated_at = _now()
        document.version_info = DocumentVersion(version=1, change_note="Created")

        self._graphs[document.graph_id] = document
        self._version_history[document.graph_id] = [copy.deepcopy(document)]
        return document

    def get(self, graph_id: str) -> Optional[GraphDocument]:
        return self._graphs.get(graph_id)

    def update(
        self,
        graph_id: str,
        record: GraphRecord,
        change_note: str = "",
        created_by: str = "user",
    ) -> Optional[GraphDocument]:
        """Replace a document's graph, creating a new version."""
        existing = self.get(graph_id)
        if not existing:
            return None

        document = existing.model_copy(update={
            "record": record,
            "version_info": DocumentVersion(
                version=existing.version_info.version + 1,
                created_by=created_by,
                change_note=change_note,
            ),
            "updated_at": _now(),
        })

        self._graphs[graph_id] = document
        self._version_history.setdefault(graph_id, []).append(copy.deepcopy(document))
        # Open sessions would be stale
        self._editors.pop(graph_id, None)
        return document

    def delete(self, graph_id: str) -> bool:
        removed = self._graphs.pop(graph_id, None)
        self._version_history.pop(graph_id, None)
        self._editors.pop(graph_id, None)
        return removed is not None

    def list_all(self) -> List[GraphDocument]:
        return sorted(self._graphs.values(), key=lambda g: g.updated_at, reverse=True)

    def search(self, query: str) -> List[GraphDocument]:
        q = query.lower()
        return [
            g for g in self._graphs.values()
            if q in g.name.lower() or q in g.description.lower() or any(q in t for t in g.tags)
        ]

    # ── Sessions ──────────────────────────────────────────────────────

    def open_editor(self, graph_id: str) -> Optional[Editor]:
        """Return the live Editor for a document, loading it on first use."""
        if graph_id in self._editors:
            return self._editors[graph_id]
        document = self.get(graph_id)
        if not document:
            return None
        editor = Editor(self.definitions, store=load_store(document.record))
        self._editors[graph_id] = editor
        return editor

    def commit(self, graph_id: str, change_note: str = "", created_by: str = "user") -> Optional[GraphDocument]:
        """Save the open Editor's root graph as a new version, keeping the session."""
        editor = self._editors.get(graph_id)
        document = self.get(graph_id)
        if editor is None or document is None:
            return None
        record = dump_store(editor.root, document.record.metadata)
        updated = self.update(graph_id, record, change_note=change_note, created_by=created_by)
        self._editors[graph_id] = editor
        return updated

    # ── Versioning ────────────────────────────────────────────────────

    def get_version(self, graph_id: str, version: int) -> Optional[GraphDocument]:
        history = self._version_history.get(graph_id, [])
        for d in history:
            if d.version_info.version == version:
                return d
        return None

    def list_versions(self, graph_id: str) -> List[Dict[str, Any]]:
        history = self._version_history.get(graph_id, [])
        return [
            {
                "version": d.version_info.version,
                "created_at": d.version_info.created_at.isoformat(),
                "created_by": d.version_info.created_by,
                "change_note": d.version_info.change_note,
                "node_count": len(d.record.nodes),
                "edge_count": len(d.record.edges),
            }
            for d in history
        ]

    def rollback(self, graph_id: str, version: int) -> Optional[GraphDocument]:
        """Rollback to a previous version (creates a new version from the old one)."""
        old = self.get_version(graph_id, version)
        if not old:
            return None
        return self.update(
            graph_id,
            copy.deepcopy(old.record),
            change_note=f"Rollback to v{version}",
        )

    # ── Import / Export ───────────────────────────────────────────────

    def export_graph(self, graph_id: str) -> Optional[Dict[str, Any]]:
        document = self.get(graph_id)
        if not document:
            return None
        return {
            "name": document.name,
            "description": document.description,
            "tags": list(document.tags),
            "graph": document.record.model_dump(mode="json", by_alias=True),
        }

    def import_graph(self, data: Dict[str, Any]) -> GraphDocument:
        record = GraphRecord.model_validate(data.get("graph", {}))
        document = GraphDocument(
            name=data.get("name") or "Imported graph",
            description=data.get("description", ""),
            tags=list(data.get("tags", [])),
            record=record,
        )
        return self.create(document)

    # ── Stats ─────────────────────────────────────────────────────────

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_graphs": len(self._graphs),
            "open_sessions": len(self._editors),
            "total_versions": sum(len(v) for v in self._version_history.values()),
            "total_definitions": len(self.definitions),
        }
