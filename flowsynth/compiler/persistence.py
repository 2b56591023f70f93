"""
Persistence - the saved graph record.

JSON layout (camelCase keys):
    {nodes: [{id, category, type, options, inputs, position, size, customData}],
     edges: [{id, sourceNodeId, sourcePort, destNodeId, destPort}],
     subgraphs: {compositeId: {nodes, edges, subgraphs, compiledBody}},
     metadata: {version, createdAt, modifiedAt}}

Loading re-registers every composite's ad hoc definition before returning, so
synthesis of a reloaded graph matches the graph that was saved.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from flowsynth.compiler.graph import CompositeSignature, Edge, GraphStore, Node
from flowsynth.compiler.subgraph import register_composites

logger = logging.getLogger(__name__)

RECORD_VERSION = "1.0"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeRecord(_Record):
    node_id: str = Field(alias="id")
    category: str
    node_type: str = Field(alias="type")
    options: Dict[str, Any] = Field(default_factory=dict)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    position: Dict[str, float] = Field(default_factory=lambda: {"x": 0, "y": 0})
    size: Optional[Dict[str, float]] = None
    custom_data: Optional[CompositeSignature] = None


class EdgeRecord(_Record):
    edge_id: str = Field(alias="id")
    source_node_id: str
    source_port: str
    dest_node_id: str
    dest_port: str


class _StoreRecord(_Record):
    """Nodes and edges of one store. Ids must be unique within the store."""
    nodes: List[NodeRecord] = Field(default_factory=list)
    edges: List[EdgeRecord] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def validate_unique_node_ids(cls, v: List[NodeRecord]) -> List[NodeRecord]:
        seen = set()
        for node in v:
            if node.node_id in seen:
                raise ValueError(f"Duplicate node id '{node.node_id}'")
            seen.add(node.node_id)
        return v

    @field_validator("edges")
    @classmethod
    def validate_unique_edge_ids(cls, v: List[EdgeRecord]) -> List[EdgeRecord]:
        seen = set()
        for edge in v:
            if edge.edge_id in seen:
                raise ValueError(f"Duplicate edge id '{edge.edge_id}'")
            seen.add(edge.edge_id)
        return v


class SubgraphRecord(_StoreRecord):
    subgraphs: Dict[str, "SubgraphRecord"] = Field(default_factory=dict)
    compiled_body: Optional[str] = None


class RecordMetadata(_Record):
    version: str = RECORD_VERSION
    created_at: datetime = Field(default_factory=_now)
    modified_at: datetime = Field(default_factory=_now)


class GraphRecord(_StoreRecord):
    """Top-level saved graph."""
    subgraphs: Dict[str, SubgraphRecord] = Field(default_factory=dict)
    metadata: RecordMetadata = Field(default_factory=RecordMetadata)


SubgraphRecord.model_rebuild()


# ── Dump ─────────────────────────────────────────────────────────────────────

def _dump_parts(store: GraphStore) -> Dict[str, Any]:
    nodes = [
        NodeRecord(
            node_id=n.node_id,
            category=n.category,
            node_type=n.node_type,
            options=dict(n.options),
            inputs=dict(n.inputs),
            position=dict(n.position),
            size=dict(n.size) if n.size else None,
            custom_data=n.custom_data.model_copy(deep=True) if n.custom_data else None,
        )
        for n in store.nodes
    ]
    edges = [
        EdgeRecord(
            edge_id=e.edge_id,
            source_node_id=e.source_node_id,
            source_port=e.source_port,
            dest_node_id=e.dest_node_id,
            dest_port=e.dest_port,
        )
        for e in store.edges
    ]
    subgraphs: Dict[str, SubgraphRecord] = {}
    for n in store.nodes:
        if not n.is_composite:
            continue
        inner = _dump_parts(n.subgraph or GraphStore())
        subgraphs[n.node_id] = SubgraphRecord(compiled_body=n.compiled_body, **inner)
    return {"nodes": nodes, "edges": edges, "subgraphs": subgraphs}


def dump_store(store: GraphStore, metadata: Optional[RecordMetadata] = None) -> GraphRecord:
    metadata = metadata.model_copy() if metadata else RecordMetadata()
    metadata.modified_at = _now()
    return GraphRecord(metadata=metadata, **_dump_parts(store))


# ── Load ─────────────────────────────────────────────────────────────────────

def _load_parts(nodes: List[NodeRecord], edges: List[EdgeRecord],
                subgraphs: Dict[str, SubgraphRecord]) -> GraphStore:
    store = GraphStore()
    for rec in nodes:
        node = Node(
            node_id=rec.node_id,
            category=rec.category,
            node_type=rec.node_type,
            options=dict(rec.options),
            inputs=dict(rec.inputs),
            position=dict(rec.position),
            size=dict(rec.size) if rec.size else None,
            custom_data=rec.custom_data.model_copy(deep=True) if rec.custom_data else None,
        )
        if node.is_composite:
            inner = subgraphs.get(node.node_id)
            if inner is not None:
                node.subgraph = _load_parts(inner.nodes, inner.edges, inner.subgraphs)
                node.compiled_body = inner.compiled_body
            else:
                node.subgraph = GraphStore()
        store.add_node(node)
    for rec in edges:
        store.add_edge(Edge(
            edge_id=rec.edge_id,
            source_node_id=rec.source_node_id,
            source_port=rec.source_port,
            dest_node_id=rec.dest_node_id,
            dest_port=rec.dest_port,
        ))
    return store


def load_store(record: Union[GraphRecord, Dict[str, Any]]) -> GraphStore:
    """Build a GraphStore from a record and restore composite definitions."""
    if not isinstance(record, GraphRecord):
        record = GraphRecord.model_validate(record)
    store = _load_parts(record.nodes, record.edges, record.subgraphs)
    restored = register_composites(store)
    logger.info(
        f"[PERSIST] Loaded graph: {len(store.nodes)} nodes, {len(store.edges)} edges, "
        f"{restored} composite definition(s)"
    )
    return store


# ── JSON helpers ─────────────────────────────────────────────────────────────

def dumps(store: GraphStore, metadata: Optional[RecordMetadata] = None, indent: int = 2) -> str:
    record = dump_store(store, metadata)
    return json.dumps(record.model_dump(mode="json", by_alias=True), indent=indent)


def loads(text: str) -> GraphStore:
    return load_store(json.loads(text))
