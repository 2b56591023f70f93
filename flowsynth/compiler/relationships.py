"""
Relationship Builder - derives nesting and data bindings from the edge set.

Pass 1 links flow edges (`out` -> `in`) into parent/children.
Pass 2 records every other edge as a binding on the dest port. A binding on a
node's `in` port places that node in the producer's named body slot.

Derived state is built into fresh maps and committed to the nodes only once
both passes finish, so readers never observe a half-built graph.
"""

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from flowsynth.compiler.graph import FLOW_IN, Edge, GraphStore, PortReference

logger = logging.getLogger(__name__)


class Relationships(BaseModel):
    """Snapshot of the derived state committed by one rebuild."""
    parents: Dict[str, str] = Field(default_factory=dict)
    children: Dict[str, List[str]] = Field(default_factory=dict)
    bindings: Dict[str, Dict[str, PortReference]] = Field(default_factory=dict)
    slots: Dict[str, Dict[str, List[str]]] = Field(default_factory=dict)
    dropped_edge_ids: List[str] = Field(default_factory=list)
    dangling_edge_ids: List[str] = Field(default_factory=list)

    def slot_members(self, node_id: str, port: str) -> List[str]:
        return self.slots.get(node_id, {}).get(port, [])

    def has_incoming_in(self, node_id: str) -> bool:
        """True when a flow parent or a body slot feeds the node's `in` port."""
        return node_id in self.parents or FLOW_IN in self.bindings.get(node_id, {})


class RelationshipBuilder:
    """Rebuilds parent/children/bindings on every node of a GraphStore."""

    def __init__(self, registry=None):
        self._registry = registry

    def _is_dangling(self, store: GraphStore, edge: Edge) -> bool:
        source = store.get_node(edge.source_node_id)
        dest = store.get_node(edge.dest_node_id)
        if source is None or dest is None:
            return True
        if self._registry is None:
            return False
        source_def = store.definition_for(source, self._registry)
        if source_def is not None and edge.source_port not in source_def.outputs:
            return True
        dest_def = store.definition_for(dest, self._registry)
        if dest_def is not None and edge.dest_port not in dest_def.inputs:
            return True
        return False

    def effective_edges(self, store: GraphStore, rel: Optional[Relationships] = None) -> List[Edge]:
        """Non-dangling edges, keeping only the first edge into each (dest, port)."""
        rel = rel if rel is not None else Relationships()
        seen: Dict[Tuple[str, str], str] = {}
        effective: List[Edge] = []
        for edge in store.edges:
            if self._is_dangling(store, edge):
                rel.dangling_edge_ids.append(edge.edge_id)
                continue
            key = (edge.dest_node_id, edge.dest_port)
            if key in seen:
                rel.dropped_edge_ids.append(edge.edge_id)
                logger.warning(
                    f"[GRAPH] Dropping edge {edge.edge_id}: {edge.dest_node_id}.{edge.dest_port} "
                    f"is already fed by edge {seen[key]}"
                )
                continue
            seen[key] = edge.edge_id
            effective.append(edge)
        return effective

    def rebuild(self, store: GraphStore) -> Relationships:
        rel = Relationships()
        edges = self.effective_edges(store, rel)

        # Pass 1: flow edges
        for edge in edges:
            if not edge.is_flow:
                continue
            rel.parents[edge.dest_node_id] = edge.source_node_id
            kids = rel.children.setdefault(edge.source_node_id, [])
            if edge.dest_node_id not in kids:
                kids.append(edge.dest_node_id)

        # Pass 2: data edges
        for edge in edges:
            if edge.is_flow:
                continue
            ref = PortReference(node_id=edge.source_node_id, port=edge.source_port)
            rel.bindings.setdefault(edge.dest_node_id, {})[edge.dest_port] = ref
            if edge.dest_port == FLOW_IN:
                members = rel.slots.setdefault(edge.source_node_id, {}).setdefault(edge.source_port, [])
                if edge.dest_node_id not in members:
                    members.append(edge.dest_node_id)

        # Commit
        for node in store.nodes:
            node.parent_id = rel.parents.get(node.node_id)
            node.children = list(rel.children.get(node.node_id, []))
            node.bindings = dict(rel.bindings.get(node.node_id, {}))

        if rel.dangling_edge_ids:
            logger.debug(f"[GRAPH] Skipped {len(rel.dangling_edge_ids)} dangling edge(s)")
        return rel
