"""
Graph Model - Nodes, edges, block definitions and the Graph Store.
A GraphStore is the canonical node/edge set of one graph: the main graph or
the body of a composite node. Composite bodies are GraphStores themselves, so
nesting is structural rather than a special case.
"""

import copy
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

FLOW_OUT = "out"
FLOW_IN = "in"


def generate_id() -> str:
    return f"id_{uuid.uuid4().hex[:9]}"


def is_flow_pair(source_port: str, dest_port: str) -> bool:
    """Flow edges connect the canonical `out` port to the canonical `in` port."""
    return source_port == FLOW_OUT and dest_port == FLOW_IN


class OptionKind(str, Enum):
    """Editor widget kinds for block options."""
    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    MULTILINE = "multiline"
    CODE = "code"
    PROPERTY_LIST = "propertyList"


class OptionSpec(BaseModel):
    """One entry of a block's option schema."""
    name: str
    kind: OptionKind = OptionKind.TEXT
    default: Any = ""
    choices: List[str] = Field(default_factory=list)

    def accepts(self, value: Any) -> bool:
        if self.kind == OptionKind.SELECT and self.choices:
            return str(value) in self.choices
        if self.kind == OptionKind.NUMBER:
            try:
                float(value)
            except (TypeError, ValueError):
                return False
            return True
        if self.kind == OptionKind.PROPERTY_LIST:
            return isinstance(value, list)
        return True


class CompositeSignature(BaseModel):
    """Declared parameter and output names of a composite node."""
    parameters: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)


class RenderContext(BaseModel):
    """
    What a template sees: the node's options, the resolved text of its input
    ports, the synthesized content of its body slots, and the cached body of a
    composite node.
    """
    node_id: str
    category: str
    node_type: str
    options: Dict[str, Any] = Field(default_factory=dict)
    inputs: Dict[str, str] = Field(default_factory=dict)
    outputs: Dict[str, str] = Field(default_factory=dict)
    custom_data: Optional[CompositeSignature] = None
    compiled_body: Optional[str] = None
    indent: str = "  "

    def option(self, name: str, default: Any = "") -> Any:
        value = self.options.get(name)
        if value is None or value == "":
            return default
        return value

    def input(self, name: str, default: str = "") -> str:
        value = self.inputs.get(name)
        return value if value else default

    def output(self, name: str, default: str = "") -> str:
        value = self.outputs.get(name)
        return value if value else default

    def indented(self, text: str, levels: int = 1) -> str:
        """Indent every line of text after the first by `levels` indent units."""
        prefix = self.indent * levels
        return text.replace("\n", "\n" + prefix)


Template = Callable[[RenderContext], str]


class BlockDefinition(BaseModel):
    """Schema and template shared by every node of one category/type."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    category: str = ""
    node_type: str = ""
    description: str = ""
    inputs: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    options: List[OptionSpec] = Field(default_factory=list)
    template: Optional[Template] = None
    is_root: bool = False

    @field_validator("inputs", "outputs")
    @classmethod
    def ports_unique(cls, v: List[str]) -> List[str]:
        if len(set(v)) != len(v):
            raise ValueError(f"Port names must be unique within a definition: {v}")
        return v

    def option_spec(self, name: str) -> Optional[OptionSpec]:
        for spec in self.options:
            if spec.name == name:
                return spec
        return None

    def default_options(self) -> Dict[str, Any]:
        return {spec.name: copy.deepcopy(spec.default) for spec in self.options}

    @property
    def body_slots(self) -> List[str]:
        """Output ports other than the flow port; they hold nested statements."""
        return [p for p in self.outputs if p != FLOW_OUT]

    @property
    def value_inputs(self) -> List[str]:
        return [p for p in self.inputs if p != FLOW_IN]

    def describe(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "type": self.node_type,
            "description": self.description,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "options": [o.model_dump(mode="json") for o in self.options],
            "is_root": self.is_root,
        }


class PortReference(BaseModel):
    """An unresolved data binding: the producer node and its output port."""
    model_config = ConfigDict(frozen=True)

    node_id: str
    port: str


class Node(BaseModel):
    """
    A placed block. `parent_id`, `children` and `bindings` are derived by the
    RelationshipBuilder and never persisted.
    """
    node_id: str = Field(default_factory=generate_id)
    category: str
    node_type: str
    options: Dict[str, Any] = Field(default_factory=dict)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    position: Dict[str, float] = Field(default_factory=lambda: {"x": 0, "y": 0})
    size: Optional[Dict[str, float]] = None
    custom_data: Optional[CompositeSignature] = None
    subgraph: Optional["GraphStore"] = None
    compiled_body: Optional[str] = None

    parent_id: Optional[str] = Field(default=None, exclude=True)
    children: List[str] = Field(default_factory=list, exclude=True)
    bindings: Dict[str, PortReference] = Field(default_factory=dict, exclude=True)

    @property
    def is_composite(self) -> bool:
        return self.custom_data is not None


class Edge(BaseModel):
    """A directed connection from a source output port to a dest input port."""
    edge_id: str = Field(default_factory=generate_id)
    source_node_id: str
    source_port: str
    dest_node_id: str
    dest_port: str

    @property
    def is_flow(self) -> bool:
        return is_flow_pair(self.source_port, self.dest_port)

    def touches(self, node_id: str) -> bool:
        return self.source_node_id == node_id or self.dest_node_id == node_id

    def same_ports(self, other: "Edge") -> bool:
        return (
            self.source_node_id == other.source_node_id
            and self.source_port == other.source_port
            and self.dest_node_id == other.dest_node_id
            and self.dest_port == other.dest_port
        )


class GraphStore(BaseModel):
    """
    Canonical node and edge sets of one graph, in insertion order, plus the
    ad hoc definitions of the composite nodes it contains (node id -> def).
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    adhoc_definitions: Dict[str, BlockDefinition] = Field(default_factory=dict, exclude=True)

    _node_index: Optional[Dict[str, Node]] = PrivateAttr(default=None)

    # ── Nodes ─────────────────────────────────────────────────────────

    def _index(self) -> Dict[str, Node]:
        if self._node_index is None or len(self._node_index) != len(self.nodes):
            self._node_index = {n.node_id: n for n in self.nodes}
        return self._node_index

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._index().get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._index()

    def add_node(self, node: Node) -> Node:
        self.nodes.append(node)
        self._node_index = None
        return node

    def remove_node(self, node_id: str) -> List[Edge]:
        """Remove a node and every edge touching it. Returns the removed edges."""
        removed = [e for e in self.edges if e.touches(node_id)]
        self.edges = [e for e in self.edges if not e.touches(node_id)]
        self.nodes = [n for n in self.nodes if n.node_id != node_id]
        self.adhoc_definitions.pop(node_id, None)
        self._node_index = None
        return removed

    # ── Edges ─────────────────────────────────────────────────────────

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        for e in self.edges:
            if e.edge_id == edge_id:
                return e
        return None

    def add_edge(self, edge: Edge) -> Edge:
        self.edges.append(edge)
        return edge

    def remove_edge(self, edge_id: str) -> Optional[Edge]:
        edge = self.get_edge(edge_id)
        if edge is not None:
            self.edges = [e for e in self.edges if e.edge_id != edge_id]
        return edge

    def find_duplicate(self, edge: Edge) -> Optional[Edge]:
        for e in self.edges:
            if e.same_ports(edge):
                return e
        return None

    def incoming_edges(self, node_id: str, port: Optional[str] = None) -> List[Edge]:
        return [
            e for e in self.edges
            if e.dest_node_id == node_id and (port is None or e.dest_port == port)
        ]

    def outgoing_edges(self, node_id: str, port: Optional[str] = None) -> List[Edge]:
        return [
            e for e in self.edges
            if e.source_node_id == node_id and (port is None or e.source_port == port)
        ]

    # ── Definitions ───────────────────────────────────────────────────

    def register_adhoc(self, node_id: str, definition: BlockDefinition) -> None:
        self.adhoc_definitions[node_id] = definition

    def definition_for(self, node: Node, registry: Any) -> Optional[BlockDefinition]:
        """Ad hoc (per-node) definitions win over shared registry entries."""
        adhoc = self.adhoc_definitions.get(node.node_id)
        if adhoc is not None:
            return adhoc
        return registry.lookup(node.category, node.node_type)

    # ── Snapshots ─────────────────────────────────────────────────────

    def snapshot(self) -> "GraphStore":
        """Deep copy used as the frozen input of a synthesis run."""
        snap = self.model_copy(deep=True)
        snap._node_index = None
        return snap

    def get_stats(self) -> Dict[str, Any]:
        return {
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
            "flow_edges": sum(1 for e in self.edges if e.is_flow),
            "data_edges": sum(1 for e in self.edges if not e.is_flow),
            "composite_nodes": sum(1 for n in self.nodes if n.is_composite),
        }


Node.model_rebuild()
