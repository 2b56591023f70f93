"""
Sub-graph Manager - composite (user-defined function) nodes.

A composite node owns an embedded GraphStore and a cached compiled body. Its
definition is ad hoc: generated from the node's declared parameters and
outputs, registered on the GraphStore that owns the node, and regenerated
whenever that signature changes.

A parameter port that is fed a value renders as a default argument
(`function f(param1 = 2)`). Unbound parameters render as bare names.
"""

import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from flowsynth.compiler.definitions import DefinitionRegistry
from flowsynth.compiler.errors import GraphMutationError, NotACompositeNode
from flowsynth.compiler.graph import (
    FLOW_IN, FLOW_OUT, BlockDefinition, CompositeSignature, Edge, GraphStore, Node,
    OptionSpec, RenderContext, generate_id,
)
from flowsynth.compiler.synthesizer import SynthesisResult, Synthesizer

logger = logging.getLogger(__name__)

COMPOSITE_CATEGORY = "customFunction"
ROOT_LABEL = "Main"


def render_composite(ctx: RenderContext) -> str:
    """Function wrapper around the cached body, or a default body from the outputs."""
    name = ctx.option("name", "customFunction")
    signature = ctx.custom_data or CompositeSignature()
    params = []
    for param in signature.parameters:
        value = ctx.input(param)
        params.append(f"{param} = {value}" if value else param)

    body = ctx.compiled_body
    if not body:
        if len(signature.outputs) == 1:
            body = f"return {signature.outputs[0]};"
        elif signature.outputs:
            body = f"return {{ {', '.join(signature.outputs)} }};"
        else:
            body = "// Function body"
    return f"function {name}({', '.join(params)}) {{\n{ctx.indent}{ctx.indented(body)}\n}}"


def build_definition(node: Node) -> BlockDefinition:
    signature = node.custom_data or CompositeSignature()
    return BlockDefinition(
        name=node.options.get("name") or "Custom Function",
        category=COMPOSITE_CATEGORY,
        node_type=node.node_type,
        description="User-defined function with an editable body",
        inputs=[FLOW_IN, *signature.parameters],
        outputs=[FLOW_OUT, *signature.outputs],
        options=[OptionSpec(name="name", default="customFunction")],
        template=render_composite,
    )


def copy_compiled_bodies(source: GraphStore, target: GraphStore) -> None:
    """Carry compiled bodies from a synthesized snapshot back onto the live store."""
    for node in source.nodes:
        if not node.is_composite:
            continue
        live = target.get_node(node.node_id)
        if live is None or not live.is_composite:
            continue
        live.compiled_body = node.compiled_body
        if node.subgraph is not None and live.subgraph is not None:
            copy_compiled_bodies(node.subgraph, live.subgraph)


def register_composites(store: GraphStore) -> int:
    """Re-register ad hoc definitions for every composite node, recursively."""
    count = 0
    for node in store.nodes:
        if not node.is_composite:
            continue
        store.register_adhoc(node.node_id, build_definition(node))
        count += 1
        if node.subgraph is not None:
            count += register_composites(node.subgraph)
    return count


class NavigationFrame(BaseModel):
    """A parent store suspended while one of its composite bodies is open."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    store: GraphStore
    label: str
    composite_id: Optional[str] = None


class SubgraphManager:
    """
    Owns the navigation stack over nested GraphStores and the composite
    signature operations. The active store is the one the editor mutates.
    """

    def __init__(self, root: GraphStore, synthesizer: Optional[Synthesizer] = None,
                 registry: Optional[DefinitionRegistry] = None):
        self.root = root
        self.active = root
        self.active_label = ROOT_LABEL
        self._stack: List[NavigationFrame] = []
        self._synthesizer = synthesizer or Synthesizer(registry)

    # ── Composite lifecycle ───────────────────────────────────────────

    def create_composite(self, name: str = "customFunction", position: Optional[Dict[str, float]] = None,
                         node_id: Optional[str] = None) -> Node:
        node_id = node_id or generate_id()
        node = Node(
            node_id=node_id,
            category=COMPOSITE_CATEGORY,
            node_type=node_id,
            options={"name": name},
            position=position or {"x": 0, "y": 0},
            custom_data=CompositeSignature(parameters=["param1"], outputs=["result"]),
            subgraph=GraphStore(),
        )
        self.active.add_node(node)
        self.active.register_adhoc(node_id, build_definition(node))
        logger.info(f"[SUBGRAPH] Created composite {node_id} ({name})")
        return node

    def _composite(self, node_id: str, store: Optional[GraphStore] = None) -> Node:
        store = store or self.active
        node = store.get_node(node_id)
        if node is None or not node.is_composite:
            raise NotACompositeNode(f"Node {node_id} is not a composite node", node_id)
        return node

    def regenerate(self, node: Node, store: Optional[GraphStore] = None) -> List[Edge]:
        """Rebuild a composite's definition and drop edges bound to vanished ports."""
        store = store or self.active
        definition = build_definition(node)
        store.register_adhoc(node.node_id, definition)
        dropped = [
            e for e in store.edges
            if (e.dest_node_id == node.node_id and e.dest_port not in definition.inputs)
            or (e.source_node_id == node.node_id and e.source_port not in definition.outputs)
        ]
        for edge in dropped:
            store.remove_edge(edge.edge_id)
        if dropped:
            logger.info(f"[SUBGRAPH] Dropped {len(dropped)} edge(s) from {node.node_id}")
        return dropped

    def _next_name(self, existing: List[str], prefix: str) -> str:
        n = len(existing) + 1
        while f"{prefix}{n}" in existing:
            n += 1
        return f"{prefix}{n}"

    def add_parameter(self, node_id: str, name: Optional[str] = None) -> List[Edge]:
        node = self._composite(node_id)
        params = node.custom_data.parameters
        name = name or self._next_name(params, "param")
        if name in params or name == FLOW_IN:
            raise GraphMutationError(f"Parameter '{name}' already exists on {node_id}", node_id)
        params.append(name)
        return self.regenerate(node)

    def remove_parameter(self, node_id: str, name: str) -> List[Edge]:
        node = self._composite(node_id)
        if name not in node.custom_data.parameters:
            raise GraphMutationError(f"Parameter '{name}' not found on {node_id}", node_id)
        node.custom_data.parameters.remove(name)
        return self.regenerate(node)

    def add_output(self, node_id: str, name: Optional[str] = None) -> List[Edge]:
        node = self._composite(node_id)
        outputs = node.custom_data.outputs
        name = name or self._next_name(outputs, "output")
        if name in outputs or name == FLOW_OUT:
            raise GraphMutationError(f"Output '{name}' already exists on {node_id}", node_id)
        outputs.append(name)
        return self.regenerate(node)

    def remove_output(self, node_id: str, name: str) -> List[Edge]:
        node = self._composite(node_id)
        if name not in node.custom_data.outputs:
            raise GraphMutationError(f"Output '{name}' not found on {node_id}", node_id)
        node.custom_data.outputs.remove(name)
        return self.regenerate(node)

    def rename(self, node_id: str, name: str) -> Node:
        node = self._composite(node_id)
        node.options["name"] = name
        self.regenerate(node)
        return node

    # ── Navigation ────────────────────────────────────────────────────

    @property
    def depth(self) -> int:
        return len(self._stack)

    def enter(self, node_id: str) -> GraphStore:
        node = self._composite(node_id)
        if node.subgraph is None:
            node.subgraph = GraphStore()
        self._stack.append(NavigationFrame(store=self.active, label=self.active_label, composite_id=node_id))
        self.active = node.subgraph
        self.active_label = node.options.get("name") or node_id
        logger.debug(f"[SUBGRAPH] Entered {node_id} (depth {self.depth})")
        return self.active

    def leave(self) -> SynthesisResult:
        """Compile the open body, cache it on its composite node and pop one level."""
        if not self._stack:
            raise GraphMutationError("Already at the top-level graph")
        result = self._synthesizer.synthesize(self.active)
        frame = self._stack.pop()
        composite = frame.store.get_node(frame.composite_id)
        if composite is not None and result.success:
            composite.compiled_body = result.code
        self.active = frame.store
        self.active_label = frame.label
        logger.debug(f"[SUBGRAPH] Left {frame.composite_id} (depth {self.depth})")
        return result

    def leave_to(self, level: int) -> List[SynthesisResult]:
        """Pop back to breadcrumb level `level` (0 is the top-level graph)."""
        if level < 0 or level > self.depth:
            raise GraphMutationError(f"Invalid navigation level {level}")
        results = []
        while self.depth > level:
            results.append(self.leave())
        return results

    def breadcrumb(self) -> List[str]:
        return [frame.label for frame in self._stack] + [self.active_label]

    # ── Compilation ───────────────────────────────────────────────────

    def compile_all(self, store: Optional[GraphStore] = None) -> int:
        """
        Recompile every composite body below `store`, innermost first, as one
        run under a single time budget. Raises SynthesisTimeout.
        """
        compiled = self._synthesizer.compile_bodies(store or self.root)
        logger.debug(f"[SUBGRAPH] Recompiled bodies of {compiled} composite node(s)")
        return compiled
