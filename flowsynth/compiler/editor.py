"""
Editor session - the two entry points consumed by a canvas: mutate() and synthesize().

mutate() validates a requested change against the active GraphStore and either
applies it completely or raises a GraphMutationError with the store untouched.
synthesize() runs on a deep-copied snapshot; while a run is in flight the
graph rejects mutation with GraphBusyError.
"""

import asyncio
import copy
import logging
import threading
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from flowsynth.compiler.definitions import DefinitionRegistry
from flowsynth.compiler.errors import (
    DanglingEdgeReference, DuplicateEdge, DuplicateNode, GraphBusyError,
    GraphMutationError, InvalidOptionValue, PortDirectionMismatch, SynthesisTimeout,
)
from flowsynth.compiler.graph import Edge, GraphStore, Node, generate_id
from flowsynth.compiler.relationships import RelationshipBuilder
from flowsynth.compiler.subgraph import COMPOSITE_CATEGORY, SubgraphManager, copy_compiled_bodies
from flowsynth.compiler.synthesizer import SynthesisResult, Synthesizer
from flowsynth.config.settings import settings

logger = logging.getLogger(__name__)

DUPLICATE_OFFSET = 50.0


# ── Mutations ────────────────────────────────────────────────────────────────

class AddNode(BaseModel):
    action: Literal["add_node"] = "add_node"
    category: str
    node_type: str
    node_id: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    inputs: Dict[str, Any] = Field(default_factory=dict)
    position: Dict[str, float] = Field(default_factory=lambda: {"x": 0, "y": 0})


class RemoveNode(BaseModel):
    action: Literal["remove_node"] = "remove_node"
    node_id: str


class AddEdge(BaseModel):
    action: Literal["add_edge"] = "add_edge"
    source_node_id: str
    source_port: str
    dest_node_id: str
    dest_port: str
    edge_id: Optional[str] = None


class RemoveEdge(BaseModel):
    action: Literal["remove_edge"] = "remove_edge"
    edge_id: str


class DuplicateNodeMutation(BaseModel):
    action: Literal["duplicate_node"] = "duplicate_node"
    node_id: str
    offset: float = DUPLICATE_OFFSET


class SetOption(BaseModel):
    action: Literal["set_option"] = "set_option"
    node_id: str
    name: str
    value: Any = None


class SetInput(BaseModel):
    action: Literal["set_input"] = "set_input"
    node_id: str
    port: str
    value: Any = None


class AddParameter(BaseModel):
    action: Literal["add_parameter"] = "add_parameter"
    node_id: str
    name: Optional[str] = None


class RemoveParameter(BaseModel):
    action: Literal["remove_parameter"] = "remove_parameter"
    node_id: str
    name: str


class AddOutput(BaseModel):
    action: Literal["add_output"] = "add_output"
    node_id: str
    name: Optional[str] = None


class RemoveOutput(BaseModel):
    action: Literal["remove_output"] = "remove_output"
    node_id: str
    name: str


Mutation = Annotated[
    Union[
        AddNode, RemoveNode, AddEdge, RemoveEdge, DuplicateNodeMutation, SetOption, SetInput,
        AddParameter, RemoveParameter, AddOutput, RemoveOutput,
    ],
    Field(discriminator="action"),
]

_mutation_adapter = TypeAdapter(Mutation)


def parse_mutation(data: Dict[str, Any]):
    """Validate a raw mutation payload into its typed model."""
    return _mutation_adapter.validate_python(data)


class MutationResult(BaseModel):
    action: str
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    removed_edge_ids: List[str] = Field(default_factory=list)


# ── Editor ───────────────────────────────────────────────────────────────────

class Editor:
    """One editing session over a (possibly nested) graph."""

    def __init__(
        self,
        registry: Optional[DefinitionRegistry] = None,
        store: Optional[GraphStore] = None,
        recursion_limit: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.registry = registry if registry is not None else DefinitionRegistry.with_builtins()
        self.recursion_limit = recursion_limit if recursion_limit is not None else settings.recursion_limit
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.synthesis_timeout_seconds
        self._builder = RelationshipBuilder(self.registry)
        self.subgraphs = SubgraphManager(store or GraphStore(), self._new_synthesizer())
        self._lock = threading.Lock()
        self._in_flight = 0

    @property
    def store(self) -> GraphStore:
        """The active GraphStore (the root graph or an open composite body)."""
        return self.subgraphs.active

    @property
    def root(self) -> GraphStore:
        return self.subgraphs.root

    @property
    def busy(self) -> bool:
        return self._in_flight > 0

    def _new_synthesizer(self, cancel_event: Optional[threading.Event] = None) -> Synthesizer:
        return Synthesizer(
            self.registry,
            recursion_limit=self.recursion_limit,
            timeout_seconds=self.timeout_seconds,
            cancel_event=cancel_event,
        )

    # ── mutate ────────────────────────────────────────────────────────

    def mutate(self, mutation) -> MutationResult:
        if isinstance(mutation, dict):
            mutation = parse_mutation(mutation)
        if self.busy:
            raise GraphBusyError()

        handler = getattr(self, f"_apply_{mutation.action}")
        result = handler(mutation)
        self._builder.rebuild(self.store)
        logger.debug(f"[EDITOR] Applied {mutation.action}")
        return result

    def _require_node(self, node_id: str) -> Node:
        node = self.store.get_node(node_id)
        if node is None:
            raise DanglingEdgeReference(f"Node {node_id} does not exist", node_id)
        return node

    def _apply_add_node(self, m: AddNode) -> MutationResult:
        if m.node_id and self.store.has_node(m.node_id):
            raise DuplicateNode(f"Node {m.node_id} already exists", m.node_id)

        if m.category == COMPOSITE_CATEGORY:
            node = self.subgraphs.create_composite(
                name=m.options.get("name") or "customFunction",
                position=m.position,
                node_id=m.node_id,
            )
            return MutationResult(action=m.action, node_id=node.node_id)

        definition = self.registry.lookup(m.category, m.node_type)
        if definition is None:
            raise GraphMutationError(f"No definition registered for {m.category}.{m.node_type}")
        for name, value in m.options.items():
            self._check_option(definition, name, value, m.node_id or "")

        node = Node(
            category=m.category,
            node_type=m.node_type,
            options={**definition.default_options(), **m.options},
            inputs=dict(m.inputs),
            position=dict(m.position),
        )
        if m.node_id:
            node.node_id = m.node_id
        self.store.add_node(node)
        return MutationResult(action=m.action, node_id=node.node_id)

    def _apply_remove_node(self, m: RemoveNode) -> MutationResult:
        self._require_node(m.node_id)
        removed = self.store.remove_node(m.node_id)
        return MutationResult(
            action=m.action, node_id=m.node_id, removed_edge_ids=[e.edge_id for e in removed],
        )

    def _apply_add_edge(self, m: AddEdge) -> MutationResult:
        edge = Edge(
            source_node_id=m.source_node_id,
            source_port=m.source_port,
            dest_node_id=m.dest_node_id,
            dest_port=m.dest_port,
        )
        if m.edge_id:
            edge.edge_id = m.edge_id
        self.validate_edge(edge)
        self.store.add_edge(edge)
        return MutationResult(action=m.action, edge_id=edge.edge_id)

    def validate_edge(self, edge: Edge) -> None:
        """Raise a GraphMutationError if the edge may not be added to the active store."""
        source = self._require_node(edge.source_node_id)
        dest = self._require_node(edge.dest_node_id)
        source_def = self.store.definition_for(source, self.registry)
        dest_def = self.store.definition_for(dest, self.registry)
        if source_def is None or dest_def is None:
            raise DanglingEdgeReference("Cannot connect a node without a definition", edge.edge_id)

        if edge.source_port not in source_def.outputs:
            if edge.source_port in source_def.inputs:
                raise PortDirectionMismatch(
                    f"{edge.source_node_id}.{edge.source_port} is an input, not an output", edge.edge_id,
                )
            raise DanglingEdgeReference(
                f"{edge.source_node_id} has no port '{edge.source_port}'", edge.edge_id,
            )
        if edge.dest_port not in dest_def.inputs:
            if edge.dest_port in dest_def.outputs:
                raise PortDirectionMismatch(
                    f"{edge.dest_node_id}.{edge.dest_port} is an output, not an input", edge.edge_id,
                )
            raise DanglingEdgeReference(
                f"{edge.dest_node_id} has no port '{edge.dest_port}'", edge.edge_id,
            )

        if self.store.get_edge(edge.edge_id) is not None:
            raise DuplicateEdge(f"Edge {edge.edge_id} already exists", edge.edge_id)
        existing = self.store.find_duplicate(edge)
        if existing is not None:
            raise DuplicateEdge(
                f"{edge.source_node_id}.{edge.source_port} is already connected to "
                f"{edge.dest_node_id}.{edge.dest_port} ({existing.edge_id})",
                existing.edge_id,
            )

    def _apply_remove_edge(self, m: RemoveEdge) -> MutationResult:
        if self.store.remove_edge(m.edge_id) is None:
            raise DanglingEdgeReference(f"Edge {m.edge_id} does not exist", m.edge_id)
        return MutationResult(action=m.action, edge_id=m.edge_id, removed_edge_ids=[m.edge_id])

    def _apply_duplicate_node(self, m: DuplicateNodeMutation) -> MutationResult:
        original = self._require_node(m.node_id)
        clone = original.model_copy(deep=True)
        clone.node_id = generate_id()
        clone.position = {
            "x": original.position.get("x", 0) + m.offset,
            "y": original.position.get("y", 0) + m.offset,
        }
        if clone.is_composite:
            clone.node_type = clone.node_id
        self.store.add_node(clone)
        adhoc = self.store.adhoc_definitions.get(original.node_id)
        if adhoc is not None:
            definition = adhoc.model_copy()
            definition.node_type = clone.node_id
            self.store.register_adhoc(clone.node_id, definition)
        return MutationResult(action=m.action, node_id=clone.node_id)

    def _check_option(self, definition, name: str, value: Any, node_id: str) -> None:
        spec = definition.option_spec(name)
        if spec is None:
            raise InvalidOptionValue(f"{definition.name} has no option '{name}'", node_id)
        if not spec.accepts(value):
            allowed = f" (allowed: {spec.choices})" if spec.choices else ""
            raise InvalidOptionValue(f"Invalid value {value!r} for option '{name}'{allowed}", node_id)

    def _apply_set_option(self, m: SetOption) -> MutationResult:
        node = self._require_node(m.node_id)
        definition = self.store.definition_for(node, self.registry)
        if definition is None:
            raise DanglingEdgeReference(f"Node {m.node_id} has no definition", m.node_id)
        self._check_option(definition, m.name, m.value, m.node_id)
        if node.is_composite and m.name == "name":
            self.subgraphs.rename(m.node_id, str(m.value))
        else:
            node.options[m.name] = copy.deepcopy(m.value)
        return MutationResult(action=m.action, node_id=m.node_id)

    def _apply_set_input(self, m: SetInput) -> MutationResult:
        node = self._require_node(m.node_id)
        definition = self.store.definition_for(node, self.registry)
        if definition is None or m.port not in definition.value_inputs:
            raise DanglingEdgeReference(f"{m.node_id} has no input port '{m.port}'", m.node_id)
        if m.value is None or m.value == "":
            node.inputs.pop(m.port, None)
        else:
            node.inputs[m.port] = m.value
        return MutationResult(action=m.action, node_id=m.node_id)

    def _apply_add_parameter(self, m: AddParameter) -> MutationResult:
        dropped = self.subgraphs.add_parameter(m.node_id, m.name)
        return MutationResult(action=m.action, node_id=m.node_id, removed_edge_ids=[e.edge_id for e in dropped])

    def _apply_remove_parameter(self, m: RemoveParameter) -> MutationResult:
        dropped = self.subgraphs.remove_parameter(m.node_id, m.name)
        return MutationResult(action=m.action, node_id=m.node_id, removed_edge_ids=[e.edge_id for e in dropped])

    def _apply_add_output(self, m: AddOutput) -> MutationResult:
        dropped = self.subgraphs.add_output(m.node_id, m.name)
        return MutationResult(action=m.action, node_id=m.node_id, removed_edge_ids=[e.edge_id for e in dropped])

    def _apply_remove_output(self, m: RemoveOutput) -> MutationResult:
        dropped = self.subgraphs.remove_output(m.node_id, m.name)
        return MutationResult(action=m.action, node_id=m.node_id, removed_edge_ids=[e.edge_id for e in dropped])

    # ── synthesize ────────────────────────────────────────────────────

    def synthesize(self, cancel_event: Optional[threading.Event] = None,
                   compile_bodies: bool = False) -> SynthesisResult:
        """
        Synthesize the active store from a snapshot taken now. With
        compile_bodies, composite bodies are recompiled inside the same run and
        copied back onto the live composites when it succeeds.
        """
        live = self.store
        snapshot = live.snapshot()
        with self._lock:
            self._in_flight += 1
        try:
            result = self._new_synthesizer(cancel_event).synthesize(snapshot, compile_bodies=compile_bodies)
            cancelled = cancel_event is not None and cancel_event.is_set()
            if compile_bodies and result.success and not cancelled:
                copy_compiled_bodies(snapshot, live)
            return result
        finally:
            with self._lock:
                self._in_flight -= 1

    def job(self, compile_bodies: bool = False) -> "SynthesisJob":
        return SynthesisJob(self, compile_bodies=compile_bodies)


class SynthesisJob:
    """
    A cancellable synthesis run. Reports exactly one SynthesisResult; later
    calls return the same result.
    """

    def __init__(self, editor: Editor, compile_bodies: bool = False):
        self._editor = editor
        self._compile_bodies = compile_bodies
        self._cancel = threading.Event()
        self._result: Optional[SynthesisResult] = None

    @property
    def result(self) -> Optional[SynthesisResult]:
        return self._result

    @property
    def done(self) -> bool:
        return self._result is not None

    def cancel(self) -> None:
        self._cancel.set()

    def _report(self, result: SynthesisResult) -> SynthesisResult:
        if self._result is None:
            self._result = result
        return self._result

    def run(self) -> SynthesisResult:
        if self._result is not None:
            return self._result
        return self._report(
            self._editor.synthesize(cancel_event=self._cancel, compile_bodies=self._compile_bodies)
        )

    async def run_async(self) -> SynthesisResult:
        """Run on a worker thread, bounded by the editor's timeout budget."""
        if self._result is not None:
            return self._result
        budget = self._editor.timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.run), timeout=budget)
        except asyncio.TimeoutError:
            self.cancel()
            error = SynthesisTimeout(budget, budget)
            logger.error(f"[EDITOR] {error.message}")
            return self._report(SynthesisResult(error=error.message, error_type=error.error_type))
