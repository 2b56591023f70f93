"""
Code Synthesizer - turns a GraphStore + DefinitionRegistry into one text artifact.

Synthesis Pipeline:
1. Relationship rebuild (parents, children, bindings, body slots)
2. Arena allocation (dense node index + parallel status and memo arrays)
3. Entry-point discovery
4. Recursive resolve() from each entry, then a sweep over unprocessed nodes
5. Join with blank lines and trim

Recoverable problems (missing definition, circular reference, recursion ceiling,
template failure) are rendered inline and recorded as diagnostics. Only
SynthesisTimeout aborts a run.
"""

import logging
import threading
import time
from enum import IntEnum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from flowsynth.compiler.definitions import DefinitionRegistry
from flowsynth.compiler.errors import (
    CircularReference, DefinitionNotFound, FlowSynthError, RecursionLimitExceeded,
    SynthesisTimeout, TemplateExecutionError,
)
from flowsynth.compiler.graph import FLOW_IN, GraphStore, Node, RenderContext
from flowsynth.compiler.relationships import RelationshipBuilder, Relationships
from flowsynth.config.settings import settings

logger = logging.getLogger(__name__)


class NodeStatus(IntEnum):
    UNVISITED = 0
    IN_PROGRESS = 1
    RESOLVED = 2


class Diagnostic(BaseModel):
    """A recoverable problem that was rendered inline."""
    kind: str
    node_id: str
    message: str


class SynthesisResult(BaseModel):
    """Result of one synthesis run."""
    success: bool = False
    code: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    entry_node_ids: List[str] = Field(default_factory=list)
    node_count: int = 0
    edge_count: int = 0
    synthesis_time_ms: float = 0.0


class Synthesizer:
    """
    Recursive resolver with a per-run arena. One instance may be reused for
    many runs; all per-run state is reset by synthesize().
    """

    def __init__(
        self,
        registry: Optional[DefinitionRegistry] = None,
        recursion_limit: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        indent: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.registry = registry if registry is not None else DefinitionRegistry.with_builtins()
        self.recursion_limit = recursion_limit if recursion_limit is not None else settings.recursion_limit
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.synthesis_timeout_seconds
        self.indent = indent if indent is not None else settings.indent
        self._clock = clock
        self._cancel = cancel_event
        self._builder = RelationshipBuilder(self.registry)
        self._reset(GraphStore())
        self._start()

    # ── Public ────────────────────────────────────────────────────────

    def synthesize(self, store: GraphStore, compile_bodies: bool = False) -> SynthesisResult:
        """Run synthesis, converting a timeout into a failed result."""
        wall_start = time.time()
        result = SynthesisResult(node_count=len(store.nodes), edge_count=len(store.edges))
        try:
            result.code = self.run(store, compile_bodies=compile_bodies)
            result.success = True
        except SynthesisTimeout as e:
            logger.error(f"[SYNTH] {e.message}")
            result.error = e.message
            result.error_type = e.error_type
        result.diagnostics = list(self._diagnostics)
        result.entry_node_ids = list(self._entries)
        result.synthesis_time_ms = round((time.time() - wall_start) * 1000, 1)
        logger.debug(
            f"[SYNTH] {result.node_count} nodes, {len(result.diagnostics)} diagnostics, "
            f"{result.synthesis_time_ms}ms"
        )
        return result

    def run(self, store: GraphStore, compile_bodies: bool = False) -> str:
        """
        Run synthesis and return the text. Raises SynthesisTimeout.

        With compile_bodies, every composite body below `store` is recompiled
        first, innermost first, under the same time budget and cancel event.
        """
        self._start()
        if compile_bodies:
            self._compile_bodies(store)
        return self._run_store(store)

    def compile_bodies(self, store: GraphStore) -> int:
        """Recompile composite bodies below `store` under one budget. Raises SynthesisTimeout."""
        self._start()
        return self._compile_bodies(store)

    def _compile_bodies(self, store: GraphStore) -> int:
        compiled = 0
        for node in store.nodes:
            if not node.is_composite or node.subgraph is None:
                continue
            compiled += self._compile_bodies(node.subgraph)
            node.compiled_body = self._run_store(node.subgraph)
            compiled += 1
        return compiled

    def _run_store(self, store: GraphStore) -> str:
        rel = self._builder.rebuild(store)
        self._reset(store, rel)

        texts: List[str] = []
        for node_id in self.discover_entries():
            if self._status[self._index[node_id]] != NodeStatus.UNVISITED:
                continue
            self._entries.append(node_id)
            texts.append(self.resolve(node_id, 0))

        # Sweep: nothing is silently dropped
        for node in store.nodes:
            if self._status[self._index[node.node_id]] == NodeStatus.UNVISITED:
                self._entries.append(node.node_id)
                texts.append(self.resolve(node.node_id, 0))

        return "\n\n".join(t for t in texts if t).rstrip()

    def discover_entries(self) -> List[str]:
        """
        Program roots and nodes with nothing feeding their `in` port, in
        insertion order. Pure value producers are left to their consumers.
        """
        rel = self._rel
        value_consumed = set()
        for bound in rel.bindings.values():
            for port, port_ref in bound.items():
                if port != FLOW_IN:
                    value_consumed.add(port_ref.node_id)

        entries = []
        for node in self._store.nodes:
            definition = self._store.definition_for(node, self.registry)
            if definition is not None and definition.is_root:
                entries.append(node.node_id)
                continue
            if rel.has_incoming_in(node.node_id):
                continue
            if self._is_pure_producer(node.node_id, value_consumed):
                continue
            entries.append(node.node_id)
        return entries

    def resolve(self, node_id: str, depth: int) -> str:
        if depth > self.recursion_limit:
            return self._diagnose(
                RecursionLimitExceeded(f"Recursion limit exceeded at {node_id}", node_id),
                f"/* Recursion limit exceeded at {node_id} */",
            )
        self._check_budget()

        idx = self._index.get(node_id)
        if idx is None:
            return ""
        status = self._status[idx]
        if status == NodeStatus.RESOLVED:
            return self._memo[idx]
        if status == NodeStatus.IN_PROGRESS:
            return self._diagnose(
                CircularReference(f"Circular reference to {node_id}", node_id),
                f"/* Circular reference to {node_id} */",
            )

        self._status[idx] = NodeStatus.IN_PROGRESS
        try:
            text = self._expand(node_id, depth)
        except RecursionError:
            # Interpreter stack exhausted below the configured limit
            self._status[idx] = NodeStatus.UNVISITED
            return self._diagnose(
                RecursionLimitExceeded(f"Recursion limit exceeded at {node_id}", node_id),
                f"/* Recursion limit exceeded at {node_id} */",
            )
        self._finish(idx, text)
        return text

    def _expand(self, node_id: str, depth: int) -> str:
        node = self._store.get_node(node_id)
        definition = self._store.definition_for(node, self.registry)
        if definition is None:
            return self._diagnose(
                DefinitionNotFound(node.category, node.node_type, node_id),
                f"/* Block {node_id} has no definition ({node.category}.{node.node_type}) */",
            )

        inputs: Dict[str, str] = {}
        for port in definition.value_inputs:
            ref = node.bindings.get(port)
            if ref is not None:
                inputs[port] = self.resolve(ref.node_id, depth + 1)
            elif node.inputs.get(port) not in (None, ""):
                inputs[port] = str(node.inputs[port])

        outputs: Dict[str, str] = {}
        for slot in definition.body_slots:
            parts = [self.resolve(member, depth + 1) for member in self._rel.slot_members(node_id, slot)]
            outputs[slot] = "\n".join(p for p in parts if p)

        ctx = RenderContext(
            node_id=node_id,
            category=node.category,
            node_type=node.node_type,
            options={**definition.default_options(), **node.options},
            inputs=inputs,
            outputs=outputs,
            custom_data=node.custom_data,
            compiled_body=node.compiled_body,
            indent=self.indent,
        )
        text = self._render(node, definition.template, ctx)

        # Sequencing: the memo holds the full continuation
        lines = [text] if text else []
        for child_id in node.children:
            child_text = self.resolve(child_id, depth + 1)
            if child_text:
                lines.append(child_text)
        return "\n".join(lines)

    def cancel(self) -> None:
        if self._cancel is None:
            self._cancel = threading.Event()
        self._cancel.set()

    # ── Internals ─────────────────────────────────────────────────────

    def _reset(self, store: GraphStore, rel: Optional[Relationships] = None) -> None:
        self._store = store
        self._rel = rel or Relationships()
        self._index: Dict[str, int] = {n.node_id: i for i, n in enumerate(store.nodes)}
        self._status: List[NodeStatus] = [NodeStatus.UNVISITED] * len(store.nodes)
        self._memo: List[str] = [""] * len(store.nodes)
        self._entries: List[str] = []

    def _start(self) -> None:
        self._diagnostics: List[Diagnostic] = []
        self._started = self._clock()

    def _finish(self, idx: int, text: str) -> None:
        self._status[idx] = NodeStatus.RESOLVED
        self._memo[idx] = text

    def _check_budget(self) -> None:
        elapsed = self._clock() - self._started
        if self._cancel is not None and self._cancel.is_set():
            raise SynthesisTimeout(elapsed, self.timeout_seconds, cancelled=True)
        if elapsed > self.timeout_seconds:
            raise SynthesisTimeout(elapsed, self.timeout_seconds)

    def _is_pure_producer(self, node_id: str, value_consumed: set) -> bool:
        if node_id not in value_consumed:
            return False
        if self._rel.children.get(node_id):
            return False
        return not any(self._rel.slots.get(node_id, {}).values())

    def _render(self, node: Node, template, ctx: RenderContext) -> str:
        if template is None:
            return ""
        try:
            return template(ctx)
        except RecursionError:
            raise
        except Exception as e:
            return self._diagnose(
                TemplateExecutionError(str(e), node.node_id),
                f"/* Error generating code for {node.node_id}: {e} */",
            )

    def _diagnose(self, error: FlowSynthError, marker: str) -> str:
        logger.warning(f"[SYNTH] {error.error_type} at {error.node_id}: {error.message}")
        self._diagnostics.append(
            Diagnostic(kind=error.error_type, node_id=error.node_id or "", message=error.message)
        )
        return marker
