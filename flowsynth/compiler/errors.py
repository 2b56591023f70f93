"""
Error taxonomy for graph mutation and code synthesis.

Recoverable synthesis errors (DefinitionNotFound, CircularReference,
RecursionLimitExceeded, TemplateExecutionError) never escape a run: the
synthesizer renders them as inline diagnostics. SynthesisTimeout is the only
fatal synthesis error. Mutation errors are raised by Editor.mutate() and leave
the graph unchanged.
"""

from typing import Optional


class FlowSynthError(Exception):
    """Base class for all FlowSynth errors."""

    code: str = "flowsynth_error"

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.node_id = node_id

    @property
    def error_type(self) -> str:
        return type(self).__name__


# ── Recoverable (per node / per slot) ────────────────────────────────────────

class DefinitionNotFound(FlowSynthError):
    code = "definition_not_found"

    def __init__(self, category: str, node_type: str, node_id: Optional[str] = None):
        super().__init__(f"No definition registered for {category}.{node_type}", node_id)
        self.category = category
        self.node_type = node_type


class CircularReference(FlowSynthError):
    code = "circular_reference"


class RecursionLimitExceeded(FlowSynthError):
    code = "recursion_limit_exceeded"


class TemplateExecutionError(FlowSynthError):
    code = "template_error"


# ── Fatal ────────────────────────────────────────────────────────────────────

class SynthesisTimeout(FlowSynthError):
    code = "synthesis_timeout"

    def __init__(self, elapsed_seconds: float, budget_seconds: float, cancelled: bool = False):
        if cancelled:
            message = "Synthesis was cancelled before it completed"
        else:
            message = (
                f"Synthesis exceeded the {budget_seconds:g}s budget after {elapsed_seconds:.2f}s. "
                "The graph may contain circular dependencies."
            )
        super().__init__(message)
        self.elapsed_seconds = elapsed_seconds
        self.budget_seconds = budget_seconds
        self.cancelled = cancelled


# ── Mutation ─────────────────────────────────────────────────────────────────

class GraphMutationError(FlowSynthError):
    """A rejected mutate() request. Graph state is unchanged."""

    code = "invalid_mutation"


class PortDirectionMismatch(GraphMutationError):
    code = "port_direction_mismatch"


class DuplicateEdge(GraphMutationError):
    code = "duplicate_edge"


class DanglingEdgeReference(GraphMutationError):
    code = "dangling_edge_reference"


class DuplicateNode(GraphMutationError):
    code = "duplicate_node"


class InvalidOptionValue(GraphMutationError):
    code = "invalid_option_value"


class NotACompositeNode(GraphMutationError):
    code = "not_a_composite_node"


class GraphBusyError(GraphMutationError):
    code = "graph_busy"

    def __init__(self):
        super().__init__("Graph cannot be mutated while a synthesis run is in flight")
