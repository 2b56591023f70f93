"""Graph Compiler - Synthesize program text from block graphs"""
from .graph import GraphStore, Node, Edge, BlockDefinition, RenderContext
from .definitions import DefinitionRegistry
from .relationships import RelationshipBuilder, Relationships
from .synthesizer import Synthesizer, SynthesisResult, Diagnostic
from .subgraph import SubgraphManager
from .editor import Editor, SynthesisJob, parse_mutation
from .persistence import GraphRecord, dump_store, load_store
from .registry import GraphRegistry, GraphDocument

__all__ = [
    "GraphStore",
    "Node",
    "Edge",
    "BlockDefinition",
    "RenderContext",
    "DefinitionRegistry",
    "RelationshipBuilder",
    "Relationships",
    "Synthesizer",
    "SynthesisResult",
    "Diagnostic",
    "SubgraphManager",
    "Editor",
    "SynthesisJob",
    "parse_mutation",
    "GraphRecord",
    "dump_store",
    "load_store",
    "GraphRegistry",
    "GraphDocument",
]
