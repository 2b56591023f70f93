"""
Shared fixtures for the FlowSynth test suite.
"""
import sys
import os
import pytest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

# Set env vars before any imports that read them
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("FLOWSYNTH_LOG_LEVEL", "WARNING")


@pytest.fixture
def registry():
    """Fresh DefinitionRegistry preloaded with the built-in blocks."""
    from flowsynth.compiler.definitions import DefinitionRegistry
    return DefinitionRegistry.with_builtins()


@pytest.fixture
def store():
    """Empty GraphStore."""
    from flowsynth.compiler.graph import GraphStore
    return GraphStore()


@pytest.fixture
def editor(registry):
    """Fresh Editor session over an empty graph."""
    from flowsynth.compiler.editor import Editor
    return Editor(registry)


@pytest.fixture
def synthesizer(registry):
    """Synthesizer bound to the built-in registry."""
    from flowsynth.compiler.synthesizer import Synthesizer
    return Synthesizer(registry)


@pytest.fixture
def graph_registry(registry):
    """Fresh GraphRegistry (in-memory)."""
    from flowsynth.compiler.registry import GraphRegistry
    return GraphRegistry(registry)


@pytest.fixture
def add_node(editor):
    """Place a block through the editor and return its id."""
    from flowsynth.compiler.editor import AddNode

    def _add(category, node_type, node_id=None, **fields):
        m = AddNode(category=category, node_type=node_type, node_id=node_id, **fields)
        return editor.mutate(m).node_id
    return _add


@pytest.fixture
def connect(editor):
    """Wire two ports through the editor and return the edge id."""
    from flowsynth.compiler.editor import AddEdge

    def _connect(source, source_port, dest, dest_port):
        m = AddEdge(source_node_id=source, source_port=source_port, dest_node_id=dest, dest_port=dest_port)
        return editor.mutate(m).edge_id
    return _connect
