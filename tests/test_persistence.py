"""
Tests for persistence — record layout, composite re-registration, round-trip synthesis.
Run: pytest tests/test_persistence.py -v
"""
import json
import pytest
from pydantic import ValidationError
from flowsynth.compiler.editor import AddNode, Editor
from flowsynth.compiler.persistence import GraphRecord, dump_store, dumps, load_store, loads


@pytest.fixture
def built(editor, add_node, connect):
    """Program -> log -> composite call chain, with one compiled composite body."""
    prog = add_node("basics", "program", node_id="prog", options={"name": "demo"})
    log = add_node("utilities", "consoleLog", node_id="log", inputs={"message": "'start'"}, options={"label": "info"})
    fn = editor.mutate(AddNode(category="customFunction", node_type="customFunction",
                               node_id="fn", options={"name": "double"})).node_id
    num = add_node("inputs", "number", node_id="num", options={"value": "2"})
    connect(prog, "out", log, "in")
    connect(log, "out", fn, "in")
    connect(num, "value", fn, "param1")

    editor.subgraphs.enter(fn)
    add_node("functions", "return", inputs={"value": "param1 * 2"})
    editor.subgraphs.leave()
    return editor


class TestRecordLayout:

    def test_camel_case_keys(self, built):
        data = json.loads(dumps(built.root))
        assert set(data) == {"nodes", "edges", "subgraphs", "metadata"}
        assert set(data["edges"][0]) == {"id", "sourceNodeId", "sourcePort", "destNodeId", "destPort"}
        fn = next(n for n in data["nodes"] if n["id"] == "fn")
        assert fn["type"] == "fn"
        assert fn["customData"] == {"parameters": ["param1"], "outputs": ["result"]}
        assert data["subgraphs"]["fn"]["compiledBody"] == "return param1 * 2;"
        assert {"version", "createdAt", "modifiedAt"} <= set(data["metadata"])

    def test_derived_state_not_persisted(self, built):
        data = json.loads(dumps(built.root))
        for node in data["nodes"]:
            assert "parentId" not in node
            assert "bindings" not in node

    def test_record_accepts_snake_case(self):
        record = GraphRecord.model_validate({
            "nodes": [{"node_id": "a", "category": "basics", "node_type": "program"}],
        })
        assert record.nodes[0].node_id == "a"

    def test_duplicate_node_ids_rejected(self):
        node = {"id": "a", "category": "utilities", "type": "consoleLog"}
        with pytest.raises(ValidationError, match="Duplicate node id"):
            load_store({"nodes": [node, node]})

    def test_duplicate_ids_rejected_inside_subgraphs(self):
        edge = {"id": "e1", "sourceNodeId": "x", "sourcePort": "out", "destNodeId": "y", "destPort": "in"}
        data = {
            "nodes": [{"id": "fn", "category": "customFunction", "type": "fn",
                       "customData": {"parameters": [], "outputs": []}}],
            "subgraphs": {"fn": {"edges": [edge, edge]}},
        }
        with pytest.raises(ValidationError, match="Duplicate edge id"):
            GraphRecord.model_validate(data)


class TestRoundTrip:

    def test_synthesis_unchanged_after_reload(self, built, registry):
        before = built.synthesize().code
        reloaded = Editor(registry, store=loads(dumps(built.root)))
        assert reloaded.synthesize().code == before
        assert before == (
            "// Program: demo\n"
            "console.log(\"info: \", 'start');\n"
            "function double(param1 = 2) {\n"
            "  return param1 * 2;\n"
            "}"
        )

    def test_reload_registers_composite_definitions(self, built):
        store = load_store(dump_store(built.root))
        assert "fn" in store.adhoc_definitions
        assert store.adhoc_definitions["fn"].inputs == ["in", "param1"]
        inner = store.get_node("fn").subgraph
        assert len(inner.nodes) == 1

    def test_nested_composites_round_trip(self, editor, registry):
        outer = editor.mutate(AddNode(category="customFunction", node_type="customFunction", options={"name": "outer"})).node_id
        editor.subgraphs.enter(outer)
        inner = editor.mutate(AddNode(category="customFunction", node_type="customFunction", options={"name": "inner"})).node_id
        editor.subgraphs.leave()
        before = editor.synthesize().code

        store = loads(dumps(editor.root))
        nested = store.get_node(outer).subgraph
        assert inner in nested.adhoc_definitions
        assert Editor(registry, store=store).synthesize().code == before

    def test_metadata_created_at_preserved(self, built):
        first = dump_store(built.root)
        second = dump_store(built.root, first.metadata)
        assert second.metadata.created_at == first.metadata.created_at
        assert second.metadata.modified_at >= first.metadata.modified_at
