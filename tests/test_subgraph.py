"""
Tests for SubgraphManager — composite nodes, signature regeneration, navigation stack.
Run: pytest tests/test_subgraph.py -v
"""
import pytest
from flowsynth.compiler.editor import AddNode, AddOutput, AddParameter, RemoveOutput, RemoveParameter, SetOption
from flowsynth.compiler.errors import GraphMutationError, NotACompositeNode
from flowsynth.compiler.graph import CompositeSignature, Node, RenderContext
from flowsynth.compiler.subgraph import build_definition, render_composite


@pytest.fixture
def composite(editor):
    """A composite node named 'add' placed on the root graph."""
    return editor.mutate(AddNode(category="customFunction", node_type="customFunction",
                                 node_id="fn", options={"name": "add"})).node_id


# ══════════════════════════════════════════════════════════════════
# DEFINITION & TEMPLATE
# ══════════════════════════════════════════════════════════════════


class TestCompositeDefinition:

    def test_create_composite_defaults(self, editor, composite):
        node = editor.store.get_node(composite)
        assert node.category == "customFunction"
        assert node.node_type == composite
        assert node.custom_data.parameters == ["param1"]
        assert node.custom_data.outputs == ["result"]
        assert node.subgraph is not None and node.subgraph.nodes == []
        assert composite in editor.store.adhoc_definitions

    def test_definition_ports(self):
        node = Node(node_id="f", category="customFunction", node_type="f",
                    custom_data=CompositeSignature(parameters=["a", "b"], outputs=["x"]))
        definition = build_definition(node)
        assert definition.inputs == ["in", "a", "b"]
        assert definition.outputs == ["out", "x"]
        assert definition.option_spec("name") is not None

    def test_default_body_single_output(self, editor, composite):
        assert editor.synthesize().code == "function add(param1) {\n  return result;\n}"

    def test_default_body_many_and_no_outputs(self):
        many = RenderContext(node_id="f", category="customFunction", node_type="f", options={"name": "f"},
                             custom_data=CompositeSignature(parameters=[], outputs=["a", "b"]))
        assert render_composite(many) == "function f() {\n  return { a, b };\n}"
        none = RenderContext(node_id="f", category="customFunction", node_type="f", options={"name": "f"},
                             custom_data=CompositeSignature(parameters=["p"], outputs=[]))
        assert render_composite(none) == "function f(p) {\n  // Function body\n}"

    def test_bound_parameter_renders_default(self, editor, composite, add_node, connect):
        num = add_node("inputs", "number", options={"value": "5"})
        connect(num, "value", composite, "param1")
        assert editor.synthesize().code == "function add(param1 = 5) {\n  return result;\n}"

    def test_only_bound_parameters_get_defaults(self, editor, composite, add_node, connect):
        editor.mutate(AddParameter(node_id=composite, name="b"))
        num = add_node("inputs", "number", options={"value": "7"})
        connect(num, "value", composite, "b")
        assert editor.synthesize().code.startswith("function add(param1, b = 7) {")

    def test_rename_through_set_option(self, editor, composite):
        editor.mutate(SetOption(node_id=composite, name="name", value="sum"))
        assert editor.synthesize().code.startswith("function sum(param1)")
        assert editor.store.adhoc_definitions[composite].name == "sum"


# ══════════════════════════════════════════════════════════════════
# SIGNATURE CHANGES
# ══════════════════════════════════════════════════════════════════


class TestSignature:

    def test_add_parameter_and_output(self, editor, composite):
        editor.mutate(AddParameter(node_id=composite, name="b"))
        editor.mutate(AddOutput(node_id=composite))
        node = editor.store.get_node(composite)
        assert node.custom_data.parameters == ["param1", "b"]
        assert node.custom_data.outputs == ["result", "output2"]
        assert editor.store.adhoc_definitions[composite].inputs == ["in", "param1", "b"]
        assert editor.synthesize().code == "function add(param1, b) {\n  return { result, output2 };\n}"

    def test_remove_parameter_drops_bound_edges(self, editor, composite, add_node, connect):
        num = add_node("inputs", "number")
        eid = connect(num, "value", composite, "param1")
        result = editor.mutate(RemoveParameter(node_id=composite, name="param1"))
        assert result.removed_edge_ids == [eid]
        assert editor.store.edges == []
        assert editor.store.get_node(composite).bindings == {}

    def test_remove_output_drops_bound_edges(self, editor, composite, add_node, connect):
        log = add_node("utilities", "consoleLog")
        eid = connect(composite, "result", log, "message")
        result = editor.mutate(RemoveOutput(node_id=composite, name="result"))
        assert result.removed_edge_ids == [eid]
        assert editor.store.edges == []

    def test_duplicate_parameter_rejected(self, editor, composite):
        with pytest.raises(GraphMutationError):
            editor.mutate(AddParameter(node_id=composite, name="param1"))
        assert editor.store.get_node(composite).custom_data.parameters == ["param1"]

    def test_signature_ops_require_composite(self, editor, add_node):
        nid = add_node("utilities", "consoleLog")
        with pytest.raises(NotACompositeNode):
            editor.mutate(AddParameter(node_id=nid))

    def test_duplicated_composite_gets_own_definition(self, editor, composite):
        clone_id = editor.mutate({"action": "duplicate_node", "node_id": composite}).node_id
        clone = editor.store.get_node(clone_id)
        assert clone.node_type == clone_id
        assert clone.subgraph is not editor.store.get_node(composite).subgraph
        editor.mutate(AddParameter(node_id=clone_id, name="extra"))
        assert editor.store.adhoc_definitions[composite].inputs == ["in", "param1"]


# ══════════════════════════════════════════════════════════════════
# NAVIGATION
# ══════════════════════════════════════════════════════════════════


class TestNavigation:

    def test_enter_and_leave_caches_body(self, editor, composite):
        editor.subgraphs.enter(composite)
        assert editor.subgraphs.breadcrumb() == ["Main", "add"]
        editor.mutate(AddNode(category="utilities", node_type="consoleLog", inputs={"message": "x"}))
        assert len(editor.root.nodes) == 1

        result = editor.subgraphs.leave()
        assert result.code == "console.log(x);"
        assert editor.subgraphs.breadcrumb() == ["Main"]
        assert editor.store is editor.root
        assert editor.store.get_node(composite).compiled_body == "console.log(x);"
        assert editor.synthesize().code == "function add(param1) {\n  console.log(x);\n}"

    def test_nested_leave_to(self, editor, composite):
        editor.subgraphs.enter(composite)
        inner = editor.mutate(AddNode(category="customFunction", node_type="customFunction",
                                      options={"name": "inner"})).node_id
        editor.subgraphs.enter(inner)
        editor.mutate(AddNode(category="functions", node_type="return", inputs={"value": "1"}))
        assert editor.subgraphs.breadcrumb() == ["Main", "add", "inner"]

        results = editor.subgraphs.leave_to(0)
        assert len(results) == 2
        assert editor.subgraphs.depth == 0
        assert editor.synthesize().code == (
            "function add(param1) {\n"
            "  function inner(param1) {\n"
            "    return 1;\n"
            "  }\n"
            "}"
        )

    def test_leave_at_top_level(self, editor):
        with pytest.raises(GraphMutationError):
            editor.subgraphs.leave()

    def test_enter_requires_composite(self, editor, add_node):
        nid = add_node("utilities", "consoleLog")
        with pytest.raises(NotACompositeNode):
            editor.subgraphs.enter(nid)

    def test_compile_all_bottom_up(self, editor, composite):
        body = editor.store.get_node(composite).subgraph
        editor.subgraphs.enter(composite)
        editor.mutate(AddNode(category="utilities", node_type="consoleLog", inputs={"message": "y"}))
        editor.subgraphs.leave()
        assert editor.store.get_node(composite).compiled_body == "console.log(y);"
        body.nodes[0].inputs["message"] = "z"
        assert editor.subgraphs.compile_all() == 1
        assert editor.store.get_node(composite).compiled_body == "console.log(z);"

    def test_synthesize_with_compile_bodies(self, editor, composite):
        body = editor.store.get_node(composite).subgraph
        editor.subgraphs.enter(composite)
        editor.mutate(AddNode(category="utilities", node_type="consoleLog", inputs={"message": "y"}))
        editor.subgraphs.leave()
        body.nodes[0].inputs["message"] = "z"
        assert editor.synthesize().code == "function add(param1) {\n  console.log(y);\n}"

        result = editor.job(compile_bodies=True).run()
        assert result.code == "function add(param1) {\n  console.log(z);\n}"
        assert editor.store.get_node(composite).compiled_body == "console.log(z);"
