"""
Tests for RelationshipBuilder — flow nesting, data bindings, body slots, dropped edges.
Run: pytest tests/test_relationships.py -v
"""
import pytest
from flowsynth.compiler.graph import Edge, GraphStore, Node, PortReference
from flowsynth.compiler.relationships import RelationshipBuilder


def _log(node_id):
    return Node(node_id=node_id, category="utilities", node_type="consoleLog")


def _edge(edge_id, src, sport, dst, dport):
    return Edge(edge_id=edge_id, source_node_id=src, source_port=sport, dest_node_id=dst, dest_port=dport)


@pytest.fixture
def builder(registry):
    return RelationshipBuilder(registry)


# ══════════════════════════════════════════════════════════════════
# FLOW AND DATA PASSES
# ══════════════════════════════════════════════════════════════════


class TestRebuild:

    def test_flow_edges_set_parent_and_children(self, builder, store):
        for nid in ("a", "b", "c"):
            store.add_node(_log(nid))
        store.add_edge(_edge("e1", "a", "out", "b", "in"))
        store.add_edge(_edge("e2", "a", "out", "c", "in"))
        rel = builder.rebuild(store)
        assert store.get_node("b").parent_id == "a"
        assert store.get_node("c").parent_id == "a"
        assert store.get_node("a").children == ["b", "c"]
        assert rel.children == {"a": ["b", "c"]}

    def test_data_edge_becomes_binding(self, builder, store):
        store.add_node(Node(node_id="n", category="inputs", node_type="number"))
        store.add_node(_log("log"))
        store.add_edge(_edge("e1", "n", "value", "log", "message"))
        builder.rebuild(store)
        assert store.get_node("log").bindings == {"message": PortReference(node_id="n", port="value")}
        assert store.get_node("log").parent_id is None

    def test_data_edge_into_in_port_fills_body_slot(self, builder, store):
        store.add_node(Node(node_id="cond", category="logic", node_type="if"))
        store.add_node(_log("yes"))
        store.add_edge(_edge("e1", "cond", "true", "yes", "in"))
        rel = builder.rebuild(store)
        assert rel.slot_members("cond", "true") == ["yes"]
        assert rel.has_incoming_in("yes") is True
        assert rel.has_incoming_in("cond") is False

    def test_literal_inputs_survive_rebuild(self, builder, store):
        node = _log("log")
        node.inputs["message"] = "'hi'"
        store.add_node(node)
        builder.rebuild(store)
        assert store.get_node("log").inputs == {"message": "'hi'"}


# ══════════════════════════════════════════════════════════════════
# IDEMPOTENCE & ORDERING
# ══════════════════════════════════════════════════════════════════


class TestIdempotence:

    def test_rebuild_is_idempotent(self, builder, store):
        for nid in ("a", "b", "c"):
            store.add_node(_log(nid))
        store.add_node(Node(node_id="n", category="inputs", node_type="number"))
        store.add_edge(_edge("e1", "a", "out", "b", "in"))
        store.add_edge(_edge("e2", "b", "out", "c", "in"))
        store.add_edge(_edge("e3", "n", "value", "c", "message"))

        first = builder.rebuild(store)
        state_1 = [(n.parent_id, list(n.children), dict(n.bindings)) for n in store.nodes]
        second = builder.rebuild(store)
        state_2 = [(n.parent_id, list(n.children), dict(n.bindings)) for n in store.nodes]

        assert first.model_dump() == second.model_dump()
        assert state_1 == state_2

    def test_second_edge_into_same_port_is_dropped(self, builder, store):
        for nid in ("a", "b", "c"):
            store.add_node(_log(nid))
        store.add_edge(_edge("first", "a", "out", "c", "in"))
        store.add_edge(_edge("second", "b", "out", "c", "in"))
        rel = builder.rebuild(store)
        assert store.get_node("c").parent_id == "a"
        assert store.get_node("b").children == []
        assert rel.dropped_edge_ids == ["second"]

    def test_dangling_edges_are_skipped(self, builder, store):
        store.add_node(_log("a"))
        store.add_edge(_edge("ghost", "a", "out", "missing", "in"))
        store.add_edge(_edge("badport", "a", "nope", "a", "in"))
        rel = builder.rebuild(store)
        assert set(rel.dangling_edge_ids) == {"ghost", "badport"}
        assert store.get_node("a").children == []

    def test_removed_edge_clears_derived_state(self, builder, store):
        store.add_node(_log("a"))
        store.add_node(_log("b"))
        store.add_edge(_edge("e1", "a", "out", "b", "in"))
        builder.rebuild(store)
        store.remove_edge("e1")
        builder.rebuild(store)
        assert store.get_node("b").parent_id is None
        assert store.get_node("a").children == []
