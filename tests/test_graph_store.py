"""Tests for the closure-table graph store."""

import uuid

import pytest

from closureflow.core.exceptions import CycleError, NotFoundError, ValidationError
from closureflow.models.core import NodeType
from closureflow.storage.models import NodeClosureModel


def closure_snapshot(graph_store):
    return [(e.ancestor, e.descendant, e.depth) for e in graph_store.get_closure_entries()]


def depth_of(session, ancestor, descendant):
    rows = (
        session.query(NodeClosureModel.depth)
        .filter(NodeClosureModel.ancestor == ancestor, NodeClosureModel.descendant == descendant)
        .all()
    )
    assert len(rows) <= 1, "each pair is stored once"
    return rows[0].depth if rows else None


class TestNodes:
    """Node identity and metadata."""

    def test_create_node_writes_reflexive_entry(self, graph_store):
        """A new node is its own ancestor at depth 0 and nothing else."""
        node_id = graph_store.create_node("Fetch", NodeType.TASK, "fetch data")

        node = graph_store.get_node(node_id)
        assert node.title == "Fetch"
        assert node.type == NodeType.TASK
        assert node.description == "fetch data"
        assert closure_snapshot(graph_store) == [(node_id, node_id, 0)]

    def test_create_node_accepts_type_value_case_insensitively(self, graph_store):
        node_id = graph_store.create_node("Begin", "start")
        assert graph_store.get_node(node_id).type == NodeType.START

    @pytest.mark.parametrize("title, node_type", [
        ("", NodeType.TASK),
        ("   ", NodeType.TASK),
        ("Node", ""),
        ("Node", "Decision"),
    ])
    def test_create_node_rejects_invalid_input(self, graph_store, title, node_type):
        with pytest.raises(ValidationError):
            graph_store.create_node(title, node_type)

    def test_get_missing_node(self, graph_store):
        with pytest.raises(NotFoundError):
            graph_store.get_node(uuid.uuid4())

    def test_get_node_with_malformed_id(self, graph_store):
        with pytest.raises(ValidationError):
            graph_store.get_node("not-a-uuid")

    def test_update_node(self, graph_store):
        node_id = graph_store.create_node("Old", NodeType.TASK)
        updated = graph_store.update_node(node_id, title="New", description="desc")
        assert updated.title == "New"
        assert updated.description == "desc"
        assert updated.updated_at is not None
        assert updated.type == NodeType.TASK

    def test_deleted_node_is_hidden_but_closure_kept(self, graph_store):
        """Soft-deleted nodes disappear from lookups; closure rows stay."""
        root = graph_store.create_node("Root", NodeType.START)
        child = graph_store.create_node("Child", NodeType.TASK)
        graph_store.add_relationship(root, child)

        graph_store.delete_node(child)

        with pytest.raises(NotFoundError):
            graph_store.get_node(child)
        assert graph_store.get_descendants(root) == []
        assert (root, child, 1) in closure_snapshot(graph_store)


class TestRelationships:
    """Closure maintenance when edges are added."""

    def test_chain_descendants_in_depth_order(self, graph_store):
        """root -> n1 -> n2 -> n3 yields n1, n2, n3."""
        root = graph_store.create_node("root", NodeType.START)
        n1 = graph_store.create_node("n1", NodeType.TASK)
        n2 = graph_store.create_node("n2", NodeType.TASK)
        n3 = graph_store.create_node("n3", NodeType.END)
        graph_store.add_relationship(root, n1)
        graph_store.add_relationship(n1, n2)
        graph_store.add_relationship(n2, n3)

        assert [n.id for n in graph_store.get_descendants(root)] == [n1, n2, n3]
        assert [n.id for n in graph_store.get_descendants(root, include_self=True)] == [root, n1, n2, n3]

    def test_descendants_independent_of_insertion_order(self, graph_store):
        """Linking the tail of the chain first gives the same closure."""
        root = graph_store.create_node("root", NodeType.START)
        n1 = graph_store.create_node("n1", NodeType.TASK)
        n2 = graph_store.create_node("n2", NodeType.TASK)
        n3 = graph_store.create_node("n3", NodeType.END)
        graph_store.add_relationship(n2, n3)
        graph_store.add_relationship(n1, n2)
        graph_store.add_relationship(root, n1)

        assert {n.id for n in graph_store.get_descendants(root)} == {n1, n2, n3}
        assert [n.id for n in graph_store.get_descendants(root)] == [n1, n2, n3]
        assert graph_store.is_descendant(root, n3)
        assert not graph_store.is_descendant(n3, root)

    def test_depth_is_shortest_path(self, graph_store, session):
        """S -> A -> B plus S -> B stores depth 1 for (S, B)."""
        s = graph_store.create_node("S", NodeType.START)
        a = graph_store.create_node("A", NodeType.TASK)
        b = graph_store.create_node("B", NodeType.TASK)
        c = graph_store.create_node("C", NodeType.END)
        graph_store.add_relationship(s, a)
        graph_store.add_relationship(a, b)
        graph_store.add_relationship(b, c)
        assert depth_of(session, s, b) == 2
        assert depth_of(session, s, c) == 3

        graph_store.add_relationship(s, b)

        assert depth_of(session, s, b) == 1
        assert depth_of(session, s, c) == 2
        assert depth_of(session, a, c) == 2
        assert {n.id for n in graph_store.get_immediate_ancestors(b)} == {s, a}

    def test_one_reflexive_entry_per_node(self, graph_store, session):
        ids = [graph_store.create_node(f"n{i}", NodeType.TASK) for i in range(5)]
        graph_store.add_relationship(ids[0], ids[1])
        graph_store.add_relationship(ids[0], ids[2])
        graph_store.add_relationship(ids[1], ids[3])
        graph_store.add_relationship(ids[2], ids[3])
        graph_store.add_relationship(ids[3], ids[4])

        for node_id in ids:
            reflexive = [e for e in closure_snapshot(graph_store) if e[0] == e[1] == node_id]
            assert reflexive == [(node_id, node_id, 0)]
        assert depth_of(session, ids[0], ids[4]) == 3

    def test_reverse_edge_is_rejected_without_writes(self, graph_store):
        """a -> b followed by b -> a fails and leaves the closure unchanged."""
        a = graph_store.create_node("a", NodeType.TASK)
        b = graph_store.create_node("b", NodeType.TASK)
        graph_store.add_relationship(a, b)
        before = closure_snapshot(graph_store)

        with pytest.raises(CycleError):
            graph_store.add_relationship(b, a)

        assert closure_snapshot(graph_store) == before

    def test_transitive_cycle_is_rejected(self, graph_store):
        a = graph_store.create_node("a", NodeType.TASK)
        b = graph_store.create_node("b", NodeType.TASK)
        c = graph_store.create_node("c", NodeType.TASK)
        graph_store.add_relationship(a, b)
        graph_store.add_relationship(b, c)

        with pytest.raises(CycleError):
            graph_store.add_relationship(c, a)

    def test_self_edge_is_rejected(self, graph_store):
        a = graph_store.create_node("a", NodeType.TASK)
        with pytest.raises(CycleError):
            graph_store.add_relationship(a, a)

    def test_relationship_to_missing_node(self, graph_store):
        a = graph_store.create_node("a", NodeType.TASK)
        with pytest.raises(NotFoundError):
            graph_store.add_relationship(a, str(uuid.uuid4()))

    def test_immediate_neighbours(self, graph_store):
        root = graph_store.create_node("root", NodeType.START)
        mid = graph_store.create_node("mid", NodeType.TASK)
        leaf = graph_store.create_node("leaf", NodeType.END)
        graph_store.add_relationship(root, mid)
        graph_store.add_relationship(mid, leaf)

        assert graph_store.get_immediate_ancestor(leaf).id == mid
        assert [n.id for n in graph_store.get_immediate_descendants(root)] == [mid]
        assert [n.id for n in graph_store.get_ancestors(leaf)] == [mid, root]
        with pytest.raises(NotFoundError):
            graph_store.get_immediate_ancestor(root)


class TestValidateAcyclic:
    """Detection of corrupted closure rows."""

    def test_consistent_graph_passes(self, graph_store):
        a = graph_store.create_node("a", NodeType.START)
        b = graph_store.create_node("b", NodeType.TASK)
        graph_store.add_relationship(a, b)
        graph_store.validate_acyclic(a)

    def test_duplicate_reflexive_entry_is_a_cycle(self, graph_store, session):
        a = graph_store.create_node("a", NodeType.START)
        b = graph_store.create_node("b", NodeType.TASK)
        graph_store.add_relationship(a, b)
        session.add(NodeClosureModel(ancestor=b, descendant=b, depth=2))
        session.commit()

        with pytest.raises(CycleError):
            graph_store.validate_acyclic(a)

    def test_positive_depth_reflexive_entry_is_a_cycle(self, graph_store, session):
        a = graph_store.create_node("a", NodeType.START)
        row = session.query(NodeClosureModel).filter_by(ancestor=a, descendant=a).one()
        row.depth = 3
        session.commit()

        with pytest.raises(CycleError):
            graph_store.validate_acyclic(a)

    def test_unrelated_corruption_is_ignored(self, graph_store, session):
        a = graph_store.create_node("a", NodeType.START)
        other = graph_store.create_node("other", NodeType.TASK)
        session.add(NodeClosureModel(ancestor=other, descendant=other, depth=1))
        session.commit()

        graph_store.validate_acyclic(a)
