"""Tests for OutlineStore: creation, moves, reorders, deletion and paths."""

import uuid

import pytest

from interfold.engine.atomic_sets import AtomicSetStore
from interfold.engine.intersections import IntersectionStore
from interfold.engine.outline import OutlineStore
from interfold.engine.tree import build_tree
from interfold.exceptions import NotFoundError, ValidationError


@pytest.fixture()
def store(storage):
    return OutlineStore(storage)


def _children(store, parent_id, user_id="u1"):
    """(content, order_index) of a sibling group, in order."""
    rows = [n for n in store.get_user_outline(user_id) if n.parent_id == parent_id]
    rows.sort(key=lambda n: n.order_index)
    return [(n.content, n.order_index) for n in rows]


def _snapshot(store, user_id="u1"):
    return sorted(
        (n.id, n.parent_id, n.order_index) for n in store.get_user_outline(user_id)
    )


@pytest.fixture()
def tree(store):
    """A: [A1, A2: [A2a], A3], B, C."""
    nodes = {}
    nodes["A"] = store.create_node("u1", None, "A")
    nodes["A1"] = store.create_node("u1", nodes["A"].id, "A1")
    nodes["A2"] = store.create_node("u1", nodes["A"].id, "A2")
    nodes["A2a"] = store.create_node("u1", nodes["A2"].id, "A2a")
    nodes["A3"] = store.create_node("u1", nodes["A"].id, "A3")
    nodes["B"] = store.create_node("u1", None, "B")
    nodes["C"] = store.create_node("u1", None, "C")
    return nodes


class TestCreateNode:
    def test_order_scenario(self, store):
        a = store.create_node("u1", None, "A")
        b = store.create_node("u1", None, "B")
        c = store.create_node("u1", a.id, "C")
        assert (a.order_index, b.order_index, c.order_index) == (0, 1, 0)

        roots = build_tree(store.get_user_outline("u1"))
        assert [r.content for r in roots] == ["A", "B"]
        assert [ch.content for ch in roots[0].children] == ["C"]
        assert roots[1].children == []

    def test_defaults(self, store):
        node = store.create_node("u1", None, "  hello  ")
        assert node.content == "hello"
        assert node.is_expanded is True
        assert node.intersection_id is None
        assert store.get_node("u1", node.id) == node

    def test_explicit_index_stored_as_given(self, store):
        node = store.create_node("u1", None, "x", order_index=7)
        assert node.order_index == 7
        assert store.create_node("u1", None, "y").order_index == 8

    def test_negative_index_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_node("u1", None, "x", order_index=-1)

    @pytest.mark.parametrize("content", ["", "   ", "x" * 5001])
    def test_bad_content_rejected(self, store, content):
        with pytest.raises(ValidationError):
            store.create_node("u1", None, content)

    def test_missing_parent(self, store):
        with pytest.raises(NotFoundError, match="Parent node"):
            store.create_node("u1", str(uuid.uuid4()), "x")

    def test_foreign_parent(self, store):
        other = store.create_node("u2", None, "theirs")
        with pytest.raises(NotFoundError):
            store.create_node("u1", other.id, "x")

    def test_with_intersection(self, store, storage):
        a = AtomicSetStore(storage).find_or_create("u1", "AI").atomic_set.id
        intersection = IntersectionStore(storage).create("u1", [a], [a])
        node = store.create_node("u1", None, "x", intersection_id=intersection.id)
        assert node.intersection_id == intersection.id

    def test_foreign_intersection(self, store, storage):
        a = AtomicSetStore(storage).find_or_create("u2", "AI").atomic_set.id
        intersection = IntersectionStore(storage).create("u2", [a], [a])
        with pytest.raises(NotFoundError):
            store.create_node("u1", None, "x", intersection_id=intersection.id)


class TestUpdateAndToggle:
    def test_update_content(self, store, tree):
        updated = store.update_node_content("u1", tree["B"].id, "  Bee ")
        assert updated.content == "Bee"
        assert updated.updated_at >= tree["B"].updated_at

    def test_update_content_foreign(self, store, tree):
        with pytest.raises(NotFoundError):
            store.update_node_content("u2", tree["B"].id, "stolen")
        assert store.get_node("u1", tree["B"].id).content == "B"

    def test_toggle_flips_flag_only(self, store, tree):
        toggled = store.toggle_expanded("u1", tree["A"].id)
        assert toggled.is_expanded is False
        assert toggled.updated_at == tree["A"].updated_at
        assert store.toggle_expanded("u1", tree["A"].id).is_expanded is True

    def test_get_node_foreign(self, store, tree):
        with pytest.raises(NotFoundError):
            store.get_node("u2", tree["A"].id)


class TestMoveNode:
    def test_move_to_other_parent(self, store, tree):
        moved = store.move_node("u1", tree["A1"].id, tree["B"].id, 0)
        assert moved.parent_id == tree["B"].id
        assert moved.order_index == 0
        assert _children(store, tree["A"].id) == [("A2", 0), ("A3", 1)]

    def test_insert_position_shifts_siblings(self, store, tree):
        store.move_node("u1", tree["C"].id, tree["A"].id, 1)
        assert _children(store, tree["A"].id) == [("A1", 0), ("C", 1), ("A2", 2), ("A3", 3)]
        assert _children(store, None) == [("A", 0), ("B", 1)]

    def test_index_past_end_appends(self, store, tree):
        moved = store.move_node("u1", tree["B"].id, tree["A"].id, 99)
        assert moved.order_index == 3

    def test_reorder_within_group(self, store, tree):
        store.move_node("u1", tree["A3"].id, tree["A"].id, 0)
        assert _children(store, tree["A"].id) == [("A3", 0), ("A1", 1), ("A2", 2)]

    def test_move_to_root(self, store, tree):
        moved = store.move_node("u1", tree["A2a"].id, None, 0)
        assert moved.parent_id is None
        assert _children(store, None) == [("A2a", 0), ("A", 1), ("B", 2), ("C", 3)]
        assert _children(store, tree["A2"].id) == []

    def test_subtree_moves_with_node(self, store, tree):
        store.move_node("u1", tree["A2"].id, tree["C"].id, 0)
        assert store.get_node("u1", tree["A2a"].id).parent_id == tree["A2"].id
        roots = build_tree(store.get_user_outline("u1"))
        c = next(r for r in roots if r.content == "C")
        assert c.children[0].children[0].depth == 2

    def test_move_under_self_rejected(self, store, tree):
        before = _snapshot(store)
        with pytest.raises(ValidationError) as exc_info:
            store.move_node("u1", tree["A"].id, tree["A"].id, 0)
        assert exc_info.value.field == "new_parent_id"
        assert _snapshot(store) == before

    def test_move_under_descendant_rejected(self, store, tree):
        before = _snapshot(store)
        with pytest.raises(ValidationError):
            store.move_node("u1", tree["A"].id, tree["A2a"].id, 0)
        assert _snapshot(store) == before

    def test_move_foreign_node(self, store, tree):
        with pytest.raises(NotFoundError):
            store.move_node("u2", tree["A"].id, None, 0)

    def test_move_under_foreign_parent(self, store, tree):
        theirs = store.create_node("u2", None, "theirs")
        with pytest.raises(NotFoundError):
            store.move_node("u1", tree["B"].id, theirs.id, 0)

    def test_negative_index_rejected(self, store, tree):
        with pytest.raises(ValidationError):
            store.move_node("u1", tree["B"].id, None, -1)


class TestIndentOutdent:
    def test_indent_becomes_last_child_of_previous(self, store, tree):
        indented = store.indent_node("u1", tree["A3"].id)
        assert indented.parent_id == tree["A2"].id
        assert _children(store, tree["A2"].id) == [("A2a", 0), ("A3", 1)]
        assert _children(store, tree["A"].id) == [("A1", 0), ("A2", 1)]

    def test_indent_first_sibling_is_noop(self, store, tree):
        before = _snapshot(store)
        result = store.indent_node("u1", tree["A1"].id)
        assert result.parent_id == tree["A"].id
        assert _snapshot(store) == before

    def test_outdent_goes_after_parent(self, store, tree):
        outdented = store.outdent_node("u1", tree["A2a"].id)
        assert outdented.parent_id == tree["A"].id
        assert _children(store, tree["A"].id) == [("A1", 0), ("A2", 1), ("A2a", 2), ("A3", 3)]

    def test_outdent_to_root(self, store, tree):
        store.outdent_node("u1", tree["A1"].id)
        assert _children(store, None) == [("A", 0), ("A1", 1), ("B", 2), ("C", 3)]

    def test_outdent_root_is_noop(self, store, tree):
        before = _snapshot(store)
        assert store.outdent_node("u1", tree["B"].id).parent_id is None
        assert _snapshot(store) == before


class TestReorderNodes:
    def test_full_reorder(self, store, tree):
        ids = [tree["C"].id, tree["A"].id, tree["B"].id]
        result = store.reorder_nodes("u1", None, ids)
        assert [(n.content, n.order_index) for n in result] == [("C", 0), ("A", 1), ("B", 2)]

    def test_partial_reorder_keeps_rest(self, store, tree):
        store.reorder_nodes("u1", tree["A"].id, [tree["A3"].id])
        assert _children(store, tree["A"].id) == [("A3", 0), ("A1", 1), ("A2", 2)]

    def test_duplicates_rejected(self, store, tree):
        with pytest.raises(ValidationError):
            store.reorder_nodes("u1", None, [tree["A"].id, tree["A"].id])

    def test_non_child_rejected(self, store, tree):
        before = _snapshot(store)
        with pytest.raises(NotFoundError):
            store.reorder_nodes("u1", None, [tree["A1"].id, tree["B"].id])
        assert _snapshot(store) == before

    def test_foreign_parent_rejected(self, store, tree):
        with pytest.raises(NotFoundError):
            store.reorder_nodes("u2", tree["A"].id, [tree["A1"].id])

    def test_normalizes_gaps(self, store):
        x = store.create_node("u1", None, "x", order_index=10)
        y = store.create_node("u1", None, "y", order_index=20)
        store.reorder_nodes("u1", None, [y.id, x.id])
        assert _children(store, None) == [("y", 0), ("x", 1)]


class TestDeleteNode:
    def test_cascade_count(self, store, tree):
        assert store.delete_node("u1", tree["A"].id) == 5
        assert [n.content for n in store.get_user_outline("u1")] == ["B", "C"]

    def test_siblings_renumbered(self, store, tree):
        store.delete_node("u1", tree["A1"].id)
        assert _children(store, tree["A"].id) == [("A2", 0), ("A3", 1)]

    def test_leaf(self, store, tree):
        assert store.delete_node("u1", tree["A2a"].id) == 1
        with pytest.raises(NotFoundError):
            store.get_node("u1", tree["A2a"].id)

    def test_foreign(self, store, tree):
        with pytest.raises(NotFoundError):
            store.delete_node("u2", tree["A"].id)
        assert len(store.get_user_outline("u1")) == 7


class TestPathsAndSiblings:
    def test_node_path(self, store, tree):
        path = store.node_path("u1", tree["A2a"].id)
        assert [e.content for e in path] == ["A", "A2", "A2a"]
        assert path[-1].id == tree["A2a"].id

    def test_node_path_foreign(self, store, tree):
        with pytest.raises(NotFoundError):
            store.node_path("u2", tree["A2a"].id)

    def test_siblings(self, store, tree):
        assert [n.content for n in store.siblings("u1", tree["A2"].id)] == ["A1", "A2", "A3"]


class TestSetIntersection:
    @pytest.fixture()
    def intersection(self, storage):
        a = AtomicSetStore(storage).find_or_create("u1", "AI").atomic_set.id
        return IntersectionStore(storage).create("u1", [a], [a])

    def test_link_and_unlink(self, store, tree, intersection):
        linked = store.set_intersection("u1", tree["B"].id, intersection.id)
        assert linked.intersection_id == intersection.id
        assert store.set_intersection("u1", tree["B"].id, None).intersection_id is None

    def test_deleted_intersection_rejected(self, store, storage, tree, intersection):
        IntersectionStore(storage).soft_delete("u1", intersection.id)
        with pytest.raises(NotFoundError):
            store.set_intersection("u1", tree["B"].id, intersection.id)

    def test_link_survives_soft_delete(self, store, storage, tree, intersection):
        store.set_intersection("u1", tree["B"].id, intersection.id)
        IntersectionStore(storage).soft_delete("u1", intersection.id)
        assert store.get_node("u1", tree["B"].id).intersection_id == intersection.id
