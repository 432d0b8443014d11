"""Outline nodes: the user's editable tree, stored as parent pointers.

Every statement is scoped by ``user_id``. A node id owned by someone else is
indistinguishable from a missing one.

Sibling groups are ``(user_id, parent_id)``. Their ``order_index`` values may
have gaps or ties after explicit inserts; moves, reorders and deletes
renumber the affected groups to 0..n-1 inside the same transaction.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterable

from interfold.engine.storage import SQLiteStorage, utcnow
from interfold.engine.tree import (
    content_from_path,
    descendant_ids,
    get_next_order_index,
    get_siblings,
    is_ancestor,
    path_from_root,
    reorder_siblings,
    sibling_sort_key,
)
from interfold.exceptions import NotFoundError, ValidationError
from interfold.models import NodePathEntry, OutlineNode
from interfold.validation import (
    CreateNodeInput,
    LinkIntersectionInput,
    MoveNodeInput,
    ReorderNodesInput,
    UpdateNodeContentInput,
    parse,
    parse_id,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, user_id, parent_id, content, order_index, is_expanded, intersection_id, "
    "created_at, updated_at"
)


def row_to_node(row: sqlite3.Row) -> OutlineNode:
    return OutlineNode(
        id=row["id"],
        user_id=row["user_id"],
        parent_id=row["parent_id"],
        content=row["content"],
        order_index=row["order_index"],
        is_expanded=bool(row["is_expanded"]),
        intersection_id=row["intersection_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class OutlineStore:
    """User-scoped outline rows plus the move/reorder rules that keep them a tree."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    # --- Reads ---

    def get_user_outline(self, user_id: str) -> list[OutlineNode]:
        """All of the user's rows, flat, in sibling order."""
        rows = self._storage.fetch_all(
            f"SELECT {_COLUMNS} FROM outline_node WHERE user_id = ? "
            f"ORDER BY order_index, created_at, id",
            (user_id,),
        )
        return [row_to_node(r) for r in rows]

    def get_node(self, user_id: str, node_id: str) -> OutlineNode:
        """Fetch one node.

        Raises:
            NotFoundError: If absent or owned by another user.
        """
        node = self._fetch(user_id, parse_id(node_id))
        if node is None:
            raise NotFoundError("Node")
        return node

    def siblings(self, user_id: str, node_id: str) -> list[OutlineNode]:
        """The node's sibling group, itself included, in order."""
        return get_siblings(parse_id(node_id), self.get_user_outline(user_id))

    def node_path(self, user_id: str, node_id: str) -> list[NodePathEntry]:
        """Ids and contents from the root down to the node, inclusive."""
        node_id = parse_id(node_id)
        nodes = self._load(user_id)
        if node_id not in nodes:
            raise NotFoundError("Node")
        path = path_from_root(node_id, nodes)
        return [
            NodePathEntry(id=i, content=c)
            for i, c in zip(path, content_from_path(path, nodes), strict=True)
        ]

    # --- Writes ---

    def create_node(
        self,
        user_id: str,
        parent_id: str | None,
        content: str,
        order_index: int | None = None,
        intersection_id: str | None = None,
    ) -> OutlineNode:
        """Insert a node under ``parent_id`` (None for a root).

        Without ``order_index`` the node goes after its last sibling
        (``max + 1``, or 0 for the first child). An explicit index is stored
        as given.

        Raises:
            ValidationError: If the trimmed content is empty or over 5000
                characters, or the index is negative.
            NotFoundError: If the parent or intersection is absent or foreign.
        """
        data = parse(
            CreateNodeInput,
            parent_id=parent_id,
            content=content,
            order_index=order_index,
            intersection_id=intersection_id,
        )
        node_id = str(uuid.uuid4())
        now = utcnow()

        with self._storage.transaction() as conn:
            if data.parent_id is not None and self._fetch(user_id, data.parent_id) is None:
                raise NotFoundError("Parent node")
            if data.intersection_id is not None:
                self._require_intersection(user_id, data.intersection_id)

            index = data.order_index
            if index is None:
                index = get_next_order_index(
                    data.parent_id, self._sibling_group(user_id, data.parent_id)
                )

            conn.execute(
                f"INSERT INTO outline_node ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)",
                (
                    node_id,
                    user_id,
                    data.parent_id,
                    data.content,
                    index,
                    data.intersection_id,
                    now,
                    now,
                ),
            )

        logger.debug("Created node %s under %s at %d", node_id, data.parent_id, index)
        return OutlineNode(
            id=node_id,
            user_id=user_id,
            parent_id=data.parent_id,
            content=data.content,
            order_index=index,
            is_expanded=True,
            intersection_id=data.intersection_id,
            created_at=now,
            updated_at=now,
        )

    def update_node_content(self, user_id: str, node_id: str, content: str) -> OutlineNode:
        """Replace a node's text (trimmed, 1-5000 chars) and refresh ``updated_at``."""
        data = parse(UpdateNodeContentInput, id=node_id, content=content)
        with self._storage.transaction() as conn:
            cursor = conn.execute(
                "UPDATE outline_node SET content = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (data.content, utcnow(), data.id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Node", "Node not found or does not belong to user")
        return self.get_node(user_id, data.id)

    def move_node(
        self,
        user_id: str,
        node_id: str,
        new_parent_id: str | None,
        new_order_index: int,
    ) -> OutlineNode:
        """Re-parent a node and place it at ``new_order_index`` among its new siblings.

        Indexes past the end append. Both the new and the old sibling group
        are renumbered 0..n-1.

        Raises:
            NotFoundError: If the node or the new parent is absent or foreign.
            ValidationError: If the new parent is the node itself or one of its
                descendants. Nothing is written.
        """
        data = parse(
            MoveNodeInput,
            id=node_id,
            new_parent_id=new_parent_id,
            new_order_index=new_order_index,
        )
        with self._storage.transaction() as conn:
            nodes = self._load(user_id)
            node = nodes.get(data.id)
            if node is None:
                raise NotFoundError("Node")
            if data.new_parent_id is not None:
                if data.new_parent_id not in nodes:
                    raise NotFoundError("Parent node")
                if is_ancestor(data.id, data.new_parent_id, nodes):
                    raise ValidationError(
                        "Cannot move a node under itself or one of its descendants",
                        field="new_parent_id",
                    )

            others = [n for n in nodes.values() if n.id != node.id]
            new_group = sorted(
                (n for n in others if n.parent_id == data.new_parent_id), key=sibling_sort_key
            )
            new_group.insert(min(data.new_order_index, len(new_group)), node)

            conn.execute(
                "UPDATE outline_node SET parent_id = ?, updated_at = ? WHERE id = ? AND user_id = ?",
                (data.new_parent_id, utcnow(), node.id, user_id),
            )
            self._apply_order(conn, user_id, new_group)
            if node.parent_id != data.new_parent_id:
                self._renumber(conn, user_id, node.parent_id, others)

        logger.debug("Moved node %s from %s to %s", node.id, node.parent_id, data.new_parent_id)
        return self.get_node(user_id, data.id)

    def indent_node(self, user_id: str, node_id: str) -> OutlineNode:
        """Make the node the last child of its previous sibling.

        A node without a previous sibling is returned unchanged.
        """
        node_id = parse_id(node_id)
        with self._storage.transaction():
            nodes = self._load(user_id)
            node = nodes.get(node_id)
            if node is None:
                raise NotFoundError("Node")
            group = get_siblings(node_id, list(nodes.values()))
            position = [n.id for n in group].index(node_id)
            if position == 0:
                return node
            new_parent = group[position - 1]
            child_count = sum(1 for n in nodes.values() if n.parent_id == new_parent.id)
            return self.move_node(user_id, node_id, new_parent.id, child_count)

    def outdent_node(self, user_id: str, node_id: str) -> OutlineNode:
        """Make the node the sibling directly after its parent.

        Root nodes are returned unchanged.
        """
        node_id = parse_id(node_id)
        with self._storage.transaction():
            nodes = self._load(user_id)
            node = nodes.get(node_id)
            if node is None:
                raise NotFoundError("Node")
            if node.parent_id is None:
                return node
            parent_group = get_siblings(node.parent_id, list(nodes.values()))
            position = [n.id for n in parent_group].index(node.parent_id) + 1
            grandparent_id = nodes[node.parent_id].parent_id
            return self.move_node(user_id, node_id, grandparent_id, position)

    def reorder_nodes(
        self,
        user_id: str,
        parent_id: str | None,
        node_ids: list[str],
    ) -> list[OutlineNode]:
        """Put the listed children of ``parent_id`` first, in the given order.

        Siblings that are not listed keep their relative order after the
        listed ones. The group ends up numbered 0..n-1.

        Raises:
            NotFoundError: If the parent, or any listed node, is not an owned
                child of ``parent_id``.
        """
        data = parse(ReorderNodesInput, parent_id=parent_id, node_ids=node_ids)
        with self._storage.transaction() as conn:
            if data.parent_id is not None and self._fetch(user_id, data.parent_id) is None:
                raise NotFoundError("Parent node")
            group = sorted(self._sibling_group(user_id, data.parent_id), key=sibling_sort_key)
            by_id = {n.id: n for n in group}
            if any(i not in by_id for i in data.node_ids):
                raise NotFoundError("Node", "One or more nodes not found under this parent")
            listed = set(data.node_ids)
            ordered = [by_id[i] for i in data.node_ids] + [n for n in group if n.id not in listed]
            self._apply_order(conn, user_id, ordered)
            return sorted(self._sibling_group(user_id, data.parent_id), key=sibling_sort_key)

    def toggle_expanded(self, user_id: str, node_id: str) -> OutlineNode:
        """Flip the collapse/expand flag. No other field changes."""
        node_id = parse_id(node_id)
        with self._storage.transaction() as conn:
            cursor = conn.execute(
                "UPDATE outline_node SET is_expanded = NOT is_expanded WHERE id = ? AND user_id = ?",
                (node_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Node")
        return self.get_node(user_id, node_id)

    def set_intersection(
        self,
        user_id: str,
        node_id: str,
        intersection_id: str | None,
    ) -> OutlineNode:
        """Link the node to one of the user's active intersections, or unlink it."""
        data = parse(LinkIntersectionInput, id=node_id, intersection_id=intersection_id)
        with self._storage.transaction() as conn:
            if data.intersection_id is not None:
                self._require_intersection(user_id, data.intersection_id)
            cursor = conn.execute(
                "UPDATE outline_node SET intersection_id = ?, updated_at = ? "
                "WHERE id = ? AND user_id = ?",
                (data.intersection_id, utcnow(), data.id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Node")
        return self.get_node(user_id, data.id)

    def delete_node(self, user_id: str, node_id: str) -> int:
        """Delete a node together with its whole subtree.

        The remaining siblings are renumbered 0..n-1.

        Returns:
            Number of removed nodes (the node plus its descendants).
        """
        node_id = parse_id(node_id)
        with self._storage.transaction() as conn:
            nodes = self._load(user_id)
            node = nodes.get(node_id)
            if node is None:
                raise NotFoundError("Node")
            doomed = {node_id, *descendant_ids(node_id, nodes.values())}
            # The parent_id foreign key cascades the delete down the subtree.
            conn.execute(
                "DELETE FROM outline_node WHERE id = ? AND user_id = ?", (node_id, user_id)
            )
            survivors = [n for n in nodes.values() if n.id not in doomed]
            self._renumber(conn, user_id, node.parent_id, survivors)

        logger.debug("Deleted node %s and %d descendants", node_id, len(doomed) - 1)
        return len(doomed)

    # --- Helpers ---

    def _fetch(self, user_id: str, node_id: str) -> OutlineNode | None:
        row = self._storage.fetch_one(
            f"SELECT {_COLUMNS} FROM outline_node WHERE id = ? AND user_id = ?",
            (node_id, user_id),
        )
        return row_to_node(row) if row else None

    def _load(self, user_id: str) -> dict[str, OutlineNode]:
        return {n.id: n for n in self.get_user_outline(user_id)}

    def _sibling_group(self, user_id: str, parent_id: str | None) -> list[OutlineNode]:
        rows = self._storage.fetch_all(
            f"SELECT {_COLUMNS} FROM outline_node WHERE user_id = ? AND parent_id IS ?",
            (user_id, parent_id),
        )
        return [row_to_node(r) for r in rows]

    def _require_intersection(self, user_id: str, intersection_id: str) -> None:
        row = self._storage.fetch_one(
            "SELECT 1 FROM intersection WHERE id = ? AND user_id = ? AND is_deleted = 0",
            (intersection_id, user_id),
        )
        if row is None:
            raise NotFoundError("Intersection")

    def _apply_order(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        ordered: list[OutlineNode],
    ) -> None:
        """Write order_index = position for every node whose index changed."""
        updates = [
            (index, node.id, user_id)
            for index, node in enumerate(ordered)
            if node.order_index != index
        ]
        conn.executemany(
            "UPDATE outline_node SET order_index = ? WHERE id = ? AND user_id = ?", updates
        )

    def _renumber(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        parent_id: str | None,
        nodes: Iterable[OutlineNode],
    ) -> None:
        group = [n for n in nodes if n.parent_id == parent_id]
        current = {n.id: n.order_index for n in group}
        updates = [
            (n.order_index, n.id, user_id)
            for n in reorder_siblings(parent_id, group)
            if current[n.id] != n.order_index
        ]
        conn.executemany(
            "UPDATE outline_node SET order_index = ? WHERE id = ? AND user_id = ?", updates
        )
