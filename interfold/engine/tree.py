"""Tree projection over flat outline rows.

The outline is stored as parent pointers plus a per-sibling ``order_index``.
Everything in this module is a pure function over those rows: the nested
view is derived on demand and never written back.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Iterable, Mapping, Sequence

from interfold.exceptions import NotFoundError, OutlineIntegrityError
from interfold.models import OutlineNode, OutlineTreeNode

logger = logging.getLogger(__name__)


def sibling_sort_key(node: OutlineNode) -> tuple[int, str, str]:
    """Sort key for one sibling group: position, then creation order."""
    return (node.order_index, node.created_at.isoformat(), node.id)


def build_tree(nodes: Iterable[OutlineNode], *, strict: bool = False) -> list[OutlineTreeNode]:
    """Assemble flat outline rows into root nodes with nested, sorted children.

    Every sibling list is sorted by ``order_index`` ascending and every node is
    stamped with ``depth`` = number of ancestors. The input rows are not
    modified.

    Rows that cannot be reached from a root (their parent id does not resolve,
    or they sit on a parent-pointer cycle) are dropped with a warning.

    Args:
        nodes: Flat outline rows for a single owner.
        strict: Raise instead of dropping unreachable rows.

    Returns:
        Root nodes, sorted.

    Raises:
        OutlineIntegrityError: If ``strict`` and some rows are unreachable.
    """
    by_id: dict[str, OutlineTreeNode] = {}
    for node in nodes:
        row = node.model_dump(exclude={"children", "depth"})
        by_id[node.id] = OutlineTreeNode(**row, children=[], depth=0)

    roots: list[OutlineTreeNode] = []
    for tree_node in by_id.values():
        if tree_node.parent_id is None:
            roots.append(tree_node)
            continue
        parent = by_id.get(tree_node.parent_id)
        if parent is not None:
            parent.children.append(tree_node)

    roots.sort(key=sibling_sort_key)
    visited: set[str] = set()
    queue: deque[OutlineTreeNode] = deque(roots)
    while queue:
        current = queue.popleft()
        visited.add(current.id)
        current.children.sort(key=sibling_sort_key)
        for child in current.children:
            child.depth = current.depth + 1
            queue.append(child)

    unreachable = sorted(set(by_id) - visited)
    if unreachable:
        message = f"{len(unreachable)} outline node(s) are not reachable from a root"
        if strict:
            raise OutlineIntegrityError(message, node_ids=unreachable)
        logger.warning("%s, dropping: %s", message, unreachable)

    return roots


def flatten_tree(roots: Iterable[OutlineTreeNode]) -> list[OutlineNode]:
    """Inverse of ``build_tree``: pre-order rows without ``children``/``depth``."""
    flattened: list[OutlineNode] = []
    stack: list[OutlineTreeNode] = list(reversed(list(roots)))
    while stack:
        current = stack.pop()
        flattened.append(OutlineNode(**current.model_dump(exclude={"children", "depth"})))
        stack.extend(reversed(current.children))
    return flattened


def is_ancestor(
    ancestor_id: str,
    descendant_id: str,
    nodes_by_id: Mapping[str, OutlineNode],
) -> bool:
    """True if ``ancestor_id`` is ``descendant_id`` or one of its ancestors.

    Walks the parent chain from ``descendant_id`` up to a root. Stops on a
    missing parent or on a corrupt cycle.
    """
    seen: set[str] = set()
    current: str | None = descendant_id
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        node = nodes_by_id.get(current)
        if node is None:
            break
        current = node.parent_id
    return False


def get_next_order_index(parent_id: str | None, nodes: Iterable[OutlineNode]) -> int:
    """``max(order_index) + 1`` among the children of ``parent_id``, or 0."""
    indexes = [n.order_index for n in nodes if n.parent_id == parent_id]
    return max(indexes) + 1 if indexes else 0


def reorder_siblings(parent_id: str | None, nodes: Iterable[OutlineNode]) -> list[OutlineNode]:
    """Renumber the children of ``parent_id`` to 0..n-1, keeping their order.

    Nodes outside that sibling group are returned untouched, ahead of the
    renumbered group.
    """
    nodes = list(nodes)
    siblings = sorted((n for n in nodes if n.parent_id == parent_id), key=sibling_sort_key)
    others = [n for n in nodes if n.parent_id != parent_id]
    return others + [
        node.model_copy(update={"order_index": index}) for index, node in enumerate(siblings)
    ]


def get_siblings(node_id: str, nodes: Sequence[OutlineNode]) -> list[OutlineNode]:
    """All nodes sharing ``node_id``'s parent, itself included, sorted."""
    target = next((n for n in nodes if n.id == node_id), None)
    if target is None:
        raise NotFoundError("Outline node", f"Outline node not found: {node_id}")
    return sorted((n for n in nodes if n.parent_id == target.parent_id), key=sibling_sort_key)


def path_from_root(node_id: str, nodes_by_id: Mapping[str, OutlineNode]) -> list[str]:
    """Node ids from the root down to ``node_id`` inclusive."""
    path: list[str] = []
    current: str | None = node_id
    while current is not None:
        node = nodes_by_id.get(current)
        if node is None:
            raise NotFoundError("Outline node", f"Outline node not found: {current}")
        if current in path:
            raise OutlineIntegrityError(f"Parent cycle through node {current}", node_ids=path)
        path.append(current)
        current = node.parent_id
    path.reverse()
    return path


def content_from_path(path: Sequence[str], nodes_by_id: Mapping[str, OutlineNode]) -> list[str]:
    """The ``content`` of each node along ``path``."""
    contents = []
    for node_id in path:
        node = nodes_by_id.get(node_id)
        if node is None:
            raise NotFoundError("Outline node", f"Outline node not found: {node_id}")
        contents.append(node.content)
    return contents


def descendant_ids(node_id: str, nodes: Iterable[OutlineNode]) -> list[str]:
    """Ids of every node below ``node_id`` (breadth-first, excluding itself)."""
    children: dict[str | None, list[str]] = defaultdict(list)
    for node in nodes:
        children[node.parent_id].append(node.id)

    found: list[str] = []
    seen = {node_id}
    queue = deque(children.get(node_id, []))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        found.append(current)
        queue.extend(children.get(current, []))
    return found
