"""Interfold MCP server — exposes outline and intersection operations as tools for AI agents."""

from __future__ import annotations

import functools
import logging
import os
import sys
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP
from pydantic import BaseModel

from interfold.client import Interfold
from interfold.exceptions import InterfoldError

# All logging goes to stderr; stdout carries JSON-RPC
logging.basicConfig(stream=sys.stderr, level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger("interfold.mcp")

# ---------------------------------------------------------------------------
# Client singleton for the single-process stdio server
# ---------------------------------------------------------------------------

_CLIENT: Interfold | None = None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[dict]:
    global _CLIENT
    db_path = os.environ.get("INTERFOLD_DB_PATH", "interfold.db")
    user = os.environ.get("INTERFOLD_USER")
    logger.info("Opening Interfold database: %s (user=%s)", db_path, user)
    _CLIENT = Interfold(db_path, user=user)
    try:
        yield {}
    finally:
        if _CLIENT is not None:
            _CLIENT.close()
            _CLIENT = None


mcp = FastMCP(
    "Interfold",
    instructions=(
        "Interfold stores a user's notes as an outline tree projected over a hypergraph. "
        "Atomic sets are named concepts, deduplicated by name. "
        "Intersections combine 1-20 atomic sets and remember the order they were discovered in. "
        "Outline nodes form a tree; each may link to one intersection. "
        "All ids are UUIDs. Use intersect_node_path to tag a node with the concepts on its path."
    ),
    lifespan=app_lifespan,
)


def _get_client() -> Interfold:
    """Return the active Interfold client."""
    if _CLIENT is None:
        raise RuntimeError("Interfold client is not initialized")
    return _CLIENT


def _safe_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> dict:
        try:
            return fn(*args, **kwargs)
        except InterfoldError as exc:
            logger.warning("Tool %s rejected: %s", fn.__name__, exc)
            return {"error": True, "kind": type(exc).__name__, "message": str(exc)}
        except Exception as exc:
            logger.exception("Tool %s failed", fn.__name__)
            return {"error": True, "kind": type(exc).__name__, "message": str(exc)}
    return wrapper


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def _dump_all(models: list[Any]) -> list[dict]:
    return [_dump(m) for m in models]


# ===================================================================
# Atomic set tools (4)
# ===================================================================


@mcp.tool()
@_safe_tool
def find_or_create_atomic_set(
    name: str,
    metadata: dict[str, Any] | None = None,
) -> dict:
    """Return the atomic set (concept) with this name, creating it if needed.

    Args:
        name: Concept name, 1-200 characters after trimming.
        metadata: Key-value data stored on a newly created set. Ignored if it exists.
    """
    return _dump(_get_client().find_or_create_atomic_set(name, metadata))


@mcp.tool()
@_safe_tool
def list_atomic_sets() -> dict:
    """List all atomic sets, sorted by name."""
    results = _get_client().atomic_sets()
    return {"count": len(results), "atomicSets": _dump_all(results)}


@mcp.tool()
@_safe_tool
def get_atomic_set(
    id: str | None = None,
    name: str | None = None,
) -> dict:
    """Get an atomic set by id or by name.

    Args:
        id: Atomic set id.
        name: Atomic set name, used when no id is given.
    """
    ifd = _get_client()
    if id is not None:
        return _dump(ifd.get_atomic_set(id))
    if name is None:
        return {"error": True, "kind": "ValidationError", "message": "Pass id or name"}
    atomic_set = ifd.get_atomic_set_by_name(name)
    if atomic_set is None:
        return {"found": False, "name": name}
    return _dump(atomic_set)


@mcp.tool()
@_safe_tool
def update_atomic_set_metadata(id: str, metadata: dict[str, Any]) -> dict:
    """Replace an atomic set's metadata.

    Args:
        id: Atomic set id.
        metadata: The new metadata. Replaces the previous value entirely.
    """
    return _dump(_get_client().update_atomic_set_metadata(id, metadata))


# ===================================================================
# Intersection tools (7)
# ===================================================================


@mcp.tool()
@_safe_tool
def create_intersection(
    atomic_set_ids: list[str],
    created_via_path: list[str] | None = None,
    content: str | None = None,
) -> dict:
    """Combine 1-20 atomic sets into an intersection.

    Args:
        atomic_set_ids: Member atomic set ids, no duplicates.
        created_via_path: Discovery order of (some of) the members. Defaults to atomic_set_ids.
        content: Optional text, at most 5000 characters.
    """
    return _dump(_get_client().create_intersection(atomic_set_ids, created_via_path, content))


@mcp.tool()
@_safe_tool
def get_intersection(id: str) -> dict:
    """Get an intersection with its atomic sets. Soft-deleted intersections are included.

    Args:
        id: Intersection id.
    """
    return _dump(_get_client().get_intersection(id))


@mcp.tool()
@_safe_tool
def find_intersections(atomic_set_ids: list[str], exact_match: bool = False) -> dict:
    """Find active intersections that contain all the given atomic sets.

    Args:
        atomic_set_ids: Atomic set ids that must all be members.
        exact_match: If true, the members must be exactly these atomic sets.
    """
    results = _get_client().find_intersections(atomic_set_ids, exact_match=exact_match)
    return {"count": len(results), "intersections": _dump_all(results)}


@mcp.tool()
@_safe_tool
def soft_delete_intersection(id: str) -> dict:
    """Mark an intersection deleted. Linked outline nodes keep their link.

    Args:
        id: Intersection id.
    """
    return _dump(_get_client().soft_delete_intersection(id))


@mcp.tool()
@_safe_tool
def update_intersection_content(id: str, content: str) -> dict:
    """Replace the text of an active intersection.

    Args:
        id: Intersection id.
        content: New text, 1-5000 characters.
    """
    return _dump(_get_client().update_intersection_content(id, content))


@mcp.tool()
@_safe_tool
def list_intersections(include_deleted: bool = False) -> dict:
    """List intersections, oldest first.

    Args:
        include_deleted: Include soft-deleted intersections.
    """
    results = _get_client().intersections(include_deleted=include_deleted)
    return {"count": len(results), "intersections": _dump_all(results)}


@mcp.tool()
@_safe_tool
def intersection_stats() -> dict:
    """Counts, average size and longest discovery path of intersections."""
    return _dump(_get_client().intersection_stats())


# ===================================================================
# Outline tools (14)
# ===================================================================


@mcp.tool()
@_safe_tool
def get_outline(flat: bool = False) -> dict:
    """Get the outline.

    Args:
        flat: Return flat rows instead of nested root nodes.
    """
    ifd = _get_client()
    if flat:
        rows = ifd.outline_rows()
        return {"count": len(rows), "nodes": _dump_all(rows)}
    roots = ifd.outline()
    return {"count": len(roots), "roots": _dump_all(roots)}


@mcp.tool()
@_safe_tool
def get_node(id: str) -> dict:
    """Get an outline node by id.

    Args:
        id: Node id.
    """
    return _dump(_get_client().get_node(id))


@mcp.tool()
@_safe_tool
def create_node(
    content: str,
    parent_id: str | None = None,
    order_index: int | None = None,
    intersection_id: str | None = None,
) -> dict:
    """Add an outline node.

    Args:
        content: Node text, 1-5000 characters after trimming.
        parent_id: Parent node id. Omit for a root node.
        order_index: Position among siblings. Defaults to after the last sibling.
        intersection_id: Active intersection to link the node to.
    """
    node = _get_client().create_node(
        content,
        parent_id=parent_id,
        order_index=order_index,
        intersection_id=intersection_id,
    )
    return _dump(node)


@mcp.tool()
@_safe_tool
def update_node_content(id: str, content: str) -> dict:
    """Replace an outline node's text.

    Args:
        id: Node id.
        content: New text, 1-5000 characters after trimming.
    """
    return _dump(_get_client().update_node_content(id, content))


@mcp.tool()
@_safe_tool
def move_node(id: str, new_parent_id: str | None = None, new_order_index: int = 0) -> dict:
    """Move a node (with its subtree) under a new parent.

    Args:
        id: Node id.
        new_parent_id: New parent id. Omit to make it a root node.
        new_order_index: Position among the new siblings. Past the end appends.
    """
    return _dump(_get_client().move_node(id, new_parent_id, new_order_index))


@mcp.tool()
@_safe_tool
def indent_node(id: str) -> dict:
    """Make a node the last child of its previous sibling (Tab).

    Args:
        id: Node id.
    """
    return _dump(_get_client().indent_node(id))


@mcp.tool()
@_safe_tool
def outdent_node(id: str) -> dict:
    """Move a node up one level, right after its parent (Shift+Tab).

    Args:
        id: Node id.
    """
    return _dump(_get_client().outdent_node(id))


@mcp.tool()
@_safe_tool
def reorder_nodes(node_ids: list[str], parent_id: str | None = None) -> dict:
    """Put sibling nodes in the given order. Unlisted siblings follow.

    Args:
        node_ids: Children of parent_id in their new order.
        parent_id: Parent of the nodes. Omit for root nodes.
    """
    nodes = _get_client().reorder_nodes(parent_id, node_ids)
    return {"count": len(nodes), "nodes": _dump_all(nodes)}


@mcp.tool()
@_safe_tool
def toggle_expanded(id: str) -> dict:
    """Expand or collapse an outline node.

    Args:
        id: Node id.
    """
    return _dump(_get_client().toggle_expanded(id))


@mcp.tool()
@_safe_tool
def delete_node(id: str) -> dict:
    """Delete an outline node and its whole subtree.

    Args:
        id: Node id.
    """
    return {"deleted": _get_client().delete_node(id)}


@mcp.tool()
@_safe_tool
def get_node_path(id: str) -> dict:
    """Get the ids and contents from the root down to a node.

    Args:
        id: Node id.
    """
    entries = _get_client().node_path(id)
    return {"path": _dump_all(entries)}


@mcp.tool()
@_safe_tool
def get_siblings(id: str) -> dict:
    """Get a node's siblings (itself included), in order.

    Args:
        id: Node id.
    """
    nodes = _get_client().siblings(id)
    return {"count": len(nodes), "nodes": _dump_all(nodes)}


@mcp.tool()
@_safe_tool
def link_node_intersection(id: str, intersection_id: str | None = None) -> dict:
    """Link an outline node to an intersection, or unlink it.

    Args:
        id: Node id.
        intersection_id: Active intersection id. Omit to remove the link.
    """
    return _dump(_get_client().link_node_intersection(id, intersection_id))


@mcp.tool()
@_safe_tool
def intersect_node_path(id: str) -> dict:
    """Tag a node with the concepts along its path from the root.

    Each distinct text on the path becomes an atomic set; the intersection of
    exactly those sets is reused or created and linked to the node.

    Args:
        id: Node id.
    """
    return _dump(_get_client().intersect_node_path(id))


# ===================================================================
# Store tools (2)
# ===================================================================


@mcp.tool()
@_safe_tool
def get_stats() -> dict:
    """Get counts of atomic sets, outline nodes and intersections."""
    return _dump(_get_client().stats())


@mcp.tool()
@_safe_tool
def validate() -> dict:
    """Check the stored data for internal consistency."""
    return _dump(_get_client().validate())


# ===================================================================
# Resources (2)
# ===================================================================


@mcp.resource("interfold://schema")
def schema_resource() -> str:
    """Interfold data model reference.

    Describes the core concepts: atomic sets, intersections and outline nodes.
    """
    return (
        "# Interfold Data Model\n\n"
        "## Atomic sets\n"
        "A named concept. Names are unique per user after trimming (1-200 chars).\n"
        "- `id`, `name`, `metadata` (optional key-value map), `createdAt`\n\n"
        "## Intersections\n"
        "A combination of 1-20 atomic sets (a hyperedge).\n"
        "- `createdViaPath`: the order the atomic sets were discovered in\n"
        "- `content`: optional text, up to 5000 chars\n"
        "- `isDeleted`: soft deletion flag; deleted intersections are hidden from searches\n\n"
        "## Outline nodes\n"
        "An editable tree. Each node has `parentId` (null for roots), `content`,\n"
        "`orderIndex` (position among siblings), `isExpanded`, and an optional\n"
        "`intersectionId` link. Deleting a node deletes its subtree. A node can\n"
        "never be moved under itself or one of its descendants.\n"
    )


@mcp.resource("interfold://stats")
def stats_resource() -> str:
    """Live statistics for the current user."""
    stats = _get_client().stats()
    i = stats.intersections
    lines = [
        "# Interfold Statistics\n",
        f"Atomic sets: {stats.atomic_set_count}",
        f"Outline nodes: {stats.outline_node_count}",
        f"Intersections: {i.total} ({i.active} active, {i.deleted} deleted)",
        f"Average atomic sets per intersection: {i.avg_atomic_sets_per_intersection}",
        f"Longest discovery path: {i.max_path_length}",
    ]
    return "\n".join(lines)


# ===================================================================
# Entry point
# ===================================================================


def run_server() -> None:
    """Run the Interfold MCP server over stdio."""
    mcp.run(transport="stdio")
