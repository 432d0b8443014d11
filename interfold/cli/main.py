"""Interfold CLI — command-line interface for outlines and intersections."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click
from pydantic import BaseModel

from interfold.client import Interfold
from interfold.exceptions import InterfoldError
from interfold.models import OutlineTreeNode

DEFAULT_DB = "interfold.db"


@contextmanager
def _client(ctx: click.Context) -> Generator[Interfold, None, None]:
    ifd = Interfold(ctx.obj["db"], user=ctx.obj["user"])
    try:
        yield ifd
    except InterfoldError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        ifd.close()


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_dump(v) for v in value]
    return value


def _echo_json(value: Any) -> None:
    click.echo(json.dumps(_dump(value), indent=2))


def _tree_lines(roots: Iterable[OutlineTreeNode]) -> Generator[str, None, None]:
    stack = list(reversed(list(roots)))
    while stack:
        node = stack.pop()
        marker = "-" if node.is_expanded or not node.children else "+"
        link = f"  <{node.intersection_id}>" if node.intersection_id else ""
        yield f"{'  ' * node.depth}{marker} {node.content}  [{node.id}]{link}"
        stack.extend(reversed(node.children))


@click.group()
@click.option("--db", default=DEFAULT_DB, help="Path to the database file.")
@click.option("--user", envvar="INTERFOLD_USER", default=None, help="Caller identity.")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON.")
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def cli(ctx: click.Context, db: str, user: str | None, as_json: bool, verbose: bool) -> None:
    """Interfold CLI — manage outlines and concept intersections."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["db"] = db
    ctx.obj["user"] = user
    ctx.obj["json"] = as_json


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Initialize a new Interfold database."""
    db_path = ctx.obj["db"]
    if Path(db_path).exists():
        click.echo(f"Database already exists at {db_path}")
        return
    Interfold(db_path).close()
    click.echo(f"Initialized Interfold database at {db_path}")


# --- Atomic sets ---


@cli.command()
@click.argument("name")
@click.option("--meta", default=None, help="JSON metadata for a new atomic set.")
@click.pass_context
def tag(ctx: click.Context, name: str, meta: str | None) -> None:
    """Find or create an atomic set by name."""
    with _client(ctx) as ifd:
        result = ifd.find_or_create_atomic_set(name, json.loads(meta) if meta else None)
    if ctx.obj["json"]:
        _echo_json(result)
        return
    state = "created" if result.was_created else "existing"
    click.echo(f"Atomic set: {result.atomic_set.id} ({result.atomic_set.name}, {state})")


@cli.command()
@click.pass_context
def tags(ctx: click.Context) -> None:
    """List atomic sets."""
    with _client(ctx) as ifd:
        results = ifd.atomic_sets()
    if ctx.obj["json"]:
        _echo_json(results)
        return
    if not results:
        click.echo("No atomic sets found.")
        return
    for a in results:
        click.echo(f"  {a.id}  {a.name}")


# --- Intersections ---


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--content", default=None, help="Text attached to the intersection.")
@click.pass_context
def intersect(ctx: click.Context, names: tuple[str, ...], content: str | None) -> None:
    """Create an intersection of atomic sets, named in discovery order.

    Missing atomic sets are created.
    """
    with _client(ctx) as ifd, ifd.batch():
        ids = [ifd.find_or_create_atomic_set(n).atomic_set.id for n in names]
        result = ifd.create_intersection(ids, ids, content)
    if ctx.obj["json"]:
        _echo_json(result)
        return
    click.echo(f"Intersection: {result.id} (path={list(names)})")


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--exact", is_flag=True, help="Require exactly these atomic sets.")
@click.pass_context
def find(ctx: click.Context, names: tuple[str, ...], exact: bool) -> None:
    """Find intersections containing the named atomic sets."""
    with _client(ctx) as ifd:
        found = [ifd.get_atomic_set_by_name(n) for n in names]
        results = []
        if all(found):
            results = ifd.find_intersections([a.id for a in found], exact_match=exact)
    if ctx.obj["json"]:
        _echo_json(results)
        return
    if not results:
        click.echo("No intersections found.")
        return
    for i in results:
        click.echo(f"  {i.id}  path={i.created_via_path}  content={i.content!r}")


@cli.command()
@click.argument("intersection_id")
@click.pass_context
def show(ctx: click.Context, intersection_id: str) -> None:
    """Show an intersection and its atomic sets."""
    with _client(ctx) as ifd:
        result = ifd.get_intersection(intersection_id)
    if ctx.obj["json"]:
        _echo_json(result)
        return
    state = "  (deleted)" if result.is_deleted else ""
    click.echo(f"Intersection: {result.id}{state}")
    click.echo(f"  atomic sets: {', '.join(a.name for a in result.atomic_sets)}")
    if result.content:
        click.echo(f"  content: {result.content}")


@cli.command()
@click.argument("intersection_id")
@click.pass_context
def forget(ctx: click.Context, intersection_id: str) -> None:
    """Soft-delete an intersection."""
    with _client(ctx) as ifd:
        result = ifd.soft_delete_intersection(intersection_id)
    click.echo(f"Deleted intersection {result.id}")


# --- Outline ---


@cli.command()
@click.pass_context
def outline(ctx: click.Context) -> None:
    """Print the outline tree."""
    with _client(ctx) as ifd:
        roots = ifd.outline()
    if ctx.obj["json"]:
        _echo_json(roots)
        return
    if not roots:
        click.echo("Outline is empty.")
        return
    for line in _tree_lines(roots):
        click.echo(line)


@cli.command()
@click.argument("content")
@click.option("--parent", "parent_id", default=None, help="Parent node id.")
@click.option("--index", "order_index", default=None, type=int, help="Sibling position.")
@click.option("--intersection", "intersection_id", default=None, help="Linked intersection.")
@click.pass_context
def add(
    ctx: click.Context,
    content: str,
    parent_id: str | None,
    order_index: int | None,
    intersection_id: str | None,
) -> None:
    """Add an outline node."""
    with _client(ctx) as ifd:
        node = ifd.create_node(
            content,
            parent_id=parent_id,
            order_index=order_index,
            intersection_id=intersection_id,
        )
    if ctx.obj["json"]:
        _echo_json(node)
        return
    click.echo(f"Node: {node.id} (order_index={node.order_index})")


@cli.command()
@click.argument("node_id")
@click.argument("content")
@click.pass_context
def edit(ctx: click.Context, node_id: str, content: str) -> None:
    """Replace a node's content."""
    with _client(ctx) as ifd:
        node = ifd.update_node_content(node_id, content)
    click.echo(f"Updated node {node.id}")


@cli.command()
@click.argument("node_id")
@click.option("--parent", "parent_id", default=None, help="New parent id (omit for root).")
@click.option("--index", "order_index", default=0, type=int, help="Position among siblings.")
@click.pass_context
def move(ctx: click.Context, node_id: str, parent_id: str | None, order_index: int) -> None:
    """Move a node under a new parent."""
    with _client(ctx) as ifd:
        node = ifd.move_node(node_id, parent_id, order_index)
    click.echo(f"Moved node {node.id} (parent={node.parent_id}, order_index={node.order_index})")


@cli.command()
@click.argument("node_id")
@click.pass_context
def indent(ctx: click.Context, node_id: str) -> None:
    """Make a node the last child of its previous sibling."""
    with _client(ctx) as ifd:
        node = ifd.indent_node(node_id)
    click.echo(f"Node {node.id} parent={node.parent_id}")


@cli.command()
@click.argument("node_id")
@click.pass_context
def outdent(ctx: click.Context, node_id: str) -> None:
    """Move a node up one level, right after its parent."""
    with _client(ctx) as ifd:
        node = ifd.outdent_node(node_id)
    click.echo(f"Node {node.id} parent={node.parent_id}")


@cli.command()
@click.argument("node_ids", nargs=-1, required=True)
@click.option("--parent", "parent_id", default=None, help="Parent of the nodes (omit for root).")
@click.pass_context
def reorder(ctx: click.Context, node_ids: tuple[str, ...], parent_id: str | None) -> None:
    """Put sibling nodes in the given order."""
    with _client(ctx) as ifd:
        nodes = ifd.reorder_nodes(parent_id, list(node_ids))
    if ctx.obj["json"]:
        _echo_json(nodes)
        return
    for n in nodes:
        click.echo(f"  {n.order_index}  {n.content}  [{n.id}]")


@cli.command()
@click.argument("node_id")
@click.pass_context
def toggle(ctx: click.Context, node_id: str) -> None:
    """Expand or collapse a node."""
    with _client(ctx) as ifd:
        node = ifd.toggle_expanded(node_id)
    click.echo(f"Node {node.id} {'expanded' if node.is_expanded else 'collapsed'}")


@cli.command()
@click.argument("node_id")
@click.pass_context
def delete(ctx: click.Context, node_id: str) -> None:
    """Delete a node and everything below it."""
    with _client(ctx) as ifd:
        removed = ifd.delete_node(node_id)
    click.echo(f"Deleted {removed} node(s)")


@cli.command()
@click.argument("node_id")
@click.pass_context
def path(ctx: click.Context, node_id: str) -> None:
    """Show the path from the root to a node."""
    with _client(ctx) as ifd:
        entries = ifd.node_path(node_id)
    if ctx.obj["json"]:
        _echo_json(entries)
        return
    click.echo(" > ".join(e.content for e in entries))


@cli.command("link-path")
@click.argument("node_id")
@click.pass_context
def link_path(ctx: click.Context, node_id: str) -> None:
    """Link a node to the intersection of the contents along its path."""
    with _client(ctx) as ifd:
        result = ifd.intersect_node_path(node_id)
    if ctx.obj["json"]:
        _echo_json(result)
        return
    click.echo(
        f"Linked {node_id} to intersection {result.id} "
        f"({', '.join(a.name for a in result.atomic_sets)})"
    )


# --- Whole store ---


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show database statistics."""
    with _client(ctx) as ifd:
        s = ifd.stats()
    if ctx.obj["json"]:
        _echo_json(s)
        return
    i = s.intersections
    click.echo(f"Atomic sets: {s.atomic_set_count}  Outline nodes: {s.outline_node_count}")
    click.echo(f"Intersections: {i.total} ({i.active} active, {i.deleted} deleted)")
    click.echo(
        f"  avg atomic sets: {i.avg_atomic_sets_per_intersection}"
        f"  longest path: {i.max_path_length}"
    )


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate internal consistency of the stored data."""
    with _client(ctx) as ifd:
        result = ifd.validate()
    if result.valid:
        click.echo("Data is valid.")
    else:
        click.echo("Validation errors:")
        for err in result.errors:
            click.echo(f"  ERROR: {err}")
    for warn in result.warnings:
        click.echo(f"  WARNING: {warn}")


@cli.command()
@click.option("--db", default=None, help="Database path (overrides INTERFOLD_DB_PATH).")
@click.pass_context
def mcp(ctx: click.Context, db: str | None) -> None:
    """Start the MCP server for AI agent integration."""
    import os

    if db:
        os.environ["INTERFOLD_DB_PATH"] = db
    if ctx.obj["user"]:
        os.environ["INTERFOLD_USER"] = ctx.obj["user"]
    from interfold.mcp.server import run_server

    run_server()


if __name__ == "__main__":
    cli()
