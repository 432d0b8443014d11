"""Interfold client: the primary interface to a user's outline and hypergraph."""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from interfold.engine.atomic_sets import AtomicSetStore
from interfold.engine.integrity import check_integrity
from interfold.engine.intersections import IntersectionStore
from interfold.engine.outline import OutlineStore
from interfold.engine.storage import SQLiteStorage
from interfold.engine.tree import build_tree
from interfold.exceptions import IdentityRequiredError, ValidationError
from interfold.models import (
    AtomicSet,
    FindOrCreateResult,
    InterfoldStats,
    Intersection,
    IntersectionStats,
    IntersectionWithAtomicSets,
    NodePathEntry,
    OutlineNode,
    OutlineTreeNode,
    ValidationResult,
)
from interfold.validation import MAX_ATOMIC_SETS, parse_user

logger = logging.getLogger(__name__)


class Interfold:
    """An outline-over-hypergraph store, scoped to one caller identity.

    Every read and write goes through the identity given as ``user``. Views
    for other identities share the same SQLite connection.

    Constructor patterns:
        - ``Interfold(user="u1")``: in-memory, ephemeral (SQLite ``:memory:``)
        - ``Interfold("notes.db", user="u1")``: local persistent SQLite file

    Example:
        ```python
        ifd = Interfold("notes.db", user="alice")
        ai = ifd.find_or_create_atomic_set("AI").atomic_set
        ethics = ifd.find_or_create_atomic_set("Ethics").atomic_set
        ifd.create_intersection([ai.id, ethics.id])

        bob = ifd.as_user("bob")   # same file, bob's data only
        ```
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        user: str | None = None,
        # Private: shared storage for identity views
        _storage: SQLiteStorage | None = ...,  # type: ignore[assignment]
    ) -> None:
        self._path = str(path) if path else None
        if _storage is not ...:
            self._storage = _storage
            self._owns_storage = False
        else:
            self._storage = SQLiteStorage(self._path or ":memory:")
            self._owns_storage = True

        self._user = parse_user(user) if user is not None else None
        self._atomic_sets = AtomicSetStore(self._storage)
        self._intersections = IntersectionStore(self._storage)
        self._outline = OutlineStore(self._storage)

    def close(self) -> None:
        """Release the SQLite connection.

        Identity views created with ``as_user`` share the connection and
        leave it open; only the instance that opened it closes it.
        """
        if self._owns_storage:
            self._storage.close()

    def __enter__(self) -> Interfold:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # --- Identity ---

    @property
    def current_user(self) -> str | None:
        """Caller identity this view is scoped to."""
        return self._user

    def as_user(self, user: str) -> Interfold:
        """Return a view scoped to another caller identity.

        The returned instance shares the same SQLite connection, but reads
        and writes only ``user``'s rows.
        """
        return Interfold(self._path, user=user, _storage=self._storage)

    def _require_user(self) -> str:
        if self._user is None:
            raise IdentityRequiredError(
                "No caller identity. Pass user= or use as_user() before calling this."
            )
        return self._user

    @contextmanager
    def batch(self) -> Generator[None, None, None]:
        """Group several operations into one transaction.

        Everything inside the block commits together or, if the block raises,
        not at all.

        Example:
            ```python
            with ifd.batch():
                parent = ifd.create_node("Projects")
                ifd.create_node("Interfold", parent_id=parent.id)
            ```
        """
        with self._storage.transaction():
            yield

    # --- Atomic sets ---

    def find_or_create_atomic_set(
        self, name: str, metadata: dict[str, Any] | None = None
    ) -> FindOrCreateResult:
        """Return the atomic set called ``name`` (trimmed), creating it if needed.

        An existing set is returned unchanged, ``was_created=False``.
        """
        return self._atomic_sets.find_or_create(self._require_user(), name, metadata)

    def atomic_sets(self) -> list[AtomicSet]:
        """All atomic sets, by name."""
        return self._atomic_sets.get_all(self._require_user())

    def get_atomic_set(self, id: str) -> AtomicSet:
        return self._atomic_sets.get_by_id(self._require_user(), id)

    def get_atomic_set_by_name(self, name: str) -> AtomicSet | None:
        return self._atomic_sets.get_by_name(self._require_user(), name)

    def update_atomic_set_metadata(self, id: str, metadata: dict[str, Any]) -> AtomicSet:
        """Replace (not merge) an atomic set's metadata."""
        return self._atomic_sets.update_metadata(self._require_user(), id, metadata)

    # --- Intersections ---

    def create_intersection(
        self,
        atomic_set_ids: list[str],
        created_via_path: list[str] | None = None,
        content: str | None = None,
    ) -> Intersection:
        """Combine 1-20 atomic sets into a new intersection.

        Args:
            atomic_set_ids: Member ids, no duplicates.
            created_via_path: Discovery order. Defaults to ``atomic_set_ids``.
            content: Optional free text, at most 5000 characters.

        Returns:
            The created intersection. Nothing is written if any member is
            missing or foreign.
        """
        path = list(atomic_set_ids) if created_via_path is None else created_via_path
        return self._intersections.create(self._require_user(), atomic_set_ids, path, content)

    def get_intersection(self, id: str) -> IntersectionWithAtomicSets:
        """Fetch an intersection with its members, even if soft-deleted."""
        return self._intersections.get_by_id(self._require_user(), id)

    def find_intersections(
        self, atomic_set_ids: list[str], *, exact_match: bool = False
    ) -> list[Intersection]:
        """Active intersections containing all given atomic sets (or exactly them)."""
        return self._intersections.find_by_atomic_sets(
            self._require_user(), atomic_set_ids, exact_match
        )

    def soft_delete_intersection(self, id: str) -> Intersection:
        return self._intersections.soft_delete(self._require_user(), id)

    def update_intersection_content(self, id: str, content: str) -> Intersection:
        return self._intersections.update_content(self._require_user(), id, content)

    def intersections(self, *, include_deleted: bool = False) -> list[Intersection]:
        """All intersections, oldest first."""
        return self._intersections.get_all(self._require_user(), include_deleted)

    def intersection_stats(self) -> IntersectionStats:
        return self._intersections.stats(self._require_user())

    # --- Outline ---

    def outline(self) -> list[OutlineTreeNode]:
        """The outline as sorted root nodes with nested children.

        Raises:
            OutlineIntegrityError: If stored rows cannot form a tree.
        """
        return build_tree(self._outline.get_user_outline(self._require_user()), strict=True)

    def outline_rows(self) -> list[OutlineNode]:
        """The outline as flat rows."""
        return self._outline.get_user_outline(self._require_user())

    def get_node(self, id: str) -> OutlineNode:
        return self._outline.get_node(self._require_user(), id)

    def create_node(
        self,
        content: str,
        *,
        parent_id: str | None = None,
        order_index: int | None = None,
        intersection_id: str | None = None,
    ) -> OutlineNode:
        """Add a node; by default it becomes the last child of ``parent_id``."""
        return self._outline.create_node(
            self._require_user(), parent_id, content, order_index, intersection_id
        )

    def update_node_content(self, id: str, content: str) -> OutlineNode:
        return self._outline.update_node_content(self._require_user(), id, content)

    def move_node(
        self, id: str, new_parent_id: str | None, new_order_index: int
    ) -> OutlineNode:
        """Move a node under ``new_parent_id`` (None for root) at a position.

        Raises:
            ValidationError: If the target is the node itself or a descendant.
        """
        return self._outline.move_node(self._require_user(), id, new_parent_id, new_order_index)

    def indent_node(self, id: str) -> OutlineNode:
        return self._outline.indent_node(self._require_user(), id)

    def outdent_node(self, id: str) -> OutlineNode:
        return self._outline.outdent_node(self._require_user(), id)

    def reorder_nodes(self, parent_id: str | None, node_ids: list[str]) -> list[OutlineNode]:
        return self._outline.reorder_nodes(self._require_user(), parent_id, node_ids)

    def toggle_expanded(self, id: str) -> OutlineNode:
        return self._outline.toggle_expanded(self._require_user(), id)

    def delete_node(self, id: str) -> int:
        """Delete a node and its subtree. Returns the number of removed nodes."""
        return self._outline.delete_node(self._require_user(), id)

    def node_path(self, id: str) -> list[NodePathEntry]:
        return self._outline.node_path(self._require_user(), id)

    def siblings(self, id: str) -> list[OutlineNode]:
        return self._outline.siblings(self._require_user(), id)

    def link_node_intersection(self, id: str, intersection_id: str | None) -> OutlineNode:
        """Link a node to an active intersection, or unlink it with None."""
        return self._outline.set_intersection(self._require_user(), id, intersection_id)

    def intersect_node_path(self, id: str) -> IntersectionWithAtomicSets:
        """Turn a node's root path into an intersection and link the node to it.

        Each distinct content along the path becomes an atomic set (found or
        created by name). An active intersection with exactly those members is
        reused; otherwise one is created with the path order as its
        ``created_via_path``. Runs as a single transaction.

        Raises:
            ValidationError: If the path holds more than 20 distinct contents,
                or a content is too long to be an atomic set name.
        """
        user_id = self._require_user()
        with self._storage.transaction():
            path = self._outline.node_path(user_id, id)
            names = list(dict.fromkeys(entry.content for entry in path))
            if len(names) > MAX_ATOMIC_SETS:
                raise ValidationError(
                    f"Path has {len(names)} distinct entries (maximum {MAX_ATOMIC_SETS})",
                    field="id",
                )
            ids = [self._atomic_sets.find_or_create(user_id, name).atomic_set.id for name in names]

            existing = self._intersections.find_by_atomic_sets(user_id, ids, exact_match=True)
            if existing:
                intersection_id = existing[0].id
            else:
                intersection_id = self._intersections.create(user_id, ids, ids).id
            self._outline.set_intersection(user_id, id, intersection_id)

        logger.debug("Linked node %s to path intersection %s", id, intersection_id)
        return self._intersections.get_by_id(user_id, intersection_id)

    # --- Whole store ---

    def stats(self) -> InterfoldStats:
        """Counts of atomic sets and outline nodes plus intersection statistics."""
        user_id = self._require_user()
        counts = self._storage.table_counts(user_id)
        return InterfoldStats(
            atomic_set_count=counts["atomic_set"],
            outline_node_count=counts["outline_node"],
            intersections=self._intersections.stats(user_id),
        )

    def validate(self) -> ValidationResult:
        """Check the caller's data for internal consistency.

        Returns:
            A ``ValidationResult`` with ``valid``, ``errors``, and ``warnings`` fields.
        """
        result = check_integrity(self._storage, self._require_user())
        return ValidationResult(
            valid=result["valid"],
            errors=result.get("errors", []),
            warnings=result.get("warnings", []),
        )

    def __repr__(self) -> str:
        return f"Interfold(path={self._path!r}, user={self._user!r})"
