"""Pydantic models for the Interfold public API.

Fields are snake_case in Python and serialize with the camelCase names of the
RPC contract (``userId``, ``createdViaPath``, ``orderIndex``...) when dumped
with ``by_alias=True``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AtomicSet(_Model):
    """A named concept belonging to one user: a vertex of the hypergraph.

    Names are unique per user after trimming. ``metadata`` is an opaque,
    insertion-ordered map of JSON values.
    """

    id: str
    user_id: str
    name: str
    metadata: dict[str, Any] | None = None
    created_at: datetime

    def __repr__(self) -> str:
        return f"AtomicSet({self.name!r}, id={self.id!r})"


class FindOrCreateResult(_Model):
    """Outcome of an idempotent atomic set lookup-or-insert."""

    atomic_set: AtomicSet
    was_created: bool


class AtomicSetRef(_Model):
    """Minimal atomic set reference embedded in intersection reads."""

    id: str
    name: str


class Intersection(_Model):
    """A combination of 1-20 atomic sets: a hyperedge.

    ``created_via_path`` keeps the order in which the user discovered the
    combination; membership itself lives in the inverted index and is
    unordered. Deletion is logical only.
    """

    id: str
    user_id: str
    created_via_path: list[str]
    content: str | None = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime

    def __repr__(self) -> str:
        return f"Intersection({self.id!r}, path={self.created_via_path!r})"


class IntersectionWithAtomicSets(Intersection):
    """An intersection together with its members, joined through the index."""

    atomic_sets: list[AtomicSetRef] = Field(default_factory=list)

    @property
    def atomic_set_ids(self) -> set[str]:
        return {ref.id for ref in self.atomic_sets}


class IntersectionStats(_Model):
    """Summary counts over one user's intersections."""

    total: int
    active: int
    deleted: int
    avg_atomic_sets_per_intersection: float
    max_path_length: int


class OutlineNode(_Model):
    """A row of the editable outline: parent pointer plus sibling position."""

    id: str
    user_id: str
    parent_id: str | None = None
    content: str
    order_index: int = Field(ge=0)
    is_expanded: bool = True
    intersection_id: str | None = None
    created_at: datetime
    updated_at: datetime

    def __repr__(self) -> str:
        return (
            f"OutlineNode({self.content!r}, id={self.id!r}, "
            f"parent_id={self.parent_id!r}, order_index={self.order_index})"
        )


class OutlineTreeNode(OutlineNode):
    """An outline node with its nested children and distance from a root.

    Derived by ``interfold.engine.tree.build_tree``; never stored.
    """

    children: list[OutlineTreeNode] = Field(default_factory=list)
    depth: int = 0


class NodePathEntry(_Model):
    """One step of the path from a root to an outline node."""

    id: str
    content: str


class ValidationResult(_Model):
    """Result of a store consistency check.

    Contains a pass/fail flag, a list of errors, and a list of warnings
    found during validation.
    """

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class InterfoldStats(_Model):
    """Summary counts for one user's data."""

    atomic_set_count: int
    outline_node_count: int
    intersections: IntersectionStats
