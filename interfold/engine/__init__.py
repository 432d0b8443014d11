from interfold.engine.atomic_sets import AtomicSetStore
from interfold.engine.integrity import check_integrity
from interfold.engine.intersections import IntersectionStore
from interfold.engine.outline import OutlineStore
from interfold.engine.storage import SQLiteStorage
from interfold.engine.tree import (
    build_tree,
    flatten_tree,
    get_next_order_index,
    is_ancestor,
    reorder_siblings,
)

__all__ = [
    "AtomicSetStore",
    "IntersectionStore",
    "OutlineStore",
    "SQLiteStorage",
    "build_tree",
    "check_integrity",
    "flatten_tree",
    "get_next_order_index",
    "is_ancestor",
    "reorder_siblings",
]
