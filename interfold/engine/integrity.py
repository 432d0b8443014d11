"""Cross-table consistency checks for one user's data.

Storage constraints already prevent most corruption; these checks catch what
SQLite cannot express: cross-user references, parent cycles, membership rules
and the sibling ordering the stores maintain.
"""

from __future__ import annotations

import json
from collections import defaultdict
from typing import Any

from interfold.engine.storage import SQLiteStorage
from interfold.validation import MAX_ATOMIC_SETS


def check_integrity(storage: SQLiteStorage, user_id: str) -> dict[str, Any]:
    """Validate one user's atomic sets, intersections and outline.

    Checks for:
    - Intersection members that are missing or owned by another user
    - Intersections with no members, or more than the member cap
    - Discovery paths that name non-members
    - Outline nodes whose parent is missing, foreign, or on a cycle
    - Outline nodes linked to missing or foreign intersections

    Warnings (not errors) cover sibling groups whose ``order_index`` values are
    not exactly 0..n-1 and nodes linked to soft-deleted intersections.

    Returns:
        Dict with 'valid' (bool), 'errors' and 'warnings' (lists of descriptions).
    """
    errors: list[str] = []
    warnings: list[str] = []

    owned_sets = {
        r["id"]
        for r in storage.fetch_all("SELECT id FROM atomic_set WHERE user_id = ?", (user_id,))
    }
    intersections = {
        r["id"]: r
        for r in storage.fetch_all(
            "SELECT id, created_via_path, is_deleted FROM intersection WHERE user_id = ?",
            (user_id,),
        )
    }

    members: dict[str, set[str]] = defaultdict(set)
    for row in storage.fetch_all(
        "SELECT e.intersection_id, e.atomic_set_id FROM intersection_element e "
        "JOIN intersection i ON i.id = e.intersection_id WHERE i.user_id = ?",
        (user_id,),
    ):
        members[row["intersection_id"]].add(row["atomic_set_id"])

    for intersection_id, row in intersections.items():
        member_ids = members.get(intersection_id, set())
        foreign = sorted(member_ids - owned_sets)
        if foreign:
            errors.append(
                f"Intersection '{intersection_id}' references unknown atomic sets: {foreign}"
            )
        if not member_ids:
            errors.append(f"Intersection '{intersection_id}' has no atomic sets")
        elif len(member_ids) > MAX_ATOMIC_SETS:
            errors.append(
                f"Intersection '{intersection_id}' has {len(member_ids)} atomic sets "
                f"(maximum {MAX_ATOMIC_SETS})"
            )
        stray = [a for a in json.loads(row["created_via_path"]) if a not in member_ids]
        if stray:
            errors.append(
                f"Intersection '{intersection_id}' path names non-members: {stray}"
            )

    nodes = {
        r["id"]: r
        for r in storage.fetch_all(
            "SELECT id, parent_id, order_index, intersection_id FROM outline_node "
            "WHERE user_id = ?",
            (user_id,),
        )
    }

    groups: dict[str | None, list[int]] = defaultdict(list)
    for node_id, row in nodes.items():
        parent_id = row["parent_id"]
        groups[parent_id].append(row["order_index"])
        if parent_id is not None and parent_id not in nodes:
            errors.append(f"Outline node '{node_id}' has unknown parent '{parent_id}'")

        linked = row["intersection_id"]
        if linked is not None:
            if linked not in intersections:
                errors.append(
                    f"Outline node '{node_id}' links unknown intersection '{linked}'"
                )
            elif intersections[linked]["is_deleted"]:
                warnings.append(
                    f"Outline node '{node_id}' links deleted intersection '{linked}'"
                )

    on_cycle: set[str] = set()
    for node_id in nodes:
        seen: list[str] = []
        current: str | None = node_id
        while current is not None and current in nodes and current not in on_cycle:
            if current in seen:
                cycle = seen[seen.index(current):]
                on_cycle.update(cycle)
                errors.append(f"Outline parent cycle: {sorted(cycle)}")
                break
            seen.append(current)
            current = nodes[current]["parent_id"]

    for parent_id, indexes in groups.items():
        if sorted(indexes) != list(range(len(indexes))):
            label = "root level" if parent_id is None else f"children of '{parent_id}'"
            warnings.append(f"Sibling order for {label} is not contiguous: {sorted(indexes)}")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }
