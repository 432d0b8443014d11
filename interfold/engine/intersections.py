"""Intersections (hyperedges) and their inverted index.

``intersection`` rows hold the ordered discovery path and content;
``intersection_element`` rows are the unordered membership, one row per
(intersection, atomic set) pair. Both are always written in the same
transaction.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections import defaultdict

from interfold.engine.storage import SQLiteStorage, placeholders, utcnow
from interfold.exceptions import NotFoundError
from interfold.models import (
    AtomicSetRef,
    Intersection,
    IntersectionStats,
    IntersectionWithAtomicSets,
)
from interfold.validation import (
    CreateIntersectionInput,
    FindByAtomicSetsInput,
    UpdateIntersectionContentInput,
    parse,
    parse_id,
)

logger = logging.getLogger(__name__)

_COLUMNS = "id, user_id, created_via_path, content, is_deleted, created_at, updated_at"


def row_to_intersection(row: sqlite3.Row) -> Intersection:
    return Intersection(
        id=row["id"],
        user_id=row["user_id"],
        created_via_path=json.loads(row["created_via_path"]),
        content=row["content"],
        is_deleted=bool(row["is_deleted"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class IntersectionStore:
    """User-scoped intersections with soft deletion.

    Soft-deleted intersections stay readable by id (outline nodes may still
    point at them) but are excluded from every listing and lookup.
    """

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def create(
        self,
        user_id: str,
        atomic_set_ids: list[str],
        created_via_path: list[str],
        content: str | None = None,
    ) -> Intersection:
        """Create an intersection over 1-20 of the user's atomic sets.

        Args:
            user_id: Caller identity.
            atomic_set_ids: Unordered member ids, no duplicates.
            created_via_path: Discovery order; a subset of ``atomic_set_ids``.
            content: Optional text, at most 5000 characters.

        Raises:
            ValidationError: On bad cardinality, duplicates, path/member
                mismatch or oversized content.
            NotFoundError: If any member is absent or owned by another user.
                Nothing is written in that case.
        """
        data = parse(
            CreateIntersectionInput,
            atomic_set_ids=atomic_set_ids,
            created_via_path=created_via_path,
            content=content,
        )
        intersection_id = str(uuid.uuid4())
        now = utcnow()

        with self._storage.transaction() as conn:
            owned = conn.execute(
                f"SELECT count(*) FROM atomic_set WHERE user_id = ? "
                f"AND id IN ({placeholders(data.atomic_set_ids)})",
                (user_id, *data.atomic_set_ids),
            ).fetchone()[0]
            if owned != len(data.atomic_set_ids):
                raise NotFoundError("Atomic set", "One or more atomic sets not found")

            conn.execute(
                f"INSERT INTO intersection ({_COLUMNS}) VALUES (?, ?, ?, ?, 0, ?, ?)",
                (
                    intersection_id,
                    user_id,
                    json.dumps(data.created_via_path),
                    data.content,
                    now,
                    now,
                ),
            )
            conn.executemany(
                "INSERT INTO intersection_element (intersection_id, atomic_set_id) VALUES (?, ?)",
                [(intersection_id, atomic_set_id) for atomic_set_id in data.atomic_set_ids],
            )

        logger.debug(
            "Created intersection %s over %d atomic sets for %s",
            intersection_id,
            len(data.atomic_set_ids),
            user_id,
        )
        return Intersection(
            id=intersection_id,
            user_id=user_id,
            created_via_path=data.created_via_path,
            content=data.content,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )

    def get_by_id(self, user_id: str, intersection_id: str) -> IntersectionWithAtomicSets:
        """Fetch an intersection, soft-deleted or not, with its members.

        Raises:
            NotFoundError: If absent or owned by another user.
        """
        intersection = self._fetch(user_id, parse_id(intersection_id))
        rows = self._storage.fetch_all(
            "SELECT a.id, a.name FROM intersection_element e "
            "JOIN atomic_set a ON a.id = e.atomic_set_id "
            "WHERE e.intersection_id = ? ORDER BY a.name, a.id",
            (intersection.id,),
        )
        return IntersectionWithAtomicSets(
            **intersection.model_dump(),
            atomic_sets=[AtomicSetRef(id=r["id"], name=r["name"]) for r in rows],
        )

    def find_by_atomic_sets(
        self,
        user_id: str,
        atomic_set_ids: list[str],
        exact_match: bool = False,
    ) -> list[Intersection]:
        """Active intersections containing all of ``atomic_set_ids``.

        With ``exact_match`` the member set must equal the query set.
        Candidates are gathered through the inverted index, then each one's
        full membership is tested. Cost is O(candidates x members), which is
        bounded by the 20-member cap.
        """
        data = parse(
            FindByAtomicSetsInput, atomic_set_ids=atomic_set_ids, exact_match=exact_match
        )
        wanted = set(data.atomic_set_ids)

        candidate_rows = self._storage.fetch_all(
            f"SELECT DISTINCT e.intersection_id FROM intersection_element e "
            f"JOIN intersection i ON i.id = e.intersection_id "
            f"WHERE i.user_id = ? AND i.is_deleted = 0 "
            f"AND e.atomic_set_id IN ({placeholders(data.atomic_set_ids)})",
            (user_id, *data.atomic_set_ids),
        )
        candidates = [r[0] for r in candidate_rows]
        if not candidates:
            return []

        members = self.memberships(candidates)
        matched = []
        for intersection_id in candidates:
            member_set = members.get(intersection_id, set())
            if not wanted <= member_set:
                continue
            if data.exact_match and member_set != wanted:
                continue
            matched.append(intersection_id)
        if not matched:
            return []

        rows = self._storage.fetch_all(
            f"SELECT {_COLUMNS} FROM intersection WHERE id IN ({placeholders(matched)}) "
            f"ORDER BY created_at, id",
            matched,
        )
        return [row_to_intersection(r) for r in rows]

    def soft_delete(self, user_id: str, intersection_id: str) -> Intersection:
        """Mark an intersection deleted. No other field changes.

        Raises:
            NotFoundError: If absent or owned by another user.
        """
        intersection_id = parse_id(intersection_id)
        with self._storage.transaction() as conn:
            cursor = conn.execute(
                "UPDATE intersection SET is_deleted = 1 WHERE id = ? AND user_id = ?",
                (intersection_id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Intersection")
        logger.debug("Soft-deleted intersection %s", intersection_id)
        return self._fetch(user_id, intersection_id)

    def update_content(self, user_id: str, intersection_id: str, content: str) -> Intersection:
        """Replace an active intersection's content and refresh ``updated_at``.

        Raises:
            NotFoundError: If absent, owned by another user, or soft-deleted.
        """
        data = parse(UpdateIntersectionContentInput, id=intersection_id, content=content)
        with self._storage.transaction() as conn:
            cursor = conn.execute(
                "UPDATE intersection SET content = ?, updated_at = ? "
                "WHERE id = ? AND user_id = ? AND is_deleted = 0",
                (data.content, utcnow(), data.id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Intersection")
        return self._fetch(user_id, data.id)

    def get_all(self, user_id: str, include_deleted: bool = False) -> list[Intersection]:
        sql = f"SELECT {_COLUMNS} FROM intersection WHERE user_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        rows = self._storage.fetch_all(sql + " ORDER BY created_at, id", (user_id,))
        return [row_to_intersection(r) for r in rows]

    def stats(self, user_id: str) -> IntersectionStats:
        """Counts, average cardinality and longest path over all of the user's rows."""
        intersections = self.get_all(user_id, include_deleted=True)
        members = self.memberships([i.id for i in intersections])
        total = len(intersections)
        deleted = sum(1 for i in intersections if i.is_deleted)
        cardinalities = [len(members.get(i.id, ())) for i in intersections]
        return IntersectionStats(
            total=total,
            active=total - deleted,
            deleted=deleted,
            avg_atomic_sets_per_intersection=(
                round(sum(cardinalities) / total, 4) if total else 0.0
            ),
            max_path_length=max((len(i.created_via_path) for i in intersections), default=0),
        )

    def memberships(self, intersection_ids: list[str]) -> dict[str, set[str]]:
        """Map each intersection id to its set of atomic set ids."""
        if not intersection_ids:
            return {}
        rows = self._storage.fetch_all(
            f"SELECT intersection_id, atomic_set_id FROM intersection_element "
            f"WHERE intersection_id IN ({placeholders(intersection_ids)})",
            intersection_ids,
        )
        result: dict[str, set[str]] = defaultdict(set)
        for row in rows:
            result[row[0]].add(row[1])
        return dict(result)

    def _fetch(self, user_id: str, intersection_id: str) -> Intersection:
        row = self._storage.fetch_one(
            f"SELECT {_COLUMNS} FROM intersection WHERE id = ? AND user_id = ?",
            (intersection_id, user_id),
        )
        if row is None:
            raise NotFoundError("Intersection")
        return row_to_intersection(row)
