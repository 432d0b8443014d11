"""Atomic sets: the named concept vertices of a user's hypergraph."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from typing import Any

from interfold.engine.storage import SQLiteStorage, utcnow
from interfold.exceptions import ConstraintViolation, NotFoundError
from interfold.models import AtomicSet, FindOrCreateResult
from interfold.validation import (
    AtomicSetNameInput,
    FindOrCreateAtomicSetInput,
    UpdateAtomicSetMetadataInput,
    parse,
    parse_id,
)

logger = logging.getLogger(__name__)

_COLUMNS = "id, user_id, name, metadata, created_at"


def row_to_atomic_set(row: sqlite3.Row) -> AtomicSet:
    metadata = row["metadata"]
    return AtomicSet(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        metadata=json.loads(metadata) if metadata is not None else None,
        created_at=row["created_at"],
    )


class AtomicSetStore:
    """Name-deduplicated atomic sets, scoped by user.

    Uniqueness of ``(user_id, name)`` is enforced by a UNIQUE constraint in
    storage, not only by the lookup in ``find_or_create``.
    """

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def find_or_create(
        self,
        user_id: str,
        name: str,
        metadata: dict[str, Any] | None = None,
    ) -> FindOrCreateResult:
        """Return the user's atomic set called ``name``, creating it if needed.

        The name is trimmed first. An existing set is returned unchanged
        (its metadata is not overwritten).

        Raises:
            ValidationError: If the trimmed name is empty or over 200 characters.
        """
        data = parse(FindOrCreateAtomicSetInput, name=name, metadata=metadata)

        existing = self._fetch_by_name(user_id, data.name)
        if existing is not None:
            return FindOrCreateResult(atomic_set=existing, was_created=False)

        now = utcnow()
        atomic_set = AtomicSet(
            id=str(uuid.uuid4()),
            user_id=user_id,
            name=data.name,
            metadata=data.metadata,
            created_at=now,
        )
        try:
            with self._storage.transaction() as conn:
                conn.execute(
                    f"INSERT INTO atomic_set ({_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (
                        atomic_set.id,
                        user_id,
                        atomic_set.name,
                        json.dumps(data.metadata) if data.metadata is not None else None,
                        now,
                    ),
                )
        except ConstraintViolation:
            # Another writer inserted the same name between lookup and insert.
            winner = self._fetch_by_name(user_id, data.name)
            if winner is None:
                raise
            logger.debug("find_or_create race on %r resolved to %s", data.name, winner.id)
            return FindOrCreateResult(atomic_set=winner, was_created=False)

        logger.debug("Created atomic set %s (%r) for %s", atomic_set.id, atomic_set.name, user_id)
        return FindOrCreateResult(atomic_set=atomic_set, was_created=True)

    def get_all(self, user_id: str) -> list[AtomicSet]:
        """All of the user's atomic sets, by name (case-sensitive ordinal)."""
        rows = self._storage.fetch_all(
            f"SELECT {_COLUMNS} FROM atomic_set WHERE user_id = ? ORDER BY name, id",
            (user_id,),
        )
        return [row_to_atomic_set(r) for r in rows]

    def get_by_id(self, user_id: str, atomic_set_id: str) -> AtomicSet:
        """Fetch one atomic set.

        Raises:
            NotFoundError: If absent or owned by another user.
        """
        row = self._storage.fetch_one(
            f"SELECT {_COLUMNS} FROM atomic_set WHERE id = ? AND user_id = ?",
            (parse_id(atomic_set_id), user_id),
        )
        if row is None:
            raise NotFoundError("Atomic set")
        return row_to_atomic_set(row)

    def get_by_name(self, user_id: str, name: str) -> AtomicSet | None:
        """Fetch an atomic set by its (trimmed) name, or None."""
        data = parse(AtomicSetNameInput, name=name)
        return self._fetch_by_name(user_id, data.name)

    def update_metadata(
        self,
        user_id: str,
        atomic_set_id: str,
        metadata: dict[str, Any],
    ) -> AtomicSet:
        """Replace an atomic set's metadata map.

        Raises:
            NotFoundError: If absent or owned by another user.
        """
        data = parse(UpdateAtomicSetMetadataInput, id=atomic_set_id, metadata=metadata)
        with self._storage.transaction() as conn:
            cursor = conn.execute(
                "UPDATE atomic_set SET metadata = ? WHERE id = ? AND user_id = ?",
                (json.dumps(data.metadata), data.id, user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Atomic set")
        return self.get_by_id(user_id, data.id)

    def _fetch_by_name(self, user_id: str, name: str) -> AtomicSet | None:
        row = self._storage.fetch_one(
            f"SELECT {_COLUMNS} FROM atomic_set WHERE user_id = ? AND name = ?",
            (user_id, name),
        )
        return row_to_atomic_set(row) if row else None
