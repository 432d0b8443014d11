"""Shared fixtures for Interfold tests."""

import pytest

from interfold import Interfold
from interfold.engine.storage import SQLiteStorage


@pytest.fixture()
def ifd():
    """Fresh in-memory Interfold instance scoped to user ``u1``."""
    client = Interfold(user="u1")
    yield client
    client.close()


@pytest.fixture()
def storage():
    """Fresh in-memory storage for engine-level tests."""
    s = SQLiteStorage()
    yield s
    s.close()


@pytest.fixture()
def tmp_db_path(tmp_path):
    """Temporary database path with automatic cleanup."""
    return str(tmp_path / "test.db")


@pytest.fixture()
def populated_ifd(ifd):
    """In-memory Interfold with a small reference outline.

    Outline (user u1):
        Research
            AI
                Ethics
            Biology
        Journal

    Atomic sets: AI, Ethics, Biology
    Intersection: AI + Ethics (path AI -> Ethics)

    Nodes are reachable as ``populated_ifd.nodes[<content>]`` and atomic sets
    as ``populated_ifd.sets[<name>]``.
    """
    research = ifd.create_node("Research")
    ai = ifd.create_node("AI", parent_id=research.id)
    ethics = ifd.create_node("Ethics", parent_id=ai.id)
    biology = ifd.create_node("Biology", parent_id=research.id)
    journal = ifd.create_node("Journal")

    sets = {
        name: ifd.find_or_create_atomic_set(name).atomic_set
        for name in ("AI", "Ethics", "Biology")
    }
    ifd.create_intersection([sets["AI"].id, sets["Ethics"].id])

    ifd.nodes = {
        n.content: n for n in (research, ai, ethics, biology, journal)
    }
    ifd.sets = sets
    return ifd
