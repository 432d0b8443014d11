"""Tests for the Interfold MCP server tools and resources."""

from __future__ import annotations

import uuid

import pytest

from interfold import Interfold
from interfold.mcp import server as mcp_server
from interfold.mcp.server import (
    create_intersection,
    create_node,
    delete_node,
    find_intersections,
    find_or_create_atomic_set,
    get_atomic_set,
    get_intersection,
    get_node,
    get_node_path,
    get_outline,
    get_siblings,
    get_stats,
    indent_node,
    intersect_node_path,
    list_atomic_sets,
    list_intersections,
    mcp,
    move_node,
    outdent_node,
    reorder_nodes,
    schema_resource,
    soft_delete_intersection,
    stats_resource,
    toggle_expanded,
    update_atomic_set_metadata,
    update_intersection_content,
    update_node_content,
    validate,
)


@pytest.fixture(autouse=True)
def _patch_client(monkeypatch):
    """Patch the module-level _CLIENT with a fresh in-memory Interfold for each test."""
    client = Interfold(user="agent")
    monkeypatch.setattr(mcp_server, "_CLIENT", client)
    yield
    client.close()


class TestAtomicSetTools:
    def test_find_or_create(self):
        result = find_or_create_atomic_set(name="AI", metadata={"color": "red"})
        assert result["wasCreated"] is True
        assert result["atomicSet"]["name"] == "AI"
        assert result["atomicSet"]["metadata"] == {"color": "red"}
        assert result["atomicSet"]["userId"] == "agent"

    def test_find_existing(self):
        first = find_or_create_atomic_set(name="AI")
        second = find_or_create_atomic_set(name="AI")
        assert second["wasCreated"] is False
        assert second["atomicSet"]["id"] == first["atomicSet"]["id"]

    def test_list(self):
        find_or_create_atomic_set(name="b")
        find_or_create_atomic_set(name="a")
        result = list_atomic_sets()
        assert result["count"] == 2
        assert [a["name"] for a in result["atomicSets"]] == ["a", "b"]

    def test_get_by_id_and_name(self):
        created = find_or_create_atomic_set(name="AI")["atomicSet"]
        assert get_atomic_set(id=created["id"])["name"] == "AI"
        assert get_atomic_set(name="AI")["id"] == created["id"]
        assert get_atomic_set(name="nope") == {"found": False, "name": "nope"}

    def test_update_metadata(self):
        created = find_or_create_atomic_set(name="AI")["atomicSet"]
        result = update_atomic_set_metadata(id=created["id"], metadata={"k": "v"})
        assert result["metadata"] == {"k": "v"}

    def test_validation_error_returned(self):
        result = find_or_create_atomic_set(name="   ")
        assert result["error"] is True
        assert result["kind"] == "ValidationError"
        assert "name" in result["message"]


class TestIntersectionTools:
    @pytest.fixture()
    def ids(self):
        return [find_or_create_atomic_set(name=n)["atomicSet"]["id"] for n in ("React", "Hooks")]

    def test_create_and_get(self, ids):
        created = create_intersection(atomic_set_ids=ids, content="closures")
        assert created["createdViaPath"] == ids
        fetched = get_intersection(id=created["id"])
        assert {a["name"] for a in fetched["atomicSets"]} == {"React", "Hooks"}

    def test_find(self, ids):
        created = create_intersection(atomic_set_ids=ids)
        result = find_intersections(atomic_set_ids=ids[:1])
        assert result["count"] == 1
        assert result["intersections"][0]["id"] == created["id"]
        assert find_intersections(atomic_set_ids=ids[:1], exact_match=True)["count"] == 0

    def test_soft_delete_and_list(self, ids):
        created = create_intersection(atomic_set_ids=ids)
        assert soft_delete_intersection(id=created["id"])["isDeleted"] is True
        assert list_intersections()["count"] == 0
        assert list_intersections(include_deleted=True)["count"] == 1

    def test_update_content(self, ids):
        created = create_intersection(atomic_set_ids=ids)
        assert update_intersection_content(id=created["id"], content="x")["content"] == "x"

    def test_unknown_member_not_found(self, ids):
        result = create_intersection(atomic_set_ids=[ids[0], str(uuid.uuid4())])
        assert result["error"] is True
        assert result["kind"] == "NotFoundError"


class TestOutlineTools:
    def test_create_and_outline(self):
        a = create_node(content="A")
        create_node(content="B")
        create_node(content="C", parent_id=a["id"])
        result = get_outline()
        assert result["count"] == 2
        assert result["roots"][0]["children"][0]["content"] == "C"
        assert result["roots"][0]["children"][0]["depth"] == 1
        assert get_outline(flat=True)["count"] == 3

    def test_node_edits(self):
        node = create_node(content="A")
        assert update_node_content(id=node["id"], content="A2")["content"] == "A2"
        assert toggle_expanded(id=node["id"])["isExpanded"] is False
        assert get_node(id=node["id"])["orderIndex"] == 0

    def test_move_indent_outdent(self):
        a = create_node(content="A")
        b = create_node(content="B")
        assert indent_node(id=b["id"])["parentId"] == a["id"]
        assert outdent_node(id=b["id"])["parentId"] is None
        moved = move_node(id=b["id"], new_parent_id=a["id"], new_order_index=5)
        assert moved["parentId"] == a["id"]
        assert moved["orderIndex"] == 0

    def test_move_cycle_rejected(self):
        a = create_node(content="A")
        b = create_node(content="B", parent_id=a["id"])
        result = move_node(id=a["id"], new_parent_id=b["id"])
        assert result["error"] is True
        assert result["kind"] == "ValidationError"

    def test_reorder(self):
        a = create_node(content="A")
        b = create_node(content="B")
        result = reorder_nodes(node_ids=[b["id"], a["id"]])
        assert [n["content"] for n in result["nodes"]] == ["B", "A"]

    def test_paths_and_siblings(self):
        a = create_node(content="A")
        b = create_node(content="B", parent_id=a["id"])
        assert [e["content"] for e in get_node_path(id=b["id"])["path"]] == ["A", "B"]
        assert get_siblings(id=a["id"])["count"] == 1

    def test_delete(self):
        a = create_node(content="A")
        create_node(content="B", parent_id=a["id"])
        assert delete_node(id=a["id"]) == {"deleted": 2}
        assert get_outline()["count"] == 0

    def test_intersect_node_path(self):
        a = create_node(content="React")
        b = create_node(content="Hooks", parent_id=a["id"])
        result = intersect_node_path(id=b["id"])
        assert {s["name"] for s in result["atomicSets"]} == {"React", "Hooks"}
        assert get_node(id=b["id"])["intersectionId"] == result["id"]

    def test_not_found(self):
        result = get_node(id=str(uuid.uuid4()))
        assert result == {"error": True, "kind": "NotFoundError", "message": "Node not found"}


class TestStoreTools:
    def test_stats(self):
        create_node(content="A")
        result = get_stats()
        assert result["outlineNodeCount"] == 1
        assert result["intersections"]["total"] == 0

    def test_validate(self):
        assert validate() == {"valid": True, "errors": [], "warnings": []}

    def test_missing_identity(self, monkeypatch):
        monkeypatch.setattr(mcp_server, "_CLIENT", Interfold())
        result = list_atomic_sets()
        assert result["kind"] == "IdentityRequiredError"

    def test_uninitialized_client(self, monkeypatch):
        monkeypatch.setattr(mcp_server, "_CLIENT", None)
        result = get_stats()
        assert result["error"] is True
        assert result["kind"] == "RuntimeError"


class TestResources:
    def test_schema_resource(self):
        text = schema_resource()
        assert "Atomic sets" in text
        assert "Intersections" in text
        assert "Outline nodes" in text

    def test_stats_resource(self):
        find_or_create_atomic_set(name="AI")
        text = stats_resource()
        assert "Atomic sets: 1" in text
        assert "Outline nodes: 0" in text


class TestServerRegistration:
    def test_all_tools_registered(self):
        tool_names = {tool.name for tool in mcp._tool_manager.list_tools()}
        expected = {
            "find_or_create_atomic_set",
            "list_atomic_sets",
            "get_atomic_set",
            "update_atomic_set_metadata",
            "create_intersection",
            "get_intersection",
            "find_intersections",
            "soft_delete_intersection",
            "update_intersection_content",
            "list_intersections",
            "intersection_stats",
            "get_outline",
            "get_node",
            "create_node",
            "update_node_content",
            "move_node",
            "indent_node",
            "outdent_node",
            "reorder_nodes",
            "toggle_expanded",
            "delete_node",
            "get_node_path",
            "get_siblings",
            "link_node_intersection",
            "intersect_node_path",
            "get_stats",
            "validate",
        }
        assert expected.issubset(tool_names), f"Missing tools: {expected - tool_names}"

    def test_all_resources_registered(self):
        resource_uris = set()
        for template in mcp._resource_manager.list_templates():
            resource_uris.add(str(template.uri_template))
        for resource in mcp._resource_manager.list_resources():
            resource_uris.add(str(resource.uri))
        assert "interfold://schema" in resource_uris, f"schema not found in {resource_uris}"
        assert "interfold://stats" in resource_uris, f"stats not found in {resource_uris}"

    def test_tool_count(self):
        assert len(mcp._tool_manager.list_tools()) == 27
