from __future__ import annotations

from datetime import datetime, timezone

import pytest

from relgraph.graph.arc import (
    ARC_TYPE,
    Arc,
    ArcOptions,
    derive_key,
    merge_relations,
    normalize_relations,
)
from relgraph.graph.node import Node


def test_derive_key_format():
    assert derive_key(Node("user", "1"), Node("group", "9")) == "user:1>group:9"


def test_derive_key_is_directional(alice, bob):
    assert derive_key(alice, bob) != derive_key(bob, alice)


def test_derive_key_ignores_display_fields(alice):
    head = Node("user", "2")
    renamed = Node(alice.kind, alice.id, name="Someone else")
    assert derive_key(alice, head) == derive_key(renamed, head)


def test_derive_key_distinguishes_kind():
    a, b = Node("user", "1"), Node("page", "1")
    assert derive_key(a, b) != derive_key(b, b)
    assert derive_key(a, a) != derive_key(b, a)


@pytest.mark.parametrize(
    "kind, node_id",
    [
        ("u", "1>v:2"),
        ("v", "2>w:3"),
        ("user:admin", "1"),
        ("user>page", "1"),
    ],
)
def test_node_rejects_key_separators(kind, node_id):
    with pytest.raises(ValueError):
        Node(kind, node_id)


def test_derive_key_does_not_collide_across_split_points():
    # Without separator checks these two pairs would both render "u:1>v:2>w:3".
    with pytest.raises(ValueError):
        derive_key(Node("u", "1>v:2"), Node("w", "3"))
    with pytest.raises(ValueError):
        derive_key(Node("u", "1"), Node("v", "2>w:3"))

    keys = {
        derive_key(Node("u", "1"), Node("v", "2:w")),
        derive_key(Node("u", "1:v"), Node("2", "w")),
        derive_key(Node("u", "1"), Node("v", "2")),
    }
    assert len(keys) == 3


def test_merge_sets_and_removes():
    merged = merge_relations({"follow": True, "view": True}, {"like": True, "view": False})
    assert merged == {"follow": True, "like": True}


def test_merge_is_idempotent():
    once = merge_relations({}, {"follow": True})
    twice = merge_relations(once, {"follow": True})
    assert once == twice == {"follow": True}


def test_merge_inverse_removes_key():
    merged = merge_relations(merge_relations({}, {"follow": True}), {"follow": False})
    assert merged == {}
    assert "follow" not in merged


def test_merge_rejects_bad_verb():
    with pytest.raises(ValueError):
        merge_relations({}, {"a.b": True})


def test_normalize_drops_false_entries():
    assert normalize_relations({"follow": True, "block": False}) == {"follow": True}
    assert normalize_relations(None) == {}


def test_document_shape(alice, bob):
    created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    arc = Arc(alice, bob, {"follow": True}, ArcOptions(ordinal=4), created)

    doc = arc.to_document()

    assert doc == {
        "type": ARC_TYPE,
        "tail": {"type": "user", "id": "1", "name": "Alice", "photo": "a.png"},
        "head": {"type": "user", "id": "2", "name": "Bob"},
        "relation": {"follow": True},
        "options": {"ord": 4},
        "createdAt": "2024-01-02T03:04:05+00:00",
    }
    assert Arc.from_document(doc) == arc
    assert arc.key == "user:1>user:2"


def test_new_arc_stamps_creation_time(alice, bob):
    arc = Arc.new(alice, bob, {"like": True, "view": False})
    assert arc.created_at is not None
    assert arc.relations == {"like": True}
    assert arc.options.to_document() == {}
