"""
Arc model: the directed edge document between an ordered pair of nodes.

Document shape::

    {
        "type": "arc",
        "tail": {"type": ..., "id": ..., "name": ..., "photo": ...},
        "head": {...},
        "relation": {"follow": true, "like": true},
        "options": {"ord": 3},
        "createdAt": "2024-01-01T00:00:00+00:00"
    }

A relation set only ever holds ``True`` entries. A verb that is absent is
the canonical "no relation" state; ``False`` is never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Final, Mapping

from .node import Node, RelationVerb, check_verb

ARC_TYPE: Final[str] = "arc"

RelationSet = dict[RelationVerb, bool]


def derive_key(tail: Node, head: Node) -> str:
    """Identity key of the arc ``tail -> head``: ``"{kind}:{id}>{kind}:{id}"``."""
    return f"{tail.kind}:{tail.id}>{head.kind}:{head.id}"


def normalize_relations(relations: Mapping[RelationVerb, bool] | None) -> RelationSet:
    """Drop falsy entries so that only active verbs remain."""
    return {check_verb(verb): True for verb, active in (relations or {}).items() if active}


def merge_relations(
    current: Mapping[RelationVerb, bool] | None,
    delta: Mapping[RelationVerb, bool],
) -> RelationSet:
    """
    Apply `delta` on top of `current`.

    ``True`` sets the verb, ``False`` removes it, unmentioned verbs are kept.
    """
    merged = normalize_relations(current)
    for verb, active in delta.items():
        check_verb(verb)
        if active:
            merged[verb] = True
        else:
            merged.pop(verb, None)
    return merged


@dataclass(slots=True)
class ArcOptions:
    """Per-arc metadata. `ordinal` lets callers order arcs outside name order."""

    ordinal: int = 0

    def to_document(self) -> dict[str, Any]:
        return {"ord": self.ordinal} if self.ordinal else {}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any] | None) -> ArcOptions:
        return cls(ordinal=int((doc or {}).get("ord", 0)))


@dataclass(slots=True)
class Arc:
    """Directed edge between `tail` and `head` carrying the active relation verbs."""

    tail: Node
    head: Node
    relations: RelationSet = field(default_factory=dict)
    options: ArcOptions = field(default_factory=ArcOptions)
    created_at: datetime | None = None

    @property
    def key(self) -> str:
        return derive_key(self.tail, self.head)

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "type": ARC_TYPE,
            "tail": self.tail.to_document(),
            "head": self.head.to_document(),
            "relation": normalize_relations(self.relations),
            "options": self.options.to_document(),
        }
        if self.created_at is not None:
            doc["createdAt"] = self.created_at.isoformat()
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> Arc:
        created = doc.get("createdAt")
        return cls(
            tail=Node.from_document(doc.get("tail")),
            head=Node.from_document(doc.get("head")),
            relations=normalize_relations(doc.get("relation")),
            options=ArcOptions.from_document(doc.get("options")),
            created_at=datetime.fromisoformat(created) if created else None,
        )

    @classmethod
    def new(
        cls,
        tail: Node,
        head: Node,
        relations: Mapping[RelationVerb, bool] | None = None,
        options: ArcOptions | None = None,
    ) -> Arc:
        return cls(
            tail=tail,
            head=head,
            relations=normalize_relations(relations),
            options=options or ArcOptions(),
            created_at=datetime.now(timezone.utc),
        )
