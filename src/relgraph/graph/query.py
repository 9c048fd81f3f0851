"""
Structured traversal queries over the arc collection.

Filters are values, not query text: every endpoint identifier and verb is
carried as data and handed to the store, which binds it as a parameter
(SQL) or compares it directly (memory). Nothing here formats identifiers
into a string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from .arc import ARC_TYPE
from .node import Node, RelationVerb, check_verb

Path = tuple[str, ...]


class Direction(str, Enum):
    """Which endpoint a traversal returns."""

    TAILS = "tails"  # incoming: fixed head, project tail
    HEADS = "heads"  # outgoing: fixed tail, project head

    @property
    def fixed(self) -> str:
        return "head" if self is Direction.TAILS else "tail"

    @property
    def projected(self) -> str:
        return "tail" if self is Direction.TAILS else "head"


@dataclass(frozen=True, slots=True)
class Condition:
    """Equality test of the value at `path` inside a document."""

    path: Path
    value: Any


@dataclass(frozen=True, slots=True)
class DocumentQuery:
    """
    Filtered scan over documents of one type.

    Rows are the sub-document at `project` (or the whole document when
    `project` is None), ordered by `order_by` ascending and then by
    document key, so paging is stable across calls.
    """

    doc_type: str
    conditions: tuple[Condition, ...] = ()
    project: str | None = None
    order_by: Path | None = None

    def unordered(self) -> DocumentQuery:
        return DocumentQuery(self.doc_type, self.conditions, self.project, None)


def arc_query(node: Node, verb: RelationVerb, direction: Direction) -> DocumentQuery:
    """
    ``type = arc AND <fixed>.type = K AND <fixed>.id = ID AND relation.<verb> = true``

    projecting the opposite endpoint and ordering by its name.
    """
    check_verb(verb)
    fixed, projected = direction.fixed, direction.projected
    return DocumentQuery(
        doc_type=ARC_TYPE,
        conditions=(
            Condition((fixed, "type"), node.kind),
            Condition((fixed, "id"), str(node.id)),
            Condition(("relation", verb), True),
        ),
        project=projected,
        order_by=(projected, "name"),
    )


@dataclass(slots=True)
class NodeQueryResult:
    """One page of nodes plus the offsets needed to fetch its neighbours."""

    results: list[Node] = field(default_factory=list)
    prev_offset: int = 0
    next_offset: int = 0

    @property
    def size(self) -> int:
        return len(self.results)

    @classmethod
    def from_rows(cls, rows: Sequence[dict[str, Any]], offset: int) -> NodeQueryResult:
        results = [Node.from_document(row) for row in rows]
        return cls(results=results, prev_offset=offset, next_offset=offset + len(results))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "nextOffset": str(self.next_offset),
            "prevOffset": str(self.prev_offset),
        }
        if self.results:
            out["results"] = [node.to_document() for node in self.results]
        return out

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)
