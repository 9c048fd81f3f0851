"""Graph node identity: the Node value, relation verbs and ID allocation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Mapping, NewType, Protocol

from ..errors import AllocationError, StoreError
from ..log import getLogger

logger = getLogger(__name__)

NodeId = NewType("NodeId", str)

# Relation verbs are open-ended; these are the ones in common use.
RelationVerb = str

FOLLOW: Final[RelationVerb] = "follow"
VIEW: Final[RelationVerb] = "view"
LIKE: Final[RelationVerb] = "like"
FRIEND: Final[RelationVerb] = "friend"
CONTAIN: Final[RelationVerb] = "contain"
OWN: Final[RelationVerb] = "own"
MODERATE: Final[RelationVerb] = "moderate"
FEDERATE: Final[RelationVerb] = "federate"
INVITE: Final[RelationVerb] = "invite"
CONNECT: Final[RelationVerb] = "connect"
IGNORE: Final[RelationVerb] = "ignore"
BLOCK: Final[RelationVerb] = "block"

PREDEFINED_VERBS: Final[frozenset[RelationVerb]] = frozenset({
    FOLLOW, VIEW, LIKE, FRIEND, CONTAIN, OWN,
    MODERATE, FEDERATE, INVITE, CONNECT, IGNORE, BLOCK,
})


# Characters with meaning inside JSON path expressions.
_PATH_METACHARS: Final[frozenset[str]] = frozenset('"\\.$[]*')


def check_verb(verb: RelationVerb) -> RelationVerb:
    if not isinstance(verb, str) or not verb:
        raise ValueError(f"Relation verb must be a non-empty string, got {verb!r}")
    if any(ch in _PATH_METACHARS or ch.isspace() for ch in verb):
        raise ValueError(f"Relation verb {verb!r} contains reserved characters")
    return verb


@dataclass(frozen=True, slots=True)
class Node:
    """
    A typed, identified graph participant.

    Nodes are never stored on their own; they are embedded as the tail or
    head of an arc document. Only ``(kind, id)`` identifies a node, the
    display fields travel along and are refreshed on every merge.
    """

    kind: str
    id: NodeId | str
    name: str = ""
    photo_ref: str = ""

    def __post_init__(self) -> None:
        # Arc keys are "kind:id>kind:id"; separators in identity would collide.
        if ":" in self.kind or ">" in self.kind:
            raise ValueError(f"Node kind {self.kind!r} must not contain ':' or '>'")
        if ">" in str(self.id):
            raise ValueError(f"Node id {self.id!r} must not contain '>'")

    @property
    def identity(self) -> tuple[str, str]:
        return self.kind, str(self.id)

    def ref(self) -> Node:
        """Copy carrying only the identity fields."""
        return Node(kind=self.kind, id=self.id)

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {}
        if self.kind:
            doc["type"] = self.kind
        if self.id:
            doc["id"] = str(self.id)
        if self.name:
            doc["name"] = self.name
        if self.photo_ref:
            doc["photo"] = self.photo_ref
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any] | None) -> Node:
        doc = doc or {}
        return cls(
            kind=doc.get("type", ""),
            id=NodeId(doc.get("id", "")),
            name=doc.get("name", ""),
            photo_ref=doc.get("photo", ""),
        )

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


class CounterService(Protocol):
    """Store-backed monotonic counter."""

    def counter_increment(self, key: str, step: int = 1, floor: int = 1) -> int:
        """Advance `key` by `step` (creating it at `floor`) and return the new value."""


class NodeIdAllocator:
    """Allocates node identifiers from an injected monotonic counter."""

    def __init__(self, counter: CounterService, key: str = "id:node") -> None:
        self._counter = counter
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def allocate(self) -> NodeId:
        try:
            value = self._counter.counter_increment(self._key, 1, 1)
        except AllocationError:
            raise
        except StoreError as exc:
            raise AllocationError(f"Counter {self._key!r} increment failed: {exc}") from exc

        logger.debug("Allocated node id %d from counter %s", value, self._key)
        return NodeId(str(int(value)))
