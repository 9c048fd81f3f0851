"""Contract between the graph layer and a keyed document store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from ..graph.query import DocumentQuery, Path


@dataclass(frozen=True, slots=True)
class LockedDocument:
    """
    Result of a lock-for-update.

    `existed` tells whether a document was present when the lock was taken;
    when it was not, `value` is an empty document rather than an error.
    """

    key: str
    token: str
    existed: bool
    value: dict[str, Any]


class DocumentStore(Protocol):
    """Protocol for stores the graph layer runs on."""

    def counter_increment(self, key: str, step: int = 1, floor: int = 1) -> int:
        """Advance counter `key`; the first call returns `floor`."""

    def upsert(self, key: str, document: Mapping[str, Any], ttl: float = 0) -> None:
        """Create or replace `key` unconditionally. ``ttl == 0`` never expires."""

    def get(self, key: str) -> dict[str, Any]:
        """Return the document at `key` or raise :class:`~relgraph.errors.NotFound`."""

    def lock_for_update(self, key: str) -> LockedDocument:
        """Take the exclusive lock on `key`, present or not."""

    def unlock_and_write(
        self, locked: LockedDocument, document: Mapping[str, Any], ttl: float = 0
    ) -> None:
        """Persist `document` under the held lock, then release it."""

    def unlock_and_delete(self, locked: LockedDocument) -> None:
        """Remove the document (if any) under the held lock, then release it."""

    def unlock(self, locked: LockedDocument) -> None:
        """Release the lock without writing."""

    def execute_paged_query(
        self, query: DocumentQuery, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        """Return at most `limit` projected rows starting at `offset`."""

    def execute_count_query(self, query: DocumentQuery) -> int:
        """Return the number of documents matching `query`."""


class Coordinator(Protocol):
    """Locks and counters, separable from document storage."""

    def acquire(self, key: str) -> str:
        """Block until the lock on `key` is held; return its token."""

    def holds(self, key: str, token: str) -> bool:
        """Whether `token` still owns the lock on `key`."""

    def release(self, key: str, token: str) -> None:
        """Release the lock identified by `token`."""

    def increment(self, key: str, step: int = 1, floor: int = 1) -> int:
        """Advance counter `key`; the first call returns `floor`."""


def lookup(document: Mapping[str, Any], path: Path) -> Any:
    """Value at `path` inside a nested document, or None."""
    value: Any = document
    for part in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(part)
    return value


def matches(document: Mapping[str, Any], query: DocumentQuery) -> bool:
    if document.get("type") != query.doc_type:
        return False
    return all(lookup(document, c.path) == c.value for c in query.conditions)


def project(document: Mapping[str, Any], query: DocumentQuery) -> dict[str, Any]:
    if query.project is None:
        return dict(document)
    return dict(document.get(query.project) or {})
