"""In-process document store for tests and single-process embedding."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass
from threading import Condition, RLock
from time import monotonic
from typing import Any, Mapping

from ..errors import LockTimeout, NotFound, StoreError
from ..graph.query import DocumentQuery
from ..log import getLogger
from .base import LockedDocument, lookup, matches, project

logger = getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    document: dict[str, Any]
    expires_at: float | None = None


@dataclass(slots=True)
class _Hold:
    token: str
    expires_at: float


class MemoryDocumentStore:
    """
    Thread-safe dict-backed implementation of :class:`DocumentStore`.

    - Documents are deep-copied in and out; callers never share state.
    - Locks are leases: a hold older than `lock_ttl_s` may be taken over.
    - Waiting lockers block on a Condition, bounded by `lock_timeout_s`.
    """

    def __init__(self, lock_timeout_s: float = 5.0, lock_ttl_s: float = 30.0) -> None:
        self._lock = RLock()
        self._released = Condition(self._lock)

        self._docs: dict[str, _Entry] = {}
        self._counters: dict[str, int] = {}
        self._holds: dict[str, _Hold] = {}

        self.lock_timeout_s = lock_timeout_s
        self.lock_ttl_s = lock_ttl_s

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _live(self, key: str, now: float) -> _Entry | None:
        entry = self._docs.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= now:
            del self._docs[key]
            return None
        return entry

    def _put(self, key: str, document: Mapping[str, Any], ttl: float, now: float) -> None:
        expires_at = now + ttl if ttl else None
        self._docs[key] = _Entry(copy.deepcopy(dict(document)), expires_at)

    def _check_hold(self, locked: LockedDocument) -> None:
        hold = self._holds.get(locked.key)
        if hold is None or hold.token != locked.token:
            raise StoreError(f"Lock on {locked.key!r} was lost before write")

    def _drop_hold(self, locked: LockedDocument) -> None:
        hold = self._holds.get(locked.key)
        if hold is not None and hold.token == locked.token:
            del self._holds[locked.key]
            self._released.notify_all()

    # ------------------------------------------------------------------ #
    # Counters and point operations
    # ------------------------------------------------------------------ #

    def counter_increment(self, key: str, step: int = 1, floor: int = 1) -> int:
        with self._lock:
            if key in self._counters:
                self._counters[key] += step
            else:
                self._counters[key] = floor
            return self._counters[key]

    def upsert(self, key: str, document: Mapping[str, Any], ttl: float = 0) -> None:
        with self._lock:
            self._put(key, document, ttl, monotonic())

    def get(self, key: str) -> dict[str, Any]:
        with self._lock:
            entry = self._live(key, monotonic())
            if entry is None:
                raise NotFound(key)
            return copy.deepcopy(entry.document)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return self._live(key, monotonic()) is not None

    # ------------------------------------------------------------------ #
    # Locking
    # ------------------------------------------------------------------ #

    def lock_for_update(self, key: str) -> LockedDocument:
        deadline = monotonic() + self.lock_timeout_s
        with self._lock:
            while True:
                now = monotonic()
                hold = self._holds.get(key)
                if hold is None or hold.expires_at <= now:
                    if hold is not None:
                        logger.warning("Taking over expired lock on %s", key)
                    break
                remaining = min(deadline, hold.expires_at) - now
                if now >= deadline:
                    raise LockTimeout(key, self.lock_timeout_s)
                self._released.wait(remaining)

            token = uuid.uuid4().hex
            self._holds[key] = _Hold(token, now + self.lock_ttl_s)
            entry = self._live(key, now)
            logger.debug("Locked %s (existed=%s)", key, entry is not None)
            return LockedDocument(
                key=key,
                token=token,
                existed=entry is not None,
                value=copy.deepcopy(entry.document) if entry is not None else {},
            )

    def unlock_and_write(
        self, locked: LockedDocument, document: Mapping[str, Any], ttl: float = 0
    ) -> None:
        with self._lock:
            try:
                self._check_hold(locked)
                self._put(locked.key, document, ttl, monotonic())
            finally:
                self._drop_hold(locked)

    def unlock_and_delete(self, locked: LockedDocument) -> None:
        with self._lock:
            try:
                self._check_hold(locked)
                self._docs.pop(locked.key, None)
            finally:
                self._drop_hold(locked)

    def unlock(self, locked: LockedDocument) -> None:
        with self._lock:
            self._drop_hold(locked)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def _scan(self, query: DocumentQuery) -> list[tuple[str, dict[str, Any]]]:
        now = monotonic()
        return [
            (key, entry.document)
            for key in list(self._docs)
            if (entry := self._live(key, now)) is not None and matches(entry.document, query)
        ]

    def execute_paged_query(
        self, query: DocumentQuery, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        with self._lock:
            hits = self._scan(query)
            if query.order_by is not None:
                order_by = query.order_by
                hits.sort(key=lambda kv: (str(lookup(kv[1], order_by) or ""), kv[0]))
            else:
                hits.sort(key=lambda kv: kv[0])
            page = hits[offset:offset + limit]
            return [copy.deepcopy(project(doc, query)) for _key, doc in page]

    def execute_count_query(self, query: DocumentQuery) -> int:
        with self._lock:
            return len(self._scan(query))
