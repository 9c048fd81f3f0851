from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Iterator, Literal, Mapping, Optional

from ..errors import StoreError
from ..log import getLogger
from .arc import Arc, ArcOptions, RelationSet, derive_key, merge_relations, normalize_relations
from .node import Node, NodeId, NodeIdAllocator, RelationVerb
from .query import DocumentQuery, Direction, NodeQueryResult, arc_query

if TYPE_CHECKING:
    from ..config import GraphSettings
    from ..store.base import DocumentStore

logger = getLogger(__name__)

NodeCallback = Callable[[Node], Any]


class Graph:
    """
    Directed multi-relation graph on top of a :class:`DocumentStore`.

    One arc document exists per ordered ``(tail, head)`` pair; it carries
    every verb active from tail to head. Two write paths exist:

      - :meth:`update_relation`: lock, merge a delta, write, unlock. Safe
        under concurrent writers on the same pair.
      - :meth:`create_arc`: unconditional overwrite, last writer wins.
        Only for pairs known to be fresh.

    Reads and traversals take no locks and may observe a merge in flight.
    """

    def __init__(
        self,
        store: "DocumentStore",
        *,
        allocator: Optional[NodeIdAllocator] = None,
        query_limit_max: int = 1000,
        empty_arc_policy: Literal["keep", "delete"] = "keep",
        iteration_errors: Literal["raise", "stop"] = "raise",
    ) -> None:
        if query_limit_max <= 0:
            raise ValueError(f"query_limit_max must be positive, got {query_limit_max}")
        self._store = store
        self._allocator = allocator or NodeIdAllocator(store)
        self.query_limit_max = int(query_limit_max)
        self.empty_arc_policy = empty_arc_policy
        self.iteration_errors = iteration_errors

    @classmethod
    def from_settings(cls, store: "DocumentStore", settings: "GraphSettings") -> Graph:
        return cls(
            store,
            allocator=NodeIdAllocator(store, settings.node_counter_key),
            query_limit_max=settings.query_limit_max,
            empty_arc_policy=settings.empty_arc_policy,
            iteration_errors=settings.iteration_errors,
        )

    @property
    def store(self) -> "DocumentStore":
        return self._store

    # ------------------------------------------------------------------ #
    # Node identity
    # ------------------------------------------------------------------ #

    def allocate_node_id(self) -> NodeId:
        return self._allocator.allocate()

    # ------------------------------------------------------------------ #
    # Arc reads and writes
    # ------------------------------------------------------------------ #

    def create_arc(
        self,
        tail: Node,
        head: Node,
        relations: Mapping[RelationVerb, bool] | None = None,
        options: ArcOptions | None = None,
    ) -> Arc:
        """
        Write a fresh arc, replacing any existing one for the pair.

        No lock is taken and existing relations are not merged: concurrent
        callers on the same pair overwrite each other (last writer wins).
        Use :meth:`update_relation` wherever that can happen.
        """
        arc = Arc.new(tail, head, relations, options)
        self._store.upsert(arc.key, arc.to_document())
        return arc

    def get_arc(self, tail: Node, head: Node) -> Arc:
        return Arc.from_document(self._store.get(derive_key(tail, head)))

    def get_relation(self, tail: Node, head: Node) -> RelationSet:
        """
        Active verbs from `tail` to `head`.

        Raises :class:`~relgraph.errors.NotFound` when the pair has no arc,
        which callers should read as "no relation".
        """
        doc = self._store.get(derive_key(tail, head))
        return normalize_relations(doc.get("relation"))

    def update_relation(
        self,
        tail: Node,
        head: Node,
        delta: Mapping[RelationVerb, bool],
    ) -> RelationSet:
        """
        Merge `delta` into the arc ``tail -> head`` under its exclusive lock.

        ``True`` sets a verb, ``False`` removes it, other verbs are kept.
        The arc is created if absent. Tail and head display fields are
        refreshed from the arguments. Returns the resulting relation set.
        """
        key = derive_key(tail, head)
        # Validate before locking so a bad verb never holds the key.
        merge_relations(None, delta)

        locked = self._store.lock_for_update(key)
        try:
            if locked.existed:
                arc = Arc.from_document(locked.value)
                arc.tail, arc.head = tail, head
            else:
                arc = Arc.new(tail, head)
            arc.relations = merge_relations(arc.relations, delta)
        except BaseException:
            self._store.unlock(locked)
            raise

        if not arc.relations and self.empty_arc_policy == "delete":
            logger.debug("Arc %s has no relations left; deleting", key)
            self._store.unlock_and_delete(locked)
        else:
            self._store.unlock_and_write(locked, arc.to_document())
        return dict(arc.relations)

    # ------------------------------------------------------------------ #
    # Paged traversal
    # ------------------------------------------------------------------ #

    def _query_page(
        self, query: DocumentQuery, limit: int, offset: int
    ) -> NodeQueryResult:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        if offset < 0:
            raise ValueError(f"offset must be non-negative, got {offset}")
        rows = self._store.execute_paged_query(query, limit, offset)
        return NodeQueryResult.from_rows(rows, offset)

    def query_tails(
        self, head: Node, verb: RelationVerb, limit: int, offset: int = 0
    ) -> NodeQueryResult:
        """Tails with `verb` into `head`, by tail name. ``size < limit`` means last page."""
        return self._query_page(arc_query(head, verb, Direction.TAILS), limit, offset)

    def query_heads(
        self, tail: Node, verb: RelationVerb, limit: int, offset: int = 0
    ) -> NodeQueryResult:
        """Heads reached from `tail` by `verb`, by head name."""
        return self._query_page(arc_query(tail, verb, Direction.HEADS), limit, offset)

    # ------------------------------------------------------------------ #
    # Degrees
    # ------------------------------------------------------------------ #

    def _degree(self, node: Node, verb: RelationVerb, direction: Direction) -> int:
        query = arc_query(node, verb, direction).unordered()
        try:
            return self._store.execute_count_query(query)
        except StoreError as exc:
            logger.error("Failed to count %s of %s: %s", direction.value, node, exc)
            raise

    def indegree(self, head: Node, verb: RelationVerb) -> int:
        return self._degree(head, verb, Direction.TAILS)

    def outdegree(self, tail: Node, verb: RelationVerb) -> int:
        return self._degree(tail, verb, Direction.HEADS)

    # ------------------------------------------------------------------ #
    # Unbounded iteration
    # ------------------------------------------------------------------ #

    def _iterate(self, node: Node, verb: RelationVerb, direction: Direction) -> Iterator[Node]:
        query = arc_query(node, verb, direction)
        limit = self.query_limit_max
        offset = 0
        while True:
            try:
                rows = self._store.execute_paged_query(query, limit, offset)
            except StoreError as exc:
                if self.iteration_errors == "raise":
                    raise
                logger.warning(
                    "Iteration over %s of %s stopped at offset %d: %s",
                    direction.value, node, offset, exc,
                )
                return

            for row in rows:
                yield Node.from_document(row)

            if len(rows) < limit:
                return
            offset += len(rows)

    def iter_tails(self, head: Node, verb: RelationVerb) -> Iterator[Node]:
        return self._iterate(head, verb, Direction.TAILS)

    def iter_heads(self, tail: Node, verb: RelationVerb) -> Iterator[Node]:
        return self._iterate(tail, verb, Direction.HEADS)

    def _for_each(self, nodes: Iterator[Node], callback: NodeCallback) -> int:
        delivered = 0
        try:
            for node in nodes:
                delivered += 1
                if callback(node) is False:
                    break
        finally:
            nodes.close()  # type: ignore[attr-defined]
        return delivered

    def for_each_tail(self, head: Node, verb: RelationVerb, callback: NodeCallback) -> int:
        """
        Call `callback` for every tail with `verb` into `head`, by name.

        Returning ``False`` from the callback stops the iteration. Returns
        the number of nodes delivered.
        """
        return self._for_each(self.iter_tails(head, verb), callback)

    def for_each_head(self, tail: Node, verb: RelationVerb, callback: NodeCallback) -> int:
        """Like :meth:`for_each_tail` for heads reached from `tail`."""
        return self._for_each(self.iter_heads(tail, verb), callback)
