"""
relgraph.graph
==============

Directed multi-relation graph over a keyed document store.

Public API:

- Node, NodeId, NodeIdAllocator : node identity and ID allocation.
- Arc, ArcOptions, derive_key   : the edge document and its identity key.
- Direction, NodeQueryResult    : traversal direction and paged results.
- Graph                         : relation reads, merges and traversals.

All other modules in this package are considered internal implementation details.
"""

from __future__ import annotations

from .node import Node, NodeId, NodeIdAllocator, PREDEFINED_VERBS
from .arc import Arc, ArcOptions, derive_key, merge_relations
from .query import Direction, NodeQueryResult
from .core import Graph

__all__ = [
    "Node",
    "NodeId",
    "NodeIdAllocator",
    "PREDEFINED_VERBS",
    "Arc",
    "ArcOptions",
    "derive_key",
    "merge_relations",
    "Direction",
    "NodeQueryResult",
    "Graph",
]
