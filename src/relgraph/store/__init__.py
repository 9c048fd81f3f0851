"""
relgraph.store
==============

Document stores the graph layer runs on.

- DocumentStore      : protocol consumed by :class:`relgraph.graph.Graph`.
- LockedDocument     : tagged result of lock-for-update (existed + value).
- MemoryDocumentStore: thread-safe in-process store.
- SqlDocumentStore   : SQLAlchemy store (JSON documents, lock/counter tables).
- ZkCoordinator      : ZooKeeper locks and counters for SqlDocumentStore.
"""

from __future__ import annotations

from .base import Coordinator, DocumentStore, LockedDocument
from .memory import MemoryDocumentStore
from .sql import SqlCoordinator, SqlDocumentStore
from .zk import ZkConnectionManager, ZkCoordinator, create_zk_client

__all__ = [
    "Coordinator",
    "DocumentStore",
    "LockedDocument",
    "MemoryDocumentStore",
    "SqlCoordinator",
    "SqlDocumentStore",
    "ZkConnectionManager",
    "ZkCoordinator",
    "create_zk_client",
]
