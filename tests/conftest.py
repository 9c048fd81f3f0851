from __future__ import annotations

import pytest

from relgraph.graph import Graph, Node
from relgraph.store import MemoryDocumentStore


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore(lock_timeout_s=1.0, lock_ttl_s=30.0)


@pytest.fixture
def graph(store) -> Graph:
    return Graph(store, query_limit_max=3)


@pytest.fixture
def alice() -> Node:
    return Node("user", "1", name="Alice", photo_ref="a.png")


@pytest.fixture
def bob() -> Node:
    return Node("user", "2", name="Bob")


@pytest.fixture
def carol() -> Node:
    return Node("user", "3", name="Carol")
