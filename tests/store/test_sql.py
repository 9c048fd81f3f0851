from __future__ import annotations

import threading
from datetime import datetime

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.exc import OperationalError

from relgraph.config import AppSettings
from relgraph.errors import AllocationError, LockTimeout, NotFound, StoreError
from relgraph.graph import Graph, Node
from relgraph.graph.query import Condition, DocumentQuery
from relgraph.store import SqlDocumentStore
from relgraph.store.schema import locks


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'graph.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(engine) -> SqlDocumentStore:
    return SqlDocumentStore(engine, "test", lock_timeout_s=0.05, lock_ttl_s=30.0, lock_poll_s=0.01)


def test_counter_increment(sql_store):
    assert sql_store.counter_increment("id:node") == 1
    assert sql_store.counter_increment("id:node") == 2
    assert sql_store.counter_increment("other", 5, 10) == 10
    assert sql_store.counter_increment("other", 5, 10) == 15


def test_counters_are_scoped_by_bucket(engine, sql_store):
    other = SqlDocumentStore(engine, "other-bucket", create_schema=False)
    sql_store.counter_increment("id:node")
    sql_store.counter_increment("id:node")
    assert other.counter_increment("id:node") == 1


def test_upsert_and_get(sql_store):
    sql_store.upsert("k", {"type": "item", "v": 1})
    sql_store.upsert("k", {"type": "item", "v": 2})
    assert sql_store.get("k") == {"type": "item", "v": 2}


def test_get_missing_raises_not_found(sql_store):
    with pytest.raises(NotFound):
        sql_store.get("missing")


def test_lock_on_absence(sql_store):
    locked = sql_store.lock_for_update("fresh")
    assert locked.existed is False
    assert locked.value == {}

    sql_store.unlock_and_write(locked, {"type": "item", "v": 1})
    assert sql_store.get("fresh") == {"type": "item", "v": 1}

    again = sql_store.lock_for_update("fresh")
    assert again.existed is True
    assert again.value == {"type": "item", "v": 1}
    sql_store.unlock(again)


def test_lock_contention_times_out(sql_store):
    held = sql_store.lock_for_update("k")
    with pytest.raises(LockTimeout):
        sql_store.lock_for_update("k")
    sql_store.unlock(held)
    sql_store.unlock(sql_store.lock_for_update("k"))


def test_expired_lock_can_be_taken_over(engine, sql_store):
    stale = sql_store.lock_for_update("k")
    # Force the lease into the past.
    with engine.begin() as conn:
        conn.execute(update(locks).values(expires_at=datetime(2000, 1, 1)))

    fresh = sql_store.lock_for_update("k")
    with pytest.raises(StoreError):
        sql_store.unlock_and_write(stale, {"type": "item", "by": "stale"})
    sql_store.unlock_and_write(fresh, {"type": "item", "by": "fresh"})
    assert sql_store.get("k")["by"] == "fresh"


def test_lease_is_confirmed_inside_the_write_transaction(sql_store, monkeypatch):
    def out_of_band_check(key, token):
        raise AssertionError("lease checked outside the write transaction")

    monkeypatch.setattr(sql_store.coordinator, "holds", out_of_band_check)

    locked = sql_store.lock_for_update("k")
    sql_store.unlock_and_write(locked, {"type": "item", "v": 1})
    assert sql_store.get("k") == {"type": "item", "v": 1}

    sql_store.unlock_and_delete(sql_store.lock_for_update("k"))
    with pytest.raises(NotFound):
        sql_store.get("k")


def test_expired_lease_blocks_write_without_takeover(engine, sql_store):
    sql_store.upsert("k", {"type": "item", "v": 1})
    locked = sql_store.lock_for_update("k")
    with engine.begin() as conn:
        conn.execute(update(locks).values(expires_at=datetime(2000, 1, 1)))

    with pytest.raises(StoreError):
        sql_store.unlock_and_write(locked, {"type": "item", "v": 2})
    assert sql_store.get("k") == {"type": "item", "v": 1}

    # The stale row was released, so the key is free again.
    sql_store.unlock(sql_store.lock_for_update("k"))


def test_concurrent_updates_do_not_lose_verbs(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 30})
    store = SqlDocumentStore(engine, "test", lock_timeout_s=30.0, lock_poll_s=0.005)
    graph = Graph(store)
    tail, head = Node("user", "1", name="Tail"), Node("user", "2", name="Head")

    verbs = [f"verb{i}" for i in range(16)]
    barrier = threading.Barrier(len(verbs))
    errors: list[BaseException] = []

    def worker(verb: str) -> None:
        try:
            barrier.wait()
            graph.update_relation(tail, head, {verb: True})
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(v,)) for v in verbs]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert graph.get_relation(tail, head) == {v: True for v in verbs}
    engine.dispose()


def test_unlock_and_delete(sql_store):
    sql_store.upsert("k", {"type": "item"})
    sql_store.unlock_and_delete(sql_store.lock_for_update("k"))
    with pytest.raises(NotFound):
        sql_store.get("k")


def test_paged_query_uses_json_paths(sql_store):
    sql_store.upsert("a", {"type": "item", "group": {"id": "g1"}, "flags": {"on": True}, "name": "zeta"})
    sql_store.upsert("b", {"type": "item", "group": {"id": "g1"}, "flags": {"on": True}, "name": "alpha"})
    sql_store.upsert("c", {"type": "item", "group": {"id": "g1"}, "flags": {}, "name": "beta"})
    sql_store.upsert("d", {"type": "item", "group": {"id": "g2"}, "flags": {"on": True}, "name": "gamma"})

    query = DocumentQuery(
        "item",
        (Condition(("group", "id"), "g1"), Condition(("flags", "on"), True)),
        project=None,
        order_by=("name",),
    )

    rows = sql_store.execute_paged_query(query, 10, 0)
    assert [r["name"] for r in rows] == ["alpha", "zeta"]
    assert [r["name"] for r in sql_store.execute_paged_query(query, 1, 1)] == ["zeta"]
    assert sql_store.execute_count_query(query) == 2


def test_hostile_identifiers_are_bound_not_formatted(sql_store):
    sql_store.upsert("a", {"type": "item", "group": {"id": "g1"}, "name": "a"})
    query = DocumentQuery("item", (Condition(("group", "id"), "g1' OR '1'='1"),))
    assert sql_store.execute_count_query(query) == 0
    assert sql_store.get("a")["name"] == "a"


def test_query_failure_is_store_error(engine, sql_store):
    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE documents")
    with pytest.raises(StoreError) as excinfo:
        sql_store.execute_count_query(DocumentQuery("item"))
    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_counter_failure_is_allocation_error(engine, sql_store):
    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE counters")
    with pytest.raises(AllocationError):
        sql_store.counter_increment("id:node")


def test_graph_end_to_end(sql_store):
    graph = Graph(sql_store, query_limit_max=2)
    u1 = Node("user", graph.allocate_node_id(), name="Una")
    u2 = Node("user", graph.allocate_node_id(), name="Ben")
    u3 = Node("user", graph.allocate_node_id(), name="Abe")

    graph.update_relation(u1, u2, {"follow": True})
    graph.update_relation(u1, u2, {"like": True})
    graph.update_relation(u3, u2, {"follow": True})
    graph.update_relation(u2, u1, {"block": True})

    assert graph.get_relation(u1, u2) == {"follow": True, "like": True}
    assert graph.get_relation(u2, u1) == {"block": True}
    with pytest.raises(NotFound):
        graph.get_relation(u3, u1)

    assert graph.indegree(u2, "follow") == 2
    assert graph.outdegree(u1, "follow") == 1
    assert [n.name for n in graph.query_tails(u2, "follow", 10)] == ["Abe", "Una"]

    seen = []
    assert graph.for_each_tail(u2, "follow", seen.append) == 2
    assert [n.id for n in seen] == [u3.id, u1.id]

    graph.update_relation(u1, u2, {"follow": False})
    assert graph.get_relation(u1, u2) == {"like": True}
    assert graph.indegree(u2, "follow") == 1


def test_from_settings(tmp_path):
    settings = AppSettings(
        database={"url": f"sqlite:///{tmp_path / 'settings.db'}"},
        graph={"bucket": "configured", "lock_timeout_s": 0.1},
    )
    store = SqlDocumentStore.from_settings(settings)
    assert store.counter_increment("id:node") == 1
    assert store.coordinator.lock_timeout_s == 0.1
    store.engine.dispose()
