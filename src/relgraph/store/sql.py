"""SQLAlchemy-backed document store (JSON documents, lock and counter tables)."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from time import monotonic, sleep
from typing import TYPE_CHECKING, Any, Mapping, Optional

from sqlalchemy import and_, create_engine, delete, func, insert, literal, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from ..errors import AllocationError, LockTimeout, NotFound, StoreError
from ..graph.query import Condition, DocumentQuery
from ..log import getLogger
from .base import Coordinator, LockedDocument, project
from .schema import counters, create_store_schema, documents, locks

if TYPE_CHECKING:
    from ..config import AppSettings

logger = getLogger(__name__)


def _utcnow() -> datetime:
    # Naive UTC: portable across dialects without timezone-aware columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Locks and counters in SQL tables
# ---------------------------------------------------------------------------


class SqlCoordinator:
    """
    Lease-based advisory locks and counters stored in the ``locks`` and
    ``counters`` tables.

    A lock is a row keyed by ``(bucket, key)``; the primary key makes
    acquisition exclusive. Rows past their lease may be taken over, so a
    crashed holder cannot block a key forever.
    """

    def __init__(
        self,
        engine: Engine,
        bucket: str = "default",
        *,
        lock_timeout_s: float = 5.0,
        lock_ttl_s: float = 30.0,
        lock_poll_s: float = 0.01,
    ) -> None:
        self._engine = engine
        self._bucket = bucket
        self.lock_timeout_s = lock_timeout_s
        self.lock_ttl_s = lock_ttl_s
        self.lock_poll_s = lock_poll_s

    def _where(self, key: str) -> ColumnElement[bool]:
        return and_(locks.c.bucket == literal(self._bucket), locks.c.lock_key == key)

    def _try_acquire(self, key: str) -> str | None:
        now = _utcnow()
        token = uuid.uuid4().hex
        try:
            with Session(self._engine) as session, session.begin():
                session.execute(
                    delete(locks).where(self._where(key), locks.c.expires_at <= now)
                )
                session.execute(
                    insert(locks).values(
                        bucket=self._bucket,
                        lock_key=key,
                        token=token,
                        expires_at=now + timedelta(seconds=self.lock_ttl_s),
                    )
                )
        except IntegrityError:
            return None
        except SQLAlchemyError as exc:
            raise StoreError(f"Lock acquisition on {key!r} failed: {exc}") from exc
        return token

    def acquire(self, key: str) -> str:
        deadline = monotonic() + self.lock_timeout_s
        while True:
            token = self._try_acquire(key)
            if token is not None:
                logger.debug("Locked %s/%s", self._bucket, key)
                return token
            if monotonic() >= deadline:
                raise LockTimeout(key, self.lock_timeout_s)
            sleep(self.lock_poll_s)

    def holds(self, key: str, token: str) -> bool:
        try:
            with Session(self._engine) as session:
                found = session.execute(
                    select(locks.c.token).where(
                        self._where(key),
                        locks.c.token == token,
                        locks.c.expires_at > _utcnow(),
                    )
                ).first()
        except SQLAlchemyError as exc:
            raise StoreError(f"Lock check on {key!r} failed: {exc}") from exc
        return found is not None

    def renew(self, session: Session, key: str, token: str) -> bool:
        """
        Extend a live lease from inside the caller's transaction.

        The row update holds the lock row until `session` commits, so a
        takeover cannot interleave with the write that follows.
        """
        now = _utcnow()
        result = session.execute(
            update(locks)
            .where(self._where(key), locks.c.token == token, locks.c.expires_at > now)
            .values(expires_at=now + timedelta(seconds=self.lock_ttl_s))
        )
        return result.rowcount == 1

    def release(self, key: str, token: str) -> None:
        try:
            with Session(self._engine) as session, session.begin():
                session.execute(delete(locks).where(self._where(key), locks.c.token == token))
        except SQLAlchemyError as exc:
            # The lease still expires on its own.
            logger.error("Failed to release lock %s/%s: %r", self._bucket, key, exc)
            raise StoreError(f"Lock release on {key!r} failed: {exc}") from exc
        logger.debug("Unlocked %s/%s", self._bucket, key)

    def increment(self, key: str, step: int = 1, floor: int = 1) -> int:
        where = and_(counters.c.bucket == literal(self._bucket), counters.c.counter_key == key)
        for _attempt in range(2):
            try:
                with Session(self._engine) as session, session.begin():
                    result = session.execute(
                        update(counters).where(where).values(value=counters.c.value + step)
                    )
                    if result.rowcount == 0:
                        session.execute(
                            insert(counters).values(bucket=self._bucket, counter_key=key, value=floor)
                        )
                    return int(session.execute(select(counters.c.value).where(where)).scalar_one())
            except IntegrityError:
                # Lost the race to create the counter; the update path wins next round.
                continue
            except SQLAlchemyError as exc:
                raise AllocationError(f"Counter {key!r} increment failed: {exc}") from exc
        raise AllocationError(f"Counter {key!r} could not be created")


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------


def _condition_clause(cond: Condition) -> ColumnElement[bool]:
    """Typed JSON-path comparison; path and value are both bound parameters."""
    expr = documents.c.body[cond.path]
    value = cond.value
    if isinstance(value, bool):
        return expr.as_boolean() == value
    if isinstance(value, int):
        return expr.as_integer() == value
    if isinstance(value, float):
        return expr.as_float() == value
    if isinstance(value, str):
        return expr.as_string() == value
    raise TypeError(f"Unsupported condition value {value!r} at {'.'.join(cond.path)}")


class SqlDocumentStore:
    """
    :class:`~relgraph.store.base.DocumentStore` on a single JSON table.

    Locks and counters go through a :class:`Coordinator`; by default the
    lock/counter tables of the same database, optionally ZooKeeper
    (see :class:`relgraph.store.zk.ZkCoordinator`).
    """

    def __init__(
        self,
        engine: Engine,
        bucket: str = "default",
        *,
        coordinator: Optional[Coordinator] = None,
        create_schema: bool = True,
        lock_timeout_s: float = 5.0,
        lock_ttl_s: float = 30.0,
        lock_poll_s: float = 0.01,
    ) -> None:
        self._engine = engine
        self._bucket = bucket
        self._coordinator: Coordinator = coordinator or SqlCoordinator(
            engine,
            bucket,
            lock_timeout_s=lock_timeout_s,
            lock_ttl_s=lock_ttl_s,
            lock_poll_s=lock_poll_s,
        )
        if create_schema:
            create_store_schema(engine)

    @classmethod
    def from_settings(
        cls, settings: "AppSettings", *, coordinator: Optional[Coordinator] = None
    ) -> SqlDocumentStore:
        engine = create_engine(settings.database.url, echo=settings.database.echo)
        g = settings.graph
        return cls(
            engine,
            g.bucket,
            coordinator=coordinator,
            lock_timeout_s=g.lock_timeout_s,
            lock_ttl_s=g.lock_ttl_s,
            lock_poll_s=g.lock_poll_s,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def coordinator(self) -> Coordinator:
        return self._coordinator

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _key_clause(self, key: str) -> ColumnElement[bool]:
        return and_(documents.c.bucket == literal(self._bucket), documents.c.doc_key == key)

    def _live_clause(self, now: datetime) -> ColumnElement[bool]:
        return or_(documents.c.expires_at.is_(None), documents.c.expires_at > now)

    def _read(self, session: Session, key: str) -> dict[str, Any] | None:
        body = session.execute(
            select(documents.c.body).where(self._key_clause(key), self._live_clause(_utcnow()))
        ).scalar_one_or_none()
        return dict(body) if body is not None else None

    def _write(
        self, session: Session, key: str, document: Mapping[str, Any], ttl: float
    ) -> None:
        body = dict(document)
        values = {
            "type": str(body.get("type", "")),
            "body": body,
            "expires_at": _utcnow() + timedelta(seconds=ttl) if ttl else None,
        }
        result = session.execute(update(documents).where(self._key_clause(key)).values(**values))
        if result.rowcount == 0:
            session.execute(insert(documents).values(bucket=self._bucket, doc_key=key, **values))

    def _select(self, query: DocumentQuery, *columns: Any):
        return select(*columns).where(
            documents.c.bucket == literal(self._bucket),
            documents.c.type == query.doc_type,
            self._live_clause(_utcnow()),
            *(_condition_clause(c) for c in query.conditions),
        )

    # ------------------------------------------------------------------ #
    # Counters and point operations
    # ------------------------------------------------------------------ #

    def counter_increment(self, key: str, step: int = 1, floor: int = 1) -> int:
        return self._coordinator.increment(key, step, floor)

    def upsert(self, key: str, document: Mapping[str, Any], ttl: float = 0) -> None:
        for _attempt in range(2):
            try:
                with Session(self._engine) as session, session.begin():
                    self._write(session, key, document, ttl)
                return
            except IntegrityError:
                # Concurrent insert of the same key; retry as an update.
                continue
            except SQLAlchemyError as exc:
                raise StoreError(f"Upsert of {key!r} failed: {exc}") from exc
        raise StoreError(f"Upsert of {key!r} kept conflicting")

    def get(self, key: str) -> dict[str, Any]:
        try:
            with Session(self._engine) as session:
                body = self._read(session, key)
        except SQLAlchemyError as exc:
            raise StoreError(f"Get of {key!r} failed: {exc}") from exc
        if body is None:
            raise NotFound(key)
        return body

    # ------------------------------------------------------------------ #
    # Locking
    # ------------------------------------------------------------------ #

    def lock_for_update(self, key: str) -> LockedDocument:
        token = self._coordinator.acquire(key)
        try:
            with Session(self._engine) as session:
                body = self._read(session, key)
        except SQLAlchemyError as exc:
            self._coordinator.release(key, token)
            raise StoreError(f"Read of locked {key!r} failed: {exc}") from exc
        return LockedDocument(key=key, token=token, existed=body is not None, value=body or {})

    def _lease_held(self, session: Session, locked: LockedDocument) -> bool:
        coordinator = self._coordinator
        if isinstance(coordinator, SqlCoordinator) and coordinator._engine is self._engine:
            return coordinator.renew(session, locked.key, locked.token)
        # External coordinators (ZooKeeper) are checked outside this transaction.
        return coordinator.holds(locked.key, locked.token)

    def _under_lock(self, locked: LockedDocument, work) -> None:
        try:
            with Session(self._engine) as session, session.begin():
                if not self._lease_held(session, locked):
                    raise StoreError(f"Lock on {locked.key!r} was lost before write")
                work(session)
        except SQLAlchemyError as exc:
            raise StoreError(f"Write of locked {locked.key!r} failed: {exc}") from exc
        finally:
            self._coordinator.release(locked.key, locked.token)

    def unlock_and_write(
        self, locked: LockedDocument, document: Mapping[str, Any], ttl: float = 0
    ) -> None:
        self._under_lock(locked, lambda session: self._write(session, locked.key, document, ttl))

    def unlock_and_delete(self, locked: LockedDocument) -> None:
        self._under_lock(
            locked,
            lambda session: session.execute(delete(documents).where(self._key_clause(locked.key))),
        )

    def unlock(self, locked: LockedDocument) -> None:
        self._coordinator.release(locked.key, locked.token)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def execute_paged_query(
        self, query: DocumentQuery, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        stmt = self._select(query, documents.c.doc_key, documents.c.body)
        if query.order_by is not None:
            stmt = stmt.order_by(func.coalesce(documents.c.body[query.order_by].as_string(), ""))
        stmt = stmt.order_by(documents.c.doc_key).limit(limit).offset(offset)
        try:
            with Session(self._engine) as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise StoreError(f"Paged query on {query.doc_type!r} failed: {exc}") from exc
        return [project(row.body, query) for row in rows]

    def execute_count_query(self, query: DocumentQuery) -> int:
        stmt = self._select(query, func.count()).select_from(documents)
        try:
            with Session(self._engine) as session:
                return int(session.execute(stmt).scalar_one())
        except SQLAlchemyError as exc:
            raise StoreError(f"Count query on {query.doc_type!r} failed: {exc}") from exc
