"""ZooKeeper coordination: distributed arc locks and node-ID counters."""

from __future__ import annotations

import uuid
from threading import RLock
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from kazoo.client import KazooClient, KazooState
from kazoo.exceptions import KazooException
from kazoo.exceptions import LockTimeout as KazooLockTimeout

from ..errors import AllocationError, LockTimeout, StoreError
from ..log import getLogger

if TYPE_CHECKING:
    from ..config import ZookeeperSettings

logger = getLogger(__name__)

LOCKS = "locks"
COUNTERS = "counters"


def create_zk_client(settings: "ZookeeperSettings") -> KazooClient:
    hosts = settings.hosts
    if settings.chroot:
        hosts = f"{hosts}{settings.chroot}"
    return KazooClient(
        hosts=hosts,
        timeout=settings.session_timeout_s,
    )


class ZkConnectionManager:
    """
    Owns one KazooClient per process and logs session state transitions.

    Lock znodes are ephemeral, so a LOST session drops every lock this
    process held; holders find out through :meth:`ZkCoordinator.holds`.
    """

    def __init__(self, settings: "ZookeeperSettings") -> None:
        self._settings = settings
        self._client = create_zk_client(settings)
        self._client.add_listener(self._on_state_change)
        self._state: Any = None

    @property
    def client(self) -> KazooClient:
        return self._client

    @property
    def state(self) -> Any:
        return self._state

    def start(self) -> None:
        self._client.start(timeout=self._settings.connection_timeout_s)

    def stop(self) -> None:
        self._client.stop()
        self._client.close()

    def _on_state_change(self, state: Any) -> None:
        self._state = state
        if state == KazooState.LOST:
            logger.warning("ZooKeeper session lost; held locks are gone")
        elif state == KazooState.SUSPENDED:
            logger.warning("ZooKeeper connection suspended")
        else:
            logger.info("ZooKeeper state: %s", state)


class ZkCoordinator:
    """
    :class:`~relgraph.store.base.Coordinator` on kazoo's Lock and Counter recipes.

    Keys are percent-encoded into single znode names, so any document key
    (including ``/``) maps to one lock path.
    """

    def __init__(
        self,
        client: KazooClient,
        base_path: str = "/relgraph",
        *,
        lock_timeout_s: float = 5.0,
        identifier: str | None = None,
    ) -> None:
        self._client = client
        self._base = base_path.rstrip("/")
        self.lock_timeout_s = lock_timeout_s
        self._identifier = identifier or uuid.uuid4().hex

        self._mutex = RLock()
        self._held: dict[str, Any] = {}  # token -> kazoo Lock

    def _path(self, kind: str, key: str) -> str:
        return f"{self._base}/{kind}/{quote(key, safe='')}"

    def acquire(self, key: str) -> str:
        lock = self._client.Lock(self._path(LOCKS, key), self._identifier)
        try:
            lock.acquire(blocking=True, timeout=self.lock_timeout_s)
        except KazooLockTimeout as exc:
            raise LockTimeout(key, self.lock_timeout_s) from exc
        except KazooException as exc:
            raise StoreError(f"Lock acquisition on {key!r} failed: {exc}") from exc

        token = uuid.uuid4().hex
        with self._mutex:
            self._held[token] = lock
        logger.debug("Locked %s via ZooKeeper", key)
        return token

    def holds(self, key: str, token: str) -> bool:
        with self._mutex:
            lock = self._held.get(token)
        return lock is not None and bool(lock.is_acquired)

    def release(self, key: str, token: str) -> None:
        with self._mutex:
            lock = self._held.pop(token, None)
        if lock is None:
            return
        try:
            lock.release()
        except KazooException as exc:
            # Ephemeral node goes away with the session anyway.
            logger.error("Failed to release ZooKeeper lock on %s: %r", key, exc)
            raise StoreError(f"Lock release on {key!r} failed: {exc}") from exc
        logger.debug("Unlocked %s via ZooKeeper", key)

    def increment(self, key: str, step: int = 1, floor: int = 1) -> int:
        counter = self._client.Counter(self._path(COUNTERS, key), default=floor - step)
        try:
            counter += step
        except KazooException as exc:
            raise AllocationError(f"Counter {key!r} increment failed: {exc}") from exc
        return int(counter.post_value)
