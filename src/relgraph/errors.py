"""Error taxonomy shared by the graph layer and the document stores."""

from __future__ import annotations


class RelgraphError(RuntimeError):
    """Base class for all relgraph errors."""
    pass


class NotFound(RelgraphError):
    """Point read on a key that has no document."""

    def __init__(self, key: str) -> None:
        super().__init__(f"No document for key {key!r}")
        self.key = key


class LockContention(RelgraphError):
    """Exclusive access to a key could not be obtained."""

    def __init__(self, key: str, message: str | None = None) -> None:
        super().__init__(message or f"Lock on {key!r} is held by another owner")
        self.key = key


class LockTimeout(LockContention):
    """Lock acquisition did not succeed within the configured bound."""

    def __init__(self, key: str, timeout_s: float) -> None:
        super().__init__(key, f"Timed out after {timeout_s:.3f}s waiting for lock on {key!r}")
        self.timeout_s = timeout_s


class StoreError(RelgraphError):
    """Any other failure of the underlying store (connectivity, query, write)."""
    pass


class AllocationError(StoreError):
    """Counter increment failed; no identifier was reserved."""
    pass
