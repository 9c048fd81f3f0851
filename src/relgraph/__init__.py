try:
    from ._version import version as __version__  # populated by setuptools-scm
except ModuleNotFoundError:
    __version__ = "0.0.0"

from .errors import (
    AllocationError,
    LockContention,
    LockTimeout,
    NotFound,
    RelgraphError,
    StoreError,
)
from .graph import (
    Arc,
    ArcOptions,
    Direction,
    Graph,
    Node,
    NodeId,
    NodeIdAllocator,
    NodeQueryResult,
    derive_key,
)

__all__ = [
    "__version__",
    "Arc",
    "ArcOptions",
    "Direction",
    "Graph",
    "Node",
    "NodeId",
    "NodeIdAllocator",
    "NodeQueryResult",
    "derive_key",
    "RelgraphError",
    "NotFound",
    "LockContention",
    "LockTimeout",
    "StoreError",
    "AllocationError",
]
