"""All Pydantic models for Canopy, organized by stage.

- cache.py: Tier, StaleMode, CachePolicy, CacheStats
- tree.py: RenderNode, RenderTree, ActivationDescriptor, NodeError
- wire.py: NavigationDiff and the transport payload schema
- route.py: RouteDescriptor
"""

from .cache import Tier, StaleMode, CachePolicy, CacheStats
from .tree import (
    ID_SEPARATOR,
    NodeKind,
    NodeError,
    ActivationDescriptor,
    RenderNode,
    RenderTree,
    IndexedNode,
    build_index,
    child_id,
    node_segment,
)
from .wire import (
    WIRE_FORMAT,
    AddedNode,
    UpdatedNode,
    NavigationDiff,
    PayloadEntry,
    Payload,
    ActivationManifest,
    AddedSubtree,
    UpdatedEntry,
    DiffPayload,
)
from .route import RouteDescriptor

__all__ = [
    # Cache
    "Tier",
    "StaleMode",
    "CachePolicy",
    "CacheStats",
    # Tree
    "ID_SEPARATOR",
    "NodeKind",
    "NodeError",
    "ActivationDescriptor",
    "RenderNode",
    "RenderTree",
    "IndexedNode",
    "build_index",
    "child_id",
    "node_segment",
    # Wire
    "WIRE_FORMAT",
    "AddedNode",
    "UpdatedNode",
    "NavigationDiff",
    "PayloadEntry",
    "Payload",
    "ActivationManifest",
    "AddedSubtree",
    "UpdatedEntry",
    "DiffPayload",
    # Route
    "RouteDescriptor",
]
