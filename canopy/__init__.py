"""Canopy: tiered memoization and incremental tree rendering.

Pipeline stages:
- cache: keyed memoization with single-flight execution and three lifetimes
- render: tier classification, tree rendering, payload serialization, diffing
- hydrate: client-side activation of placeholder nodes and diff application

Usage:
    from canopy import CacheStore, RenderExecutor, RenderSession

    store = CacheStore()
    executor = RenderExecutor(store)
    session = RenderSession("session-1", executor)
    frame = await session.navigate(route, tree)
"""

__version__ = "0.3.0"

from .cache import CacheKey, CacheStore, ComputeScope
from .core.context import RequestContext
from .core.errors import (
    CanopyError,
    ProducerFailure,
    CacheCoherenceViolation,
    SerializationError,
    DiffIdentityConflict,
    ActivationError,
    BehaviorUpdateError,
)
from .core.models import (
    Tier,
    StaleMode,
    CachePolicy,
    NodeKind,
    RenderNode,
    RenderTree,
    NavigationDiff,
    ActivationDescriptor,
    ActivationManifest,
    RouteDescriptor,
)
from .render import (
    classify,
    NodeDescriptor,
    ProducerSpec,
    ProducerKind,
    ProducerRegistry,
    RenderExecutor,
    serialize,
    diff,
)
from .hydrate import BundleRegistry, HydrationCoordinator
from .pipeline import Frame, RenderSession

__all__ = [
    "__version__",
    # Cache
    "CacheKey",
    "CacheStore",
    "ComputeScope",
    # Context
    "RequestContext",
    # Errors
    "CanopyError",
    "ProducerFailure",
    "CacheCoherenceViolation",
    "SerializationError",
    "DiffIdentityConflict",
    "ActivationError",
    "BehaviorUpdateError",
    # Models
    "Tier",
    "StaleMode",
    "CachePolicy",
    "NodeKind",
    "RenderNode",
    "RenderTree",
    "NavigationDiff",
    "ActivationDescriptor",
    "ActivationManifest",
    "RouteDescriptor",
    # Render
    "classify",
    "NodeDescriptor",
    "ProducerSpec",
    "ProducerKind",
    "ProducerRegistry",
    "RenderExecutor",
    "serialize",
    "diff",
    # Hydrate
    "BundleRegistry",
    "HydrationCoordinator",
    # Pipeline
    "Frame",
    "RenderSession",
]
