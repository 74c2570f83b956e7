"""Exception hierarchy for Canopy.

Recoverable:
- ProducerFailure: a single node's computation failed (error node substituted
  unless the producer is fatal-on-error)
- SerializationError: a payload value is not encodable (fatal for its subtree)

Never recovered (descriptor-authoring bugs):
- CacheCoherenceViolation: cyclic key/producer dependency
- DiffIdentityConflict: two nodes share a StableId in one tree

BehaviorUpdateError is raised after a diff commits; the tree is already
updated and only behavior callbacks failed.
"""

from __future__ import annotations

from typing import Any, Sequence


class CanopyError(Exception):
    """Base class for all Canopy errors."""


class ProducerFailure(CanopyError):
    """A node producer raised, timed out, or returned an unusable value."""

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        producer: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.node_id = node_id
        self.producer = producer
        self.cause = cause


class CacheCoherenceViolation(CanopyError):
    """Cyclic dependency between cache keys or registered producers."""

    def __init__(self, message: str, chain: Sequence[Any] = ()):
        self.chain = tuple(chain)
        if self.chain:
            path = " -> ".join(str(item) for item in self.chain)
            message = f"{message}: {path}"
        super().__init__(message)


class SerializationError(CanopyError):
    """A payload value cannot be encoded into the wire format."""

    def __init__(self, message: str, *, node_id: str | None = None):
        if node_id:
            message = f"{message} (node {node_id!r})"
        super().__init__(message)
        self.node_id = node_id


class DiffIdentityConflict(CanopyError):
    """Two nodes claim the same StableId within one tree snapshot."""

    def __init__(self, node_id: str, first: str = "", second: str = ""):
        message = f"Duplicate StableId {node_id!r}"
        if first or second:
            message += f" (declared at {first} and {second})"
        super().__init__(message)
        self.node_id = node_id
        self.first = first
        self.second = second


class CacheClosedError(CanopyError):
    """The cache store was shut down."""


class DescriptorError(CanopyError):
    """A tree or producer descriptor is malformed."""


class ActivationError(CanopyError):
    """A placeholder could not be activated on the consuming side."""


class StaleDiffError(CanopyError):
    """A diff was computed against a different version than the one held."""


class DiffApplicationError(CanopyError):
    """A diff does not apply cleanly to the held tree."""


class BehaviorUpdateError(ActivationError):
    """Behavior update() or dispose() failed after a tree was committed.

    The new tree and version are held; only the listed behavior calls failed.
    """

    def __init__(self, version: int, failures: Sequence[tuple[str, BaseException]]):
        self.version = version
        self.failures = list(failures)
        detail = "; ".join(f"{node_id}: {exc!r}" for node_id, exc in self.failures)
        super().__init__(
            f"{len(self.failures)} behavior call(s) failed after committing v{version}: {detail}"
        )
