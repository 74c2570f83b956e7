"""Diff and transport payload models.

Logical (server side):
- NavigationDiff: removed ids, added subtrees, updated payloads

Wire level (stable for compatibility, format "canopy/1"):
- Payload: pre-order list of PayloadEntry
- ActivationManifest: ref -> {bundle_locator, ctor_args}
- DiffPayload: removed ids, added pre-order entry lists, updated entries
"""

from typing import Any

from pydantic import BaseModel, Field

from .cache import Tier
from .tree import ActivationDescriptor, NodeError, NodeKind, RenderNode


WIRE_FORMAT = "canopy/1"


# =============================================================================
# Navigation diff (logical)
# =============================================================================


class AddedNode(BaseModel):
    """A subtree to attach under parent_id at position index."""

    parent_id: str | None
    index: int
    node: RenderNode


class UpdatedNode(BaseModel):
    """New payload (and error state) for a node whose identity is unchanged."""

    id: str
    payload: Any = None
    error: NodeError | None = None


class NavigationDiff(BaseModel):
    """Minimal patch between two render trees of the same view.

    Applied atomically, in the order removed -> added -> updated.
    """

    from_version: int
    to_version: int
    removed: list[str] = Field(default_factory=list)
    added: list[AddedNode] = Field(default_factory=list)
    updated: list[UpdatedNode] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.removed or self.added or self.updated)

    @property
    def size(self) -> int:
        """Number of diff entries (removed ids + added roots + updates)."""
        return len(self.removed) + len(self.added) + len(self.updated)


# =============================================================================
# Wire payloads
# =============================================================================


class PayloadEntry(BaseModel):
    """One node of a pre-order payload.

    Inert nodes carry `payload`; placeholder nodes carry `manifest_ref`.
    """

    id: str
    name: str
    kind: NodeKind
    child_count: int = 0
    tier: Tier = Tier.BUILD_STATIC
    payload: Any = None
    manifest_ref: str | None = None
    error: NodeError | None = None


class Payload(BaseModel):
    """Full render payload for one tree version."""

    format: str = WIRE_FORMAT
    version: int
    tier: Tier = Tier.BUILD_STATIC
    nodes: list[PayloadEntry] = Field(default_factory=list)


class ActivationManifest(BaseModel):
    """Placeholder StableId -> activation descriptor."""

    entries: dict[str, ActivationDescriptor] = Field(default_factory=dict)

    def get(self, ref: str) -> ActivationDescriptor | None:
        return self.entries.get(ref)

    def __contains__(self, ref: object) -> bool:
        return ref in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def merge(self, other: "ActivationManifest") -> "ActivationManifest":
        return ActivationManifest(entries={**self.entries, **other.entries})


class AddedSubtree(BaseModel):
    """Wire form of AddedNode: the subtree as a pre-order entry list."""

    parent_id: str | None
    index: int
    nodes: list[PayloadEntry]


class UpdatedEntry(BaseModel):
    """Wire form of UpdatedNode."""

    id: str
    payload: Any = None
    manifest_ref: str | None = None
    error: NodeError | None = None


class DiffPayload(BaseModel):
    """Wire form of NavigationDiff."""

    format: str = WIRE_FORMAT
    from_version: int
    to_version: int
    removed: list[str] = Field(default_factory=list)
    added: list[AddedSubtree] = Field(default_factory=list)
    updated: list[UpdatedEntry] = Field(default_factory=list)
