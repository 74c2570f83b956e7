"""Render tree models.

A RenderTree is produced by the RenderExecutor and treated as immutable once
rendered. Every RenderNode carries its StableId as plain data so identity
survives serialization and reconstruction on the consuming side.

StableId format: segments joined by "/", one per level from the root.
A segment is "name#key" for nodes with an explicit key and "name@index"
for positional nodes (index = position among siblings).
"""

from enum import Enum
from typing import Any, Iterator, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, PrivateAttr

from ..errors import DiffIdentityConflict
from .cache import Tier


ID_SEPARATOR = "/"


def node_segment(name: str, key: str | None, index: int) -> str:
    """Build the StableId segment for a node under its parent."""
    if key is not None:
        return f"{name}#{key}"
    return f"{name}@{index}"


def child_id(parent_id: str | None, segment: str) -> str:
    if not parent_id:
        return segment
    return f"{parent_id}{ID_SEPARATOR}{segment}"


class NodeKind(str, Enum):
    INERT = "inert"
    PLACEHOLDER = "placeholder"


class ActivationDescriptor(BaseModel):
    """Bundle reference + verbatim constructor arguments for a placeholder."""

    model_config = ConfigDict(frozen=True)

    bundle_locator: str
    ctor_args: dict[str, Any] = {}


class NodeError(BaseModel):
    """Details carried by an error node substituted for a failed subtree."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["producer_failure", "serialization_error", "timeout"]
    producer: str | None = None
    message: str = ""


class RenderNode(BaseModel):
    """One node of a rendered tree."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    kind: NodeKind = NodeKind.INERT
    payload: Any = None
    children: tuple["RenderNode", ...] = ()
    tier: Tier = Tier.BUILD_STATIC
    error: NodeError | None = None

    @property
    def is_placeholder(self) -> bool:
        return self.kind == NodeKind.PLACEHOLDER

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def activation(self) -> ActivationDescriptor | None:
        if self.kind != NodeKind.PLACEHOLDER:
            return None
        return self.payload

    def walk(self) -> Iterator["RenderNode"]:
        """Pre-order traversal of this node's subtree."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def same_content(self, other: "RenderNode") -> bool:
        """True if kind, payload and error match (children not compared)."""
        return (
            self.kind == other.kind
            and self.payload == other.payload
            and self.error == other.error
        )


class IndexedNode(NamedTuple):
    node: RenderNode
    parent_id: str | None
    position: int


class RenderTree(BaseModel):
    """A rendered snapshot: root node plus a monotonically increasing version."""

    model_config = ConfigDict(frozen=True)

    root: RenderNode
    version: int
    tier: Tier = Tier.BUILD_STATIC

    _index: dict[str, IndexedNode] | None = PrivateAttr(default=None)

    def index(self) -> dict[str, IndexedNode]:
        """Map StableId -> (node, parent_id, position).

        Raises:
            DiffIdentityConflict: If two nodes share a StableId.
        """
        if self._index is None:
            self._index = build_index(self.root)
        return self._index

    def get(self, node_id: str) -> RenderNode | None:
        entry = self.index().get(node_id)
        return entry.node if entry else None

    def walk(self) -> Iterator[RenderNode]:
        return self.root.walk()

    @property
    def node_count(self) -> int:
        return sum(1 for _ in self.walk())

    def placeholders(self) -> list[RenderNode]:
        return [node for node in self.walk() if node.is_placeholder]

    def errors(self) -> list[RenderNode]:
        return [node for node in self.walk() if node.is_error]


def build_index(root: RenderNode) -> dict[str, IndexedNode]:
    """Index a subtree by StableId, failing fast on duplicates."""
    index: dict[str, IndexedNode] = {}
    stack: list[tuple[RenderNode, str | None, int]] = [(root, None, 0)]
    while stack:
        node, parent_id, position = stack.pop()
        if node.id in index:
            existing = index[node.id]
            raise DiffIdentityConflict(
                node.id,
                first=f"{existing.parent_id}[{existing.position}]",
                second=f"{parent_id}[{position}]",
            )
        index[node.id] = IndexedNode(node, parent_id, position)
        for i in range(len(node.children) - 1, -1, -1):
            stack.append((node.children[i], node.id, i))
    return index
