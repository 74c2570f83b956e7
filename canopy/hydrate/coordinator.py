"""Hydration coordinator: the consuming side of the pipeline.

Holds one logical UI tree per session. A full payload replaces the tree
and activates every placeholder. A diff is staged on a copy of the tree,
validated end to end, and only then committed, so it is applied completely
or not at all. Behavior update() and dispose() run after the commit and
cannot undo it; their failures are collected and reported together.

Live behaviors are attached only to placeholder nodes, and only when the
node is part of a payload, an added subtree, or an update. Behaviors in
every other subtree survive diff application untouched.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Union

from ..core.errors import (
    ActivationError,
    BehaviorUpdateError,
    DiffApplicationError,
    StaleDiffError,
)
from ..core.models import (
    ActivationDescriptor,
    ActivationManifest,
    DiffPayload,
    NavigationDiff,
    NodeError,
    NodeKind,
    Payload,
    PayloadEntry,
    RenderNode,
    RenderTree,
    Tier,
)
from ..render.serializer import serialize_diff
from .bundles import BundleRegistry, dispose_behavior

logger = logging.getLogger(__name__)


Message = Union[Payload, DiffPayload, NavigationDiff]


@dataclass
class ClientNode:
    """Mutable client-side node."""

    id: str
    name: str
    kind: NodeKind
    payload: Any = None
    tier: Tier = Tier.BUILD_STATIC
    error: NodeError | None = None
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    behavior: Any = None


class _Staging:
    """Copy of the held tree that a message is applied to before commit."""

    def __init__(self, nodes: dict[str, ClientNode], root_id: str | None):
        self.nodes = {k: replace(v, children=list(v.children)) for k, v in nodes.items()}
        self.root_id = root_id
        self.created: list[Any] = []
        self.retired: list[tuple[str, Any]] = []
        self.updates: list[tuple[str, Callable[..., Any], dict[str, Any]]] = []

    def rollback(self) -> None:
        for behavior in self.created:
            dispose_behavior(behavior)


class HydrationCoordinator:
    """Applies payloads and diffs to a client-side tree."""

    def __init__(self, bundles: BundleRegistry):
        self.bundles = bundles
        self._nodes: dict[str, ClientNode] = {}
        self._root_id: str | None = None
        self._version: int | None = None
        self.activations = 0

    # ── Introspection ──

    @property
    def version(self) -> int | None:
        return self._version

    @property
    def root_id(self) -> str | None:
        return self._root_id

    def node(self, node_id: str) -> ClientNode | None:
        return self._nodes.get(node_id)

    def behavior(self, node_id: str) -> Any:
        node = self._nodes.get(node_id)
        return node.behavior if node else None

    @property
    def node_ids(self) -> list[str]:
        """StableIds in pre-order."""
        if self._root_id is None:
            return []
        order = []
        stack = [self._root_id]
        while stack:
            node_id = stack.pop()
            order.append(node_id)
            stack.extend(reversed(self._nodes[node_id].children))
        return order

    def snapshot(self) -> RenderTree | None:
        """The held tree as a RenderTree (what the server diffs against)."""
        if self._root_id is None or self._version is None:
            return None
        return RenderTree(root=self._to_render_node(self._root_id), version=self._version)

    def _to_render_node(self, node_id: str) -> RenderNode:
        node = self._nodes[node_id]
        return RenderNode(
            id=node.id,
            name=node.name,
            kind=node.kind,
            payload=node.payload,
            children=tuple(self._to_render_node(c) for c in node.children),
            tier=node.tier,
            error=node.error,
        )

    # ── Application ──

    def apply(self, message: Message, manifest: ActivationManifest | None = None) -> None:
        """Apply a full payload or a diff.

        Raises:
            StaleDiffError: Diff base version differs from the held version.
            DiffApplicationError: Diff or payload does not fit the held tree.
            ActivationError: A placeholder could not be activated.
            BehaviorUpdateError: The message was committed, but a behavior
                update() or dispose() raised. Every other call still ran.
        """
        if isinstance(message, NavigationDiff):
            message, diff_manifest = serialize_diff(message)
            manifest = diff_manifest if manifest is None else manifest.merge(diff_manifest)
        manifest = manifest or ActivationManifest()

        if isinstance(message, Payload):
            self._apply_payload(message, manifest)
        elif isinstance(message, DiffPayload):
            self._apply_diff(message, manifest)
        else:
            raise TypeError(f"Cannot apply {type(message).__name__}")

    def _apply_payload(self, payload: Payload, manifest: ActivationManifest) -> None:
        staging = _Staging({}, None)
        try:
            staging.root_id = self._materialize(payload.nodes, None, manifest, staging)
        except Exception:
            staging.rollback()
            raise

        retired = [(n.id, n.behavior) for n in self._nodes.values() if n.behavior is not None]
        self._commit(staging, payload.version)
        failures = _settle([], retired)
        logger.info(
            f"[HYDRATE] Full payload v{payload.version}: {len(payload.nodes)} nodes, "
            f"{len(staging.created)} activated"
        )
        if failures:
            raise BehaviorUpdateError(payload.version, failures)

    def _apply_diff(self, diff_payload: DiffPayload, manifest: ActivationManifest) -> None:
        if self._version is None:
            raise StaleDiffError("No payload held; a full payload must come first")
        if diff_payload.from_version != self._version:
            raise StaleDiffError(
                f"Diff is against v{diff_payload.from_version}, "
                f"but v{self._version} is held"
            )

        staging = _Staging(self._nodes, self._root_id)
        try:
            self._stage_removed(diff_payload.removed, staging)
            self._stage_added(diff_payload, manifest, staging)
            self._stage_updated(diff_payload, manifest, staging)
        except Exception:
            staging.rollback()
            raise

        self._commit(staging, diff_payload.to_version)
        failures = _settle(staging.updates, staging.retired)
        logger.info(
            f"[HYDRATE] Diff v{diff_payload.from_version} -> v{diff_payload.to_version}: "
            f"{len(diff_payload.removed)} removed, {len(diff_payload.added)} added, "
            f"{len(diff_payload.updated)} updated, {len(staging.created)} activated"
        )
        if failures:
            raise BehaviorUpdateError(diff_payload.to_version, failures)

    def _commit(self, staging: _Staging, version: int) -> None:
        self._nodes = staging.nodes
        self._root_id = staging.root_id
        self._version = version
        self.activations += len(staging.created)

    # ── Staging steps ──

    def _stage_removed(self, removed: list[str], staging: _Staging) -> None:
        for node_id in removed:
            node = staging.nodes.get(node_id)
            if node is None:
                raise DiffApplicationError(f"Cannot remove unknown node {node_id!r}")
            if node.parent_id is None:
                staging.root_id = None
            else:
                staging.nodes[node.parent_id].children.remove(node_id)
            stack = [node_id]
            while stack:
                current = staging.nodes.pop(stack.pop())
                if current.behavior is not None:
                    staging.retired.append((current.id, current.behavior))
                stack.extend(current.children)

    def _stage_added(
        self,
        diff_payload: DiffPayload,
        manifest: ActivationManifest,
        staging: _Staging,
    ) -> None:
        for item in diff_payload.added:
            if item.parent_id is None:
                if staging.root_id is not None:
                    raise DiffApplicationError(
                        f"Cannot add root {item.nodes[0].id if item.nodes else '?'!r}: "
                        f"tree already has root {staging.root_id!r}"
                    )
                staging.root_id = self._materialize(item.nodes, None, manifest, staging)
                continue

            parent = staging.nodes.get(item.parent_id)
            if parent is None:
                raise DiffApplicationError(f"Unknown parent {item.parent_id!r}")
            if parent.kind == NodeKind.PLACEHOLDER:
                raise DiffApplicationError(
                    f"Cannot attach children to placeholder {item.parent_id!r}"
                )
            if not 0 <= item.index <= len(parent.children):
                raise DiffApplicationError(
                    f"Index {item.index} out of range under {item.parent_id!r}"
                )
            root_id = self._materialize(item.nodes, item.parent_id, manifest, staging)
            parent.children.insert(item.index, root_id)

    def _stage_updated(
        self,
        diff_payload: DiffPayload,
        manifest: ActivationManifest,
        staging: _Staging,
    ) -> None:
        refreshed: list[ClientNode] = []
        for item in diff_payload.updated:
            node = staging.nodes.get(item.id)
            if node is None:
                raise DiffApplicationError(f"Cannot update unknown node {item.id!r}")
            if node.kind == NodeKind.PLACEHOLDER:
                if item.manifest_ref is None:
                    raise DiffApplicationError(
                        f"Update for placeholder {item.id!r} has no manifest reference"
                    )
                node.payload = _lookup(manifest, item.manifest_ref, item.id)
                refreshed.append(node)
            else:
                if item.manifest_ref is not None:
                    raise DiffApplicationError(
                        f"Update for inert node {item.id!r} references the manifest"
                    )
                node.payload = item.payload
                node.error = item.error

        # Behavior changes last, once everything else has validated.
        for node in refreshed:
            old = node.behavior
            update = getattr(old, "update", None)
            if callable(update):
                staging.updates.append((node.id, update, dict(node.payload.ctor_args)))
                continue
            node.behavior = self.bundles.activate(node.payload)
            staging.created.append(node.behavior)
            if old is not None:
                staging.retired.append((node.id, old))

    def _materialize(
        self,
        entries: list[PayloadEntry],
        parent_id: str | None,
        manifest: ActivationManifest,
        staging: _Staging,
    ) -> str:
        """Create client nodes for one pre-order subtree; returns its root id.

        The subtree root is not linked into its parent; callers place it.
        """
        stack: list[list[Any]] = []  # [ClientNode, remaining_children]
        root_id: str | None = None
        for entry in entries:
            while stack and stack[-1][1] == 0:
                stack.pop()
            if stack:
                parent: ClientNode | None = stack[-1][0]
                stack[-1][1] -= 1
            elif root_id is None:
                parent = None
            else:
                raise DiffApplicationError(
                    f"Entry {entry.id!r} is outside subtree {root_id!r}"
                )
            if entry.id in staging.nodes:
                raise DiffApplicationError(f"Node {entry.id!r} already exists")

            node = ClientNode(
                id=entry.id,
                name=entry.name,
                kind=entry.kind,
                tier=entry.tier,
                parent_id=parent.id if parent is not None else parent_id,
            )
            if entry.kind == NodeKind.PLACEHOLDER:
                if entry.child_count:
                    raise DiffApplicationError(
                        f"Placeholder {entry.id!r} cannot carry children"
                    )
                node.payload = _lookup(manifest, entry.manifest_ref or entry.id, entry.id)
                node.behavior = self.bundles.activate(node.payload)
                staging.created.append(node.behavior)
            else:
                node.payload = entry.payload
                node.error = entry.error

            staging.nodes[entry.id] = node
            if parent is not None:
                parent.children.append(entry.id)
            else:
                root_id = entry.id
            if entry.child_count:
                stack.append([node, entry.child_count])

        if root_id is None:
            raise DiffApplicationError("Empty node list")
        if any(remaining for _, remaining in stack):
            raise DiffApplicationError(f"Truncated subtree under {root_id!r}")
        return root_id


def _lookup(manifest: ActivationManifest, ref: str, node_id: str) -> ActivationDescriptor:
    descriptor = manifest.get(ref)
    if descriptor is None:
        raise ActivationError(f"No manifest entry {ref!r} for placeholder {node_id!r}")
    return descriptor


def _settle(
    updates: list[tuple[str, Callable[..., Any], dict[str, Any]]],
    retired: list[tuple[str, Any]],
) -> list[tuple[str, BaseException]]:
    """Run post-commit behavior calls; every call runs even if earlier ones fail."""
    failures: list[tuple[str, BaseException]] = []
    for node_id, update, ctor_args in updates:
        try:
            update(**ctor_args)
        except Exception as e:
            logger.warning(f"[HYDRATE] update() failed for {node_id!r}: {e!r}")
            failures.append((node_id, e))
    for node_id, behavior in retired:
        try:
            dispose_behavior(behavior)
        except Exception as e:
            logger.warning(f"[HYDRATE] dispose() failed for {node_id!r}: {e!r}")
            failures.append((node_id, e))
    return failures
