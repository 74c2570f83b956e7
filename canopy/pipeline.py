"""Render session: request -> render -> diff -> serialize -> frame.

A RenderSession tracks what one client currently holds. The first
navigation, and any navigation to a different view, publishes a full
payload; navigating within the same view publishes only the diff against the
last published tree. A render that changes nothing publishes nothing.

With a SnapshotDB attached, every published tree is persisted, and a session
created after a restart picks up from the last tree its client received.
"""

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .core.context import RequestContext
from .core.models import (
    ActivationManifest,
    DiffPayload,
    Payload,
    RenderTree,
    RouteDescriptor,
    Tier,
)
from .render.descriptors import NodeDescriptor
from .render.diff import diff
from .render.executor import RenderExecutor
from .render.serializer import encode_diff, encode_payload, serialize, serialize_diff
from .storage import SnapshotDB

logger = logging.getLogger(__name__)


class Frame(BaseModel):
    """One unit sent to the client for a navigation."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["full", "diff", "noop"]
    view: str
    version: int
    tier: Tier
    payload: Payload | None = None
    diff: DiffPayload | None = None
    manifest: ActivationManifest = Field(default_factory=ActivationManifest)

    @property
    def message(self) -> Payload | DiffPayload | None:
        """What a HydrationCoordinator applies (None for noop frames)."""
        return self.payload if self.kind == "full" else self.diff

    def encode(self) -> bytes:
        """Wire bytes of the frame body (empty for noop frames)."""
        if self.payload is not None:
            return encode_payload(self.payload)
        if self.diff is not None:
            return encode_diff(self.diff)
        return b""


class RenderSession:
    """Per-client navigation state on the server side.

    Not safe for concurrent navigate() calls on the same session; a client
    navigates one view at a time.
    """

    def __init__(
        self,
        session_id: str,
        executor: RenderExecutor,
        snapshots: SnapshotDB | None = None,
    ):
        self.session_id = session_id
        self.executor = executor
        self.snapshots = snapshots
        self._view: str | None = None
        self._tree: RenderTree | None = None
        self._restored = False

    @property
    def view(self) -> str | None:
        return self._view

    @property
    def current(self) -> RenderTree | None:
        """Last tree published to the client."""
        return self._tree

    @property
    def version(self) -> int | None:
        return self._tree.version if self._tree is not None else None

    def reset(self) -> None:
        """Forget the published tree; the next navigation sends a full payload."""
        self._view = None
        self._tree = None
        self._restored = True

    def _restore(self) -> None:
        if self._restored or self.snapshots is None:
            return
        self._restored = True
        latest = self.snapshots.load_latest(self.session_id)
        if latest is None:
            return
        self._view, self._tree, _ = latest
        logger.info(
            f"[SESSION] {self.session_id}: restored {self._view} v{self._tree.version}"
        )

    async def navigate(
        self,
        route: RouteDescriptor,
        descriptor: NodeDescriptor,
        request: RequestContext | None = None,
    ) -> Frame:
        """Render the route and build the frame for the client.

        Raises:
            ProducerFailure: A fatal-on-error producer failed.
            CacheCoherenceViolation: Producer dependencies form a cycle.
            DiffIdentityConflict: Two nodes resolve to the same StableId.
        """
        self._restore()
        view = route.path
        previous = self._tree if self._view == view else None
        floor = self._tree.version if self._tree is not None else 0
        tree = await self.executor.render_route(
            route, descriptor, request, min_version=floor
        )

        if previous is None:
            payload, manifest = serialize(tree)
            frame = Frame(
                kind="full",
                view=view,
                version=tree.version,
                tier=tree.tier,
                payload=payload,
                manifest=manifest,
            )
        else:
            navigation = diff(previous, tree)
            if navigation.is_empty:
                logger.debug(
                    f"[SESSION] {self.session_id}: {view} unchanged at v{previous.version}"
                )
                return Frame(
                    kind="noop", view=view, version=previous.version, tier=tree.tier
                )
            diff_payload, manifest = serialize_diff(navigation)
            frame = Frame(
                kind="diff",
                view=view,
                version=tree.version,
                tier=tree.tier,
                diff=diff_payload,
                manifest=manifest,
            )

        self._publish(view, tree)
        logger.info(
            f"[SESSION] {self.session_id}: {frame.kind} frame for {view} v{frame.version}"
        )
        return frame

    def _publish(self, view: str, tree: RenderTree) -> None:
        self._view = view
        self._tree = tree
        if self.snapshots is not None:
            self.snapshots.save_snapshot(self.session_id, view, tree)
