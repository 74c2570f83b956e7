"""Render executor: descriptor tree -> RenderTree.

Walks the declared tree depth-first. Siblings render concurrently but are
assembled in declaration order. For each node:

- static nodes carry their declared payload
- CLIENT_PLACEHOLDER nodes become placeholders with verbatim ctor args and
  are not expanded further
- CACHEABLE producers go through the cache store unless their effective
  tier is dynamic; ALWAYS_FRESH producers always execute

A failing producer is replaced by an error node (same StableId, no
children) and its siblings carry on, unless the producer is fatal-on-error,
in which case the whole render fails. Dependency cycles always propagate.
"""

import asyncio
import inspect
import logging
import time
from typing import Any

from ..cache import CacheKey, CacheStore
from ..config import CanopyConfig, get_config
from ..core.context import EMPTY_CONTEXT, RequestContext
from ..core.errors import (
    CanopyError,
    ProducerFailure,
    SerializationError,
)
from ..core.models import (
    ActivationDescriptor,
    CachePolicy,
    NodeError,
    NodeKind,
    RenderNode,
    RenderTree,
    RouteDescriptor,
    Tier,
    child_id,
    node_segment,
)
from .descriptors import NodeDescriptor, ProducerKind, ProducerRegistry, ProducerSpec
from .serializer import normalize_value
from .tiers import classify, resolve_tier

logger = logging.getLogger(__name__)

_TIMEOUTS = (asyncio.TimeoutError, TimeoutError)


class RenderExecutor:
    """Renders descriptor trees using a shared cache store.

    The executor itself holds no per-request state: each render() call owns
    the tree it builds until it returns.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        config: CanopyConfig | None = None,
        registry: ProducerRegistry | None = None,
        max_concurrency: int | None = None,
        producer_timeout: float | None = None,
    ):
        cfg = config or get_config()
        self.store = store
        self.registry = registry or ProducerRegistry(store)
        self.max_concurrency = max_concurrency or cfg.render.max_concurrency
        self.producer_timeout = (
            producer_timeout
            if producer_timeout is not None
            else cfg.render.producer_timeout
        )
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._version = 0

    def _next_version(self, floor: int = 0) -> int:
        self._version = max(self._version, floor) + 1
        return self._version

    async def render_route(
        self,
        route: RouteDescriptor,
        descriptor: NodeDescriptor,
        request: RequestContext | None = None,
        *,
        min_version: int = 0,
    ) -> RenderTree:
        """Classify the route, then render the tree under that tier."""
        return await self.render(
            descriptor, classify(route), request=request, min_version=min_version
        )

    async def render(
        self,
        descriptor: NodeDescriptor,
        tier: Tier = Tier.RUNTIME_STATIC,
        *,
        request: RequestContext | None = None,
        min_version: int = 0,
    ) -> RenderTree:
        """Render a descriptor tree.

        Args:
            descriptor: Root of the declared tree
            tier: Route tier (the least dynamic tier any node may use)
            request: Caller's request context for dynamic producers
            min_version: The resulting version is strictly greater than this

        Raises:
            ProducerFailure: A fatal-on-error producer failed.
            CacheCoherenceViolation: Producer dependencies form a cycle.
            DiffIdentityConflict: Two nodes resolve to the same StableId.
        """
        self.registry.register_tree(descriptor)
        version = self._next_version(min_version)
        started = time.monotonic()

        root = await self._render_node(
            descriptor,
            None,
            0,
            tier,
            request if request is not None else EMPTY_CONTEXT,
        )
        tree = RenderTree(root=root, version=version, tier=tier)
        tree.index()

        errors = tree.errors()
        elapsed = time.monotonic() - started
        logger.info(
            f"[RENDER] v{version} ({tier.value}): {tree.node_count} nodes, "
            f"{len(errors)} error nodes in {elapsed:.3f}s"
        )
        return tree

    async def _render_node(
        self,
        desc: NodeDescriptor,
        parent_id: str | None,
        index: int,
        route_tier: Tier,
        request: RequestContext,
    ) -> RenderNode:
        node_id = child_id(parent_id, node_segment(desc.name, desc.key, index))
        spec = desc.producer

        if spec is None:
            try:
                payload = normalize_value(desc.payload, node_id)
            except SerializationError as exc:
                logger.warning(f"[RENDER] {node_id}: {exc}")
                return _error_node(node_id, desc.name, route_tier, None, exc)
            children = await self._render_children(
                desc.children, node_id, route_tier, request
            )
            return RenderNode(
                id=node_id,
                name=desc.name,
                payload=payload,
                children=children,
                tier=route_tier,
            )

        if spec.kind == ProducerKind.CLIENT_PLACEHOLDER:
            return self._placeholder(desc, spec, node_id, route_tier)

        tier = resolve_tier(route_tier, spec.tier_hint, spec.reads_request)
        if spec.kind == ProducerKind.ALWAYS_FRESH:
            tier = Tier.DYNAMIC

        try:
            value = await self._produce(spec, desc.args, tier, request, node_id)
            payload = normalize_value(value, node_id)
        except (ProducerFailure, SerializationError) as exc:
            if spec.fatal_on_error:
                logger.error(f"[RENDER] {node_id}: fatal producer {spec.name} failed")
                if isinstance(exc, ProducerFailure):
                    raise
                raise ProducerFailure(
                    str(exc), node_id=node_id, producer=spec.name, cause=exc
                ) from exc
            logger.warning(
                f"[RENDER] {node_id}: producer {spec.name} failed, "
                f"substituting error node: {exc}"
            )
            return _error_node(node_id, desc.name, tier, spec, exc)

        children = await self._render_children(desc.children, node_id, route_tier, request)
        return RenderNode(
            id=node_id,
            name=desc.name,
            payload=payload,
            children=children,
            tier=tier,
        )

    def _placeholder(
        self,
        desc: NodeDescriptor,
        spec: ProducerSpec,
        node_id: str,
        tier: Tier,
    ) -> RenderNode:
        try:
            ctor_args = normalize_value(desc.args, node_id)
        except SerializationError as exc:
            logger.warning(f"[RENDER] {node_id}: placeholder args not encodable: {exc}")
            return _error_node(node_id, desc.name, tier, spec, exc)
        if desc.children:
            logger.warning(
                f"[RENDER] {node_id}: dropping {len(desc.children)} declared children; "
                f"bundle {spec.bundle_locator} renders its own subtree"
            )
        return RenderNode(
            id=node_id,
            name=desc.name,
            kind=NodeKind.PLACEHOLDER,
            payload=ActivationDescriptor(
                bundle_locator=spec.bundle_locator, ctor_args=ctor_args
            ),
            tier=tier,
        )

    async def _produce(
        self,
        spec: ProducerSpec,
        args: dict[str, Any],
        tier: Tier,
        request: RequestContext,
        node_id: str,
    ) -> Any:
        timeout = spec.timeout if spec.timeout is not None else self.producer_timeout

        async def run(scope):
            result = spec.fn(scope, **args)
            if inspect.isawaitable(result):
                if timeout is not None:
                    result = await asyncio.wait_for(result, timeout)
                else:
                    result = await result
            return result

        try:
            async with self._semaphore:
                if tier == Tier.DYNAMIC:
                    return await self.store.get_or_compute(
                        _dynamic_key(spec, args, node_id),
                        run,
                        CachePolicy.dynamic(),
                        request=request,
                    )
                return await self.store.get_or_compute(
                    spec.cache_key(args), run, spec.policy(tier), request=request
                )
        except CanopyError:
            raise
        except _TIMEOUTS as exc:
            raise ProducerFailure(
                f"Producer {spec.name} timed out after {timeout}s",
                node_id=node_id,
                producer=spec.name,
                cause=exc,
            ) from exc
        except Exception as exc:
            raise ProducerFailure(
                f"Producer {spec.name} failed: {exc}",
                node_id=node_id,
                producer=spec.name,
                cause=exc,
            ) from exc

    async def _render_children(
        self,
        children: list[NodeDescriptor],
        parent_id: str,
        tier: Tier,
        request: RequestContext,
    ) -> tuple[RenderNode, ...]:
        if not children:
            return ()
        tasks = [
            asyncio.ensure_future(self._render_node(child, parent_id, i, tier, request))
            for i, child in enumerate(children)
        ]
        try:
            return tuple(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


def _dynamic_key(spec: ProducerSpec, args: dict[str, Any], node_id: str) -> CacheKey:
    # Dynamic keys only label the computation; args need not be hashable.
    try:
        return spec.cache_key(args)
    except TypeError:
        return CacheKey(spec.name, (node_id,))


def _error_node(
    node_id: str,
    name: str,
    tier: Tier,
    spec: ProducerSpec | None,
    exc: Exception,
) -> RenderNode:
    cause = exc.cause if isinstance(exc, ProducerFailure) else exc
    if isinstance(exc, SerializationError) or isinstance(cause, SerializationError):
        kind = "serialization_error"
    elif isinstance(cause, _TIMEOUTS):
        kind = "timeout"
    else:
        kind = "producer_failure"
    return RenderNode(
        id=node_id,
        name=name,
        payload=None,
        tier=tier,
        error=NodeError(
            kind=kind,
            producer=spec.name if spec is not None else None,
            message=str(exc),
        ),
    )
