"""Declarative node graph and producer registration.

A NodeDescriptor tree is what callers hand to the RenderExecutor. Nodes
either carry a static payload or reference a ProducerSpec, which says how
the node's payload is computed and cached:

- CACHEABLE: computed through the cache store (unless the tier is dynamic)
- ALWAYS_FRESH: computed on every render, never cached
- CLIENT_PLACEHOLDER: not computed; emitted as a placeholder whose
  constructor arguments are captured verbatim for client-side activation

Producer functions are called as fn(scope, **args), where scope is the
ComputeScope of the computation (scope.request, scope.get_or_compute).

Example:
    @producer("post", tags={"posts"}, revalidate_after=30)
    async def post(scope, slug):
        return await load_post(slug)

    like_button = placeholder("like_button", bundle="widgets/like.js")

    tree = node(
        "page",
        node("post", producer=post, args={"slug": "hello"}),
        node("like", producer=like_button, args={"slug": "hello"}),
    )
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Iterator

from ..cache import CacheKey, CacheStore
from ..core.errors import DescriptorError
from ..core.models import CachePolicy, StaleMode, Tier

_RESERVED = ("/", "#", "@")


class ProducerKind(str, Enum):
    CACHEABLE = "cacheable"
    ALWAYS_FRESH = "always_fresh"
    CLIENT_PLACEHOLDER = "client_placeholder"


@dataclass(frozen=True)
class ProducerSpec:
    """Uniform contract through which the executor calls every producer."""

    name: str
    fn: Callable[..., Any] | None = None
    kind: ProducerKind = ProducerKind.CACHEABLE
    tier_hint: Tier | None = None
    key_fn: Callable[[dict[str, Any]], CacheKey] | None = None
    depends_on: tuple[str, ...] = ()
    tags: frozenset[str] = frozenset()
    revalidate_after: float | None = None
    stale_mode: StaleMode | None = None
    fatal_on_error: bool = False
    timeout: float | None = None
    reads_request: bool = False
    bundle: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise DescriptorError("Producer name must be non-empty")
        if self.kind == ProducerKind.CLIENT_PLACEHOLDER:
            if self.fn is not None:
                raise DescriptorError(
                    f"Placeholder producer {self.name!r} must not have a function"
                )
        elif self.fn is None:
            raise DescriptorError(f"Producer {self.name!r} has no function")

    @property
    def bundle_locator(self) -> str:
        return self.bundle or self.name

    def cache_key(self, args: dict[str, Any]) -> CacheKey:
        if self.key_fn is not None:
            return self.key_fn(args)
        return CacheKey.from_mapping(self.name, args)

    def policy(self, tier: Tier) -> CachePolicy:
        if tier == Tier.RUNTIME_STATIC:
            return CachePolicy(
                tier=tier,
                revalidate_after=self.revalidate_after,
                stale_mode=self.stale_mode or StaleMode.SERVE_STALE,
                tags=self.tags,
            )
        return CachePolicy(tier=tier, tags=self.tags)


def producer(
    name: str | None = None,
    *,
    kind: ProducerKind = ProducerKind.CACHEABLE,
    tier_hint: Tier | None = None,
    key_fn: Callable[[dict[str, Any]], CacheKey] | None = None,
    depends_on: Iterable[str] = (),
    tags: Iterable[str] = (),
    revalidate_after: float | None = None,
    stale_mode: StaleMode | None = None,
    fatal_on_error: bool = False,
    timeout: float | None = None,
    reads_request: bool = False,
) -> Callable[[Callable[..., Any]], ProducerSpec]:
    """Decorator turning a function into a ProducerSpec."""

    def decorate(fn: Callable[..., Any]) -> ProducerSpec:
        return ProducerSpec(
            name=name or fn.__name__,
            fn=fn,
            kind=kind,
            tier_hint=tier_hint,
            key_fn=key_fn,
            depends_on=tuple(depends_on),
            tags=frozenset(tags),
            revalidate_after=revalidate_after,
            stale_mode=stale_mode,
            fatal_on_error=fatal_on_error,
            timeout=timeout,
            reads_request=reads_request,
        )

    return decorate


def placeholder(name: str, bundle: str | None = None) -> ProducerSpec:
    """Spec for a node activated on the consuming side."""
    return ProducerSpec(
        name=name, kind=ProducerKind.CLIENT_PLACEHOLDER, bundle=bundle
    )


@dataclass
class NodeDescriptor:
    """One node of the declared tree."""

    name: str
    key: str | None = None
    producer: ProducerSpec | None = None
    args: dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    children: list["NodeDescriptor"] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.name or any(ch in self.name for ch in _RESERVED):
            raise DescriptorError(
                f"Invalid node name {self.name!r}: must be non-empty and "
                f"not contain {', '.join(_RESERVED)}"
            )
        if self.key is not None:
            self.key = str(self.key)
            if not self.key or "/" in self.key:
                raise DescriptorError(
                    f"Invalid key {self.key!r} on node {self.name!r}"
                )
        if self.producer is not None and self.payload is not None:
            raise DescriptorError(
                f"Node {self.name!r} declares both a producer and a static payload"
            )

    def walk(self) -> Iterator["NodeDescriptor"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def producers(self) -> list[ProducerSpec]:
        """Distinct producer specs referenced anywhere in this tree."""
        seen: dict[str, ProducerSpec] = {}
        for desc in self.walk():
            if desc.producer is not None and desc.producer.name not in seen:
                seen[desc.producer.name] = desc.producer
        return list(seen.values())


def node(
    name: str,
    *children: NodeDescriptor,
    key: str | None = None,
    producer: ProducerSpec | None = None,
    args: dict[str, Any] | None = None,
    payload: Any = None,
) -> NodeDescriptor:
    """Shorthand constructor for NodeDescriptor trees."""
    return NodeDescriptor(
        name=name,
        key=key,
        producer=producer,
        args=dict(args or {}),
        payload=payload,
        children=list(children),
    )


class ProducerRegistry:
    """Registers producer specs with a store's dependency graph.

    Cycles among declared dependencies fail here, before any producer runs.
    """

    def __init__(self, store: CacheStore):
        self.store = store
        self._specs: dict[str, ProducerSpec] = {}

    def register(self, spec: ProducerSpec) -> ProducerSpec:
        """Register a spec (idempotent for the same spec).

        Raises:
            DescriptorError: If a different spec is already registered under the name.
            CacheCoherenceViolation: If the spec's dependencies close a cycle.
        """
        existing = self._specs.get(spec.name)
        if existing is not None:
            if existing is not spec and existing != spec:
                raise DescriptorError(
                    f"Producer {spec.name!r} is already registered with a different spec"
                )
            return existing
        self.store.register(spec.name, spec.depends_on)
        self._specs[spec.name] = spec
        return spec

    def register_tree(self, descriptor: NodeDescriptor) -> None:
        for spec in descriptor.producers():
            self.register(spec)

    def get(self, name: str) -> ProducerSpec | None:
        return self._specs.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)
