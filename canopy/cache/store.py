"""Memoization cache with single-flight execution and tiered expiry.

A CacheStore is explicitly constructed and passed to whatever needs it;
there is no process-wide singleton. It is shared across concurrent render
requests running on one asyncio event loop.

Guarantees:
- A live entry is returned without invoking the producer
- At most one computation per key is in flight; late callers attach to it
- A failed computation stores nothing, fails every coalesced waiter with the
  same exception, and the next call retries from scratch
- Different keys compute fully in parallel (no global lock)
- A waiter's cancellation only cancels the shared computation once every
  waiter has gone
- Cached producers that read per-request data are demoted to dynamic and
  recomputed per caller, never shared

Usage:
    store = CacheStore(revalidate_after=30.0)
    value = await store.get_or_compute(
        CacheKey.of("posts", page=1),
        lambda scope: load_posts(page=1),
        CachePolicy.runtime_static(30.0),
    )
    store.invalidate_tag("posts")
    await store.shutdown()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Union

from ..config import CanopyConfig, get_config
from ..core.context import (
    EMPTY_CONTEXT,
    AmbientDataAccessed,
    GuardedRequestContext,
    RequestContext,
)
from ..core.errors import CacheClosedError, CacheCoherenceViolation
from ..core.models import CachePolicy, CacheStats, StaleMode, Tier
from .graph import ProducerGraph, WaitGraph
from .keys import CacheKey

logger = logging.getLogger(__name__)


Producer = Callable[["ComputeScope"], Union[Any, Awaitable[Any]]]


@dataclass
class CacheEntry:
    """A stored value and the policy it was computed under."""

    key: CacheKey
    value: Any
    created_at: float
    tier: Tier
    revalidate_after: float | None = None
    stale_mode: StaleMode = StaleMode.SERVE_STALE
    tags: frozenset[str] = frozenset()
    dependents: set[CacheKey] = field(default_factory=set)

    def is_stale(self, now: float) -> bool:
        if self.tier != Tier.RUNTIME_STATIC or self.revalidate_after is None:
            return False
        return now - self.created_at >= self.revalidate_after


class _Flight:
    """Shared pending handle for one in-progress computation."""

    __slots__ = ("key", "task", "detached", "waiters")

    def __init__(self, key: CacheKey, detached: bool):
        self.key = key
        self.task: asyncio.Task | None = None
        self.detached = detached
        self.waiters = 0


class ComputeScope:
    """Handle passed to every producer.

    Nested memoized calls go through the scope, which records the dependency
    edge (child -> parent) used for transitive invalidation.
    """

    def __init__(
        self,
        store: "CacheStore",
        key: CacheKey,
        request: RequestContext,
        chain: tuple[CacheKey, ...] = (),
    ):
        self.store = store
        self.key = key
        self.request = request
        self.chain = chain + (key,)

    async def get_or_compute(
        self,
        key: CacheKey,
        producer: Producer,
        policy: CachePolicy | None = None,
    ) -> Any:
        if key in self.chain:
            raise CacheCoherenceViolation(
                "Cyclic cache key dependency", self.chain + (key,)
            )
        self.store._record_dependency(parent=self.key, child=key)
        return await self.store._get_or_compute(
            key,
            producer,
            policy,
            request=self.request,
            parent=self.key,
            chain=self.chain,
        )


class CacheStore:
    """Keyed store of computed values with per-entry expiry.

    Not thread-safe: all calls must come from the event loop that owns it.
    """

    def __init__(
        self,
        *,
        config: CanopyConfig | None = None,
        revalidate_after: float | None = None,
        stale_mode: StaleMode | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        cfg = config or get_config()
        self.default_revalidate_after = (
            revalidate_after
            if revalidate_after is not None
            else cfg.cache.revalidate_after
        )
        self.default_stale_mode = stale_mode or cfg.stale_mode
        self._clock = clock

        self._entries: dict[CacheKey, CacheEntry] = {}
        self._flights: dict[CacheKey, _Flight] = {}
        self._background: set[asyncio.Task] = set()
        self._dependents: dict[CacheKey, set[CacheKey]] = defaultdict(set)
        self._tags: dict[str, set[CacheKey]] = defaultdict(set)
        self._epochs: dict[CacheKey, int] = defaultdict(int)
        self._demoted: set[CacheKey] = set()
        self._graph = ProducerGraph()
        self._waits = WaitGraph()
        self._stats = CacheStats()
        self._closed = False

    # ── Lifecycle ──

    async def __aenter__(self) -> "CacheStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    @property
    def closed(self) -> bool:
        return self._closed

    async def shutdown(self) -> None:
        """Cancel in-flight work and drop every entry."""
        if self._closed:
            return
        self._closed = True
        tasks = [f.task for f in self._flights.values() if f.task is not None]
        tasks.extend(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(
            f"[CACHE] Shutdown: dropped {len(self._entries)} entries, "
            f"cancelled {len(tasks)} computations"
        )
        self._entries.clear()
        self._flights.clear()
        self._background.clear()
        self._dependents.clear()
        self._tags.clear()

    def _check_open(self) -> None:
        if self._closed:
            raise CacheClosedError("Cache store has been shut down")

    # ── Registration ──

    def register(self, producer: str, depends_on: Iterable[str] = ()) -> None:
        """Declare a producer and the producers it calls while computing.

        Raises:
            CacheCoherenceViolation: If the declaration closes a cycle.
        """
        self._graph.register(producer, depends_on)
        logger.debug(f"[CACHE] Registered producer {producer}")

    def producer_order(self) -> list[str]:
        """Registered producers, dependencies first."""
        return self._graph.order()

    # ── Reads ──

    async def get_or_compute(
        self,
        key: CacheKey,
        producer: Producer,
        policy: CachePolicy | None = None,
        *,
        request: RequestContext | None = None,
    ) -> Any:
        """Return the cached value for key, computing it at most once.

        Args:
            key: Cache key (producer identity + canonical args)
            producer: Callable taking a ComputeScope; sync or async
            policy: Tier/expiry policy (defaults to runtime-static with the
                store's revalidation window)
            request: Caller's request context, used only when the value is
                computed uncached (dynamic tier or demoted key)
        """
        return await self._get_or_compute(key, producer, policy, request=request)

    async def precompute(
        self,
        key: CacheKey,
        producer: Producer,
        tags: Iterable[str] = (),
    ) -> Any:
        """Warm a build-static entry before requests arrive."""
        return await self._get_or_compute(
            key, producer, CachePolicy.build_static(frozenset(tags)), warming=True
        )

    def peek(self, key: CacheKey) -> CacheEntry | None:
        return self._entries.get(key)

    def is_demoted(self, key: CacheKey) -> bool:
        return key in self._demoted

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> CacheStats:
        return self._stats.model_copy(
            update={"entries": len(self._entries), "in_flight": len(self._flights)}
        )

    async def _get_or_compute(
        self,
        key: CacheKey,
        producer: Producer,
        policy: CachePolicy | None,
        *,
        request: RequestContext | None = None,
        parent: CacheKey | None = None,
        chain: tuple[CacheKey, ...] = (),
        warming: bool = False,
    ) -> Any:
        self._check_open()
        policy = self._resolve_policy(policy)

        if policy.tier == Tier.DYNAMIC or key in self._demoted:
            return await self._run_uncached(key, producer, request, chain)

        entry = self._entries.get(key)
        if entry is not None:
            if not entry.is_stale(self._clock()):
                self._stats.hits += 1
                return entry.value
            if entry.stale_mode == StaleMode.SERVE_STALE:
                self._stats.stale_served += 1
                logger.debug(f"[CACHE] Serving stale {key}; revalidating in background")
                self._start_refresh(key, producer, policy, chain)
                return entry.value

        flight = self._flights.get(key)
        if flight is None:
            self._stats.misses += 1
            if policy.tier == Tier.BUILD_STATIC and not warming:
                logger.warning(
                    f"[CACHE] Build-static miss for {key}; computing at request time"
                )
            flight = self._launch(key, producer, policy, chain, detached=False)
        else:
            self._stats.coalesced += 1

        try:
            return await self._await_flight(flight, parent)
        except AmbientDataAccessed:
            return await self._run_uncached(key, producer, request, chain)

    def _resolve_policy(self, policy: CachePolicy | None) -> CachePolicy:
        if policy is None:
            return CachePolicy(
                tier=Tier.RUNTIME_STATIC,
                revalidate_after=self.default_revalidate_after,
                stale_mode=self.default_stale_mode,
            )
        if policy.tier == Tier.RUNTIME_STATIC and policy.revalidate_after is None:
            return policy.model_copy(
                update={"revalidate_after": self.default_revalidate_after}
            )
        return policy

    # ── Computation ──

    async def _run_uncached(
        self,
        key: CacheKey,
        producer: Producer,
        request: RequestContext | None,
        chain: tuple[CacheKey, ...],
    ) -> Any:
        scope = ComputeScope(
            self, key, request if request is not None else EMPTY_CONTEXT, chain
        )
        self._stats.computations += 1
        try:
            return await _call_producer(producer, scope)
        except Exception:
            self._stats.failures += 1
            raise

    def _launch(
        self,
        key: CacheKey,
        producer: Producer,
        policy: CachePolicy,
        chain: tuple[CacheKey, ...],
        detached: bool,
    ) -> _Flight:
        flight = _Flight(key, detached)
        flight.task = asyncio.create_task(
            self._compute(flight, producer, policy, chain, self._epochs[key]),
            name=f"canopy-cache:{key}",
        )
        flight.task.add_done_callback(_consume_result)
        self._flights[key] = flight
        return flight

    def _start_refresh(
        self,
        key: CacheKey,
        producer: Producer,
        policy: CachePolicy,
        chain: tuple[CacheKey, ...],
    ) -> None:
        if key in self._flights:
            return
        flight = self._launch(key, producer, policy, chain, detached=True)
        self._background.add(flight.task)
        flight.task.add_done_callback(self._background.discard)

    async def _compute(
        self,
        flight: _Flight,
        producer: Producer,
        policy: CachePolicy,
        chain: tuple[CacheKey, ...],
        epoch: int,
    ) -> Any:
        key = flight.key
        guard = GuardedRequestContext()
        scope = ComputeScope(self, key, guard, chain)
        self._stats.computations += 1
        try:
            value = await _call_producer(producer, scope)
            if guard.accessed is not None:
                raise AmbientDataAccessed(guard.accessed)
        except AmbientDataAccessed as exc:
            self._demote(key, exc.name)
            raise
        except asyncio.CancelledError:
            logger.debug(f"[CACHE] Computation for {key} cancelled")
            raise
        except Exception as exc:
            self._stats.failures += 1
            if flight.detached:
                logger.warning(
                    f"[CACHE] Background revalidation of {key} failed, "
                    f"keeping stale value: {exc}"
                )
            else:
                logger.warning(f"[CACHE] Producer for {key} failed: {exc}")
            raise
        finally:
            if self._flights.get(key) is flight:
                del self._flights[key]

        if self._closed or self._epochs[key] != epoch:
            logger.debug(f"[CACHE] {key} invalidated while computing; not stored")
            return value
        self._store(key, value, policy)
        return value

    async def _await_flight(self, flight: _Flight, parent: CacheKey | None) -> Any:
        if parent is not None:
            self._waits.add(parent, flight.key)
        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.task.done():
                if self._closed:
                    raise CacheClosedError(
                        f"Cache store shut down while computing {flight.key}"
                    ) from None
                raise
            if flight.waiters == 1 and not flight.detached:
                logger.debug(
                    f"[CACHE] Every waiter for {flight.key} cancelled; "
                    f"cancelling computation"
                )
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1
            if parent is not None:
                self._waits.discard(parent, flight.key)

    def _store(self, key: CacheKey, value: Any, policy: CachePolicy) -> None:
        previous = self._entries.get(key)
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=self._clock(),
            tier=policy.tier,
            revalidate_after=(
                policy.revalidate_after if policy.tier == Tier.RUNTIME_STATIC else None
            ),
            stale_mode=policy.stale_mode,
            tags=policy.tags,
            dependents=self._dependents[key],
        )
        self._entries[key] = entry
        for tag in policy.tags:
            self._tags[tag].add(key)
        if previous is not None and previous.value != value and entry.dependents:
            logger.info(f"[CACHE] {key} changed on revalidation; invalidating dependents")
            dependents = sorted(entry.dependents, key=str)
            entry.dependents.clear()
            self._invalidate_many(dependents)

    def _demote(self, key: CacheKey, name: str) -> None:
        if key in self._demoted:
            return
        self._demoted.add(key)
        self._stats.demotions += 1
        logger.warning(
            f"[CACHE] Producer for {key} read request data {name!r}; "
            f"treating it as dynamic from now on"
        )
        self._invalidate_many([key])

    def _record_dependency(self, parent: CacheKey, child: CacheKey) -> None:
        self._dependents[child].add(parent)

    # ── Invalidation ──

    def invalidate(self, key: CacheKey) -> list[CacheKey]:
        """Remove key and, transitively, every entry computed from it.

        Returns:
            Keys whose entries were removed.
        """
        removed = self._invalidate_many([key])
        if removed:
            logger.info(f"[CACHE] Invalidated {key} ({len(removed)} entries)")
        return removed

    def invalidate_tag(self, tag: str) -> list[CacheKey]:
        """Invalidate every entry tagged with tag at creation."""
        keys = sorted(self._tags.pop(tag, set()), key=str)
        removed = self._invalidate_many(keys)
        logger.info(f"[CACHE] Invalidated tag {tag!r} ({len(removed)} entries)")
        return removed

    def _invalidate_many(self, keys: Iterable[CacheKey]) -> list[CacheKey]:
        removed: list[CacheKey] = []
        seen: set[CacheKey] = set()
        stack = list(keys)
        while stack:
            key = stack.pop()
            if key in seen:
                continue
            seen.add(key)
            self._epochs[key] += 1
            entry = self._entries.pop(key, None)
            if entry is not None:
                removed.append(key)
                for tag in entry.tags:
                    tagged = self._tags.get(tag)
                    if tagged is not None:
                        tagged.discard(key)
            stack.extend(self._dependents.pop(key, ()))
        self._stats.invalidations += len(removed)
        return removed


async def _call_producer(producer: Producer, scope: ComputeScope) -> Any:
    value = producer(scope)
    if inspect.isawaitable(value):
        value = await value
    return value


def _consume_result(task: asyncio.Task) -> None:
    # Retrieve the exception so abandoned flights don't log "never retrieved".
    if not task.cancelled():
        task.exception()
