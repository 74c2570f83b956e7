"""Dependency graphs for cached producers.

Two graphs guard against cycles:
- ProducerGraph: producer-level DAG declared at registration time
- WaitGraph: live "flight X is waiting on flight Y" edges between cache keys,
  consulted before a computation attaches to another key's flight
"""

from collections import defaultdict
from typing import Hashable, Iterable

from ..core.errors import CacheCoherenceViolation


def find_path(
    edges: dict[Hashable, set[Hashable]],
    start: Hashable,
    goal: Hashable,
) -> list[Hashable] | None:
    """Depth-first search for a path start -> ... -> goal."""
    if start == goal:
        return [start]
    stack: list[tuple[Hashable, list[Hashable]]] = [(start, [start])]
    seen = {start}
    while stack:
        node, path = stack.pop()
        for nxt in sorted(edges.get(node, ()), key=str):
            if nxt == goal:
                return path + [nxt]
            if nxt not in seen:
                seen.add(nxt)
                stack.append((nxt, path + [nxt]))
    return None


def topological_sort(edges: dict[str, set[str]]) -> list[str]:
    """Order producers so every dependency precedes its dependents.

    Uses Kahn's algorithm with sorted queues for deterministic output.

    Raises:
        CacheCoherenceViolation: If the graph contains a cycle.
    """
    nodes = set(edges)
    for deps in edges.values():
        nodes |= deps
    in_degree = {n: 0 for n in nodes}
    dependents: dict[str, list[str]] = defaultdict(list)
    for node, deps in edges.items():
        for dep in deps:
            dependents[dep].append(node)
            in_degree[node] += 1

    queue = sorted(n for n, d in in_degree.items() if d == 0)
    order = []
    while queue:
        node = queue.pop(0)
        order.append(node)
        for dependent in dependents[node]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)
        queue.sort()

    if len(order) != len(nodes):
        remaining = sorted(n for n in nodes if n not in order)
        raise CacheCoherenceViolation("Circular producer dependency", remaining)
    return order


class ProducerGraph:
    """Producer name -> names it depends on (nested memoized calls)."""

    def __init__(self) -> None:
        self._depends_on: dict[str, set[str]] = {}

    def register(self, producer: str, depends_on: Iterable[str] = ()) -> None:
        """Declare a producer and its dependencies.

        Registration is all-or-nothing: a declaration that would close a cycle
        raises and leaves the graph unchanged.

        Raises:
            CacheCoherenceViolation: If the new edges close a cycle.
        """
        deps = set(depends_on)
        for dep in sorted(deps):
            # Adding producer -> dep closes a cycle iff dep already reaches producer.
            path = find_path(self._depends_on, dep, producer)
            if path is not None:
                raise CacheCoherenceViolation(
                    "Circular producer dependency", [producer] + path
                )
        self._depends_on.setdefault(producer, set()).update(deps)
        for dep in deps:
            self._depends_on.setdefault(dep, set())

    def depends_on(self, producer: str) -> set[str]:
        return set(self._depends_on.get(producer, ()))

    def __contains__(self, producer: object) -> bool:
        return producer in self._depends_on

    def order(self) -> list[str]:
        """Producers in dependency order (used for build-static warmup)."""
        return topological_sort(self._depends_on)


class WaitGraph:
    """Live waits between in-flight cache computations."""

    def __init__(self) -> None:
        self._edges: dict[Hashable, set[Hashable]] = defaultdict(set)

    def add(self, waiter: Hashable, target: Hashable) -> None:
        """Record that `waiter`'s computation awaits `target`'s.

        Raises:
            CacheCoherenceViolation: If target already (transitively) waits on
                waiter, i.e. the wait would deadlock.
        """
        path = find_path(self._edges, target, waiter)
        if path is not None:
            raise CacheCoherenceViolation(
                "Cyclic cache key dependency", [waiter] + path
            )
        self._edges[waiter].add(target)

    def discard(self, waiter: Hashable, target: Hashable) -> None:
        targets = self._edges.get(waiter)
        if targets is None:
            return
        targets.discard(target)
        if not targets:
            del self._edges[waiter]

    def __len__(self) -> int:
        return sum(len(t) for t in self._edges.values())
