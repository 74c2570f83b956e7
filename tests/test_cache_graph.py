"""Tests for producer and wait dependency graphs."""

import pytest

from canopy.cache import ProducerGraph, WaitGraph, topological_sort
from canopy.core.errors import CacheCoherenceViolation


class TestTopologicalSort:
    def test_dependencies_come_first(self):
        order = topological_sort({"page": {"post", "nav"}, "post": {"author"}})
        assert order.index("author") < order.index("post") < order.index("page")
        assert order.index("nav") < order.index("page")

    def test_deterministic(self):
        edges = {"c": set(), "b": set(), "a": set()}
        assert topological_sort(edges) == ["a", "b", "c"]

    def test_cycle_raises(self):
        with pytest.raises(CacheCoherenceViolation):
            topological_sort({"a": {"b"}, "b": {"a"}})


class TestProducerGraph:
    def test_register_and_order(self):
        graph = ProducerGraph()
        graph.register("page", ["post"])
        graph.register("post", ["author"])
        assert graph.order() == ["author", "post", "page"]
        assert "author" in graph
        assert graph.depends_on("page") == {"post"}

    def test_cycle_rejected_with_path(self):
        graph = ProducerGraph()
        graph.register("a", ["b"])
        graph.register("b", ["c"])
        with pytest.raises(CacheCoherenceViolation) as exc_info:
            graph.register("c", ["a"])
        assert exc_info.value.chain == ("c", "a", "b", "c")
        assert "c -> a -> b -> c" in str(exc_info.value)

    def test_rejected_registration_leaves_graph_unchanged(self):
        graph = ProducerGraph()
        graph.register("a", ["b"])
        with pytest.raises(CacheCoherenceViolation):
            graph.register("b", ["x", "a"])
        assert graph.depends_on("b") == set()
        assert "x" not in graph
        assert graph.order() == ["b", "a"]

    def test_self_dependency_is_a_cycle(self):
        graph = ProducerGraph()
        with pytest.raises(CacheCoherenceViolation):
            graph.register("a", ["a"])


class TestWaitGraph:
    def test_wait_that_closes_cycle_raises(self):
        waits = WaitGraph()
        waits.add("a", "b")
        waits.add("b", "c")
        with pytest.raises(CacheCoherenceViolation) as exc_info:
            waits.add("c", "a")
        assert exc_info.value.chain == ("c", "a", "b", "c")

    def test_discard(self):
        waits = WaitGraph()
        waits.add("a", "b")
        assert len(waits) == 1
        waits.discard("a", "b")
        assert len(waits) == 0
        waits.add("b", "a")
