"""Tests for the render executor."""

import asyncio
import logging

import pytest

from canopy.cache import CacheStore
from canopy.config import CanopyConfig
from canopy.core.context import RequestContext
from canopy.core.errors import (
    CacheCoherenceViolation,
    DescriptorError,
    DiffIdentityConflict,
    ProducerFailure,
)
from canopy.core.models import ActivationDescriptor, NodeKind, RouteDescriptor, Tier
from canopy.render import ProducerKind, RenderExecutor, node, placeholder, producer


def _executor(**kwargs) -> RenderExecutor:
    config = CanopyConfig()
    return RenderExecutor(CacheStore(config=config), config=config, **kwargs)


def _render(descriptor, tier=Tier.RUNTIME_STATIC, executor=None, **kwargs):
    async def run():
        return await (executor or _executor()).render(descriptor, tier, **kwargs)

    return asyncio.run(run())


class TestStaticTrees:
    def test_stable_ids(self):
        tree = _render(
            node(
                "page",
                node("title", payload={"text": "hi"}),
                node("list", node("item", key="a"), node("item", key="b")),
            )
        )
        ids = [n.id for n in tree.walk()]
        assert ids == [
            "page@0",
            "page@0/title@0",
            "page@0/list@1",
            "page@0/list@1/item#a",
            "page@0/list@1/item#b",
        ]
        assert tree.get("page@0/title@0").payload == {"text": "hi"}

    def test_static_nodes_take_route_tier(self):
        tree = _render(node("page", node("x", payload=1)), Tier.BUILD_STATIC)
        assert {n.tier for n in tree.walk()} == {Tier.BUILD_STATIC}
        assert tree.tier == Tier.BUILD_STATIC

    def test_tuples_are_normalized(self):
        tree = _render(node("page", payload={"pair": (1, 2)}))
        assert tree.root.payload == {"pair": [1, 2]}

    def test_duplicate_ids_raise(self):
        with pytest.raises(DiffIdentityConflict, match="item#a"):
            _render(node("page", node("item", key="a"), node("item", key="a")))

    def test_reserved_characters_rejected(self):
        with pytest.raises(DescriptorError):
            node("a/b")
        with pytest.raises(DescriptorError):
            node("x", producer=placeholder("w"), payload=1)

    def test_versions_increase(self):
        executor = _executor()

        async def run():
            first = await executor.render(node("page"))
            second = await executor.render(node("page"))
            floored = await executor.render(node("page"), min_version=10)
            return first.version, second.version, floored.version

        assert asyncio.run(run()) == (1, 2, 11)


class TestProducers:
    def test_cacheable_producer_runs_once_across_renders(self):
        calls = []

        @producer("post")
        async def post(scope, slug):
            calls.append(slug)
            return {"slug": slug, "title": slug.title()}

        executor = _executor()
        tree = node("page", node("post", producer=post, args={"slug": "hello"}))

        async def run():
            first = await executor.render(tree)
            second = await executor.render(tree)
            return first, second

        first, second = asyncio.run(run())
        assert calls == ["hello"]
        assert first.get("page@0/post@0").payload == {"slug": "hello", "title": "Hello"}
        assert second.get("page@0/post@0").payload == first.get("page@0/post@0").payload

    def test_always_fresh_runs_every_render(self):
        calls = 0

        @producer("clock", kind=ProducerKind.ALWAYS_FRESH)
        def clock(scope):
            nonlocal calls
            calls += 1
            return calls

        executor = _executor()
        tree = node("page", node("clock", producer=clock))

        async def run():
            a = await executor.render(tree)
            b = await executor.render(tree)
            return a.get("page@0/clock@0"), b.get("page@0/clock@0")

        a, b = asyncio.run(run())
        assert (a.payload, b.payload) == (1, 2)
        assert a.tier == Tier.DYNAMIC
        assert len(executor.store) == 0

    def test_dynamic_route_uses_caller_request(self):
        @producer("greeting")
        def greeting(scope):
            return f"hi {scope.request.get('user')}"

        executor = _executor()
        tree = node("page", node("greeting", producer=greeting))
        route = RouteDescriptor(path="/me", reads_ambient_request_data=True)

        async def run():
            alice = await executor.render_route(route, tree, RequestContext(user="alice"))
            bob = await executor.render_route(route, tree, RequestContext(user="bob"))
            return alice, bob

        alice, bob = asyncio.run(run())
        assert alice.get("page@0/greeting@0").payload == "hi alice"
        assert bob.get("page@0/greeting@0").payload == "hi bob"
        assert alice.tier == Tier.DYNAMIC

    def test_undeclared_request_read_still_correct(self):
        @producer("badge")
        def badge(scope):
            return scope.request.get("user")

        executor = _executor()
        tree = node("page", node("badge", producer=badge))

        async def run():
            alice = await executor.render(tree, request=RequestContext(user="alice"))
            bob = await executor.render(tree, request=RequestContext(user="bob"))
            return alice, bob

        alice, bob = asyncio.run(run())
        assert alice.get("page@0/badge@0").payload == "alice"
        assert bob.get("page@0/badge@0").payload == "bob"

    def test_tier_hint_raises_node_tier(self):
        @producer("stock", tier_hint=Tier.RUNTIME_STATIC, revalidate_after=5)
        def stock(scope):
            return 3

        tree = _render(node("page", node("stock", producer=stock)), Tier.BUILD_STATIC)
        assert tree.get("page@0/stock@0").tier == Tier.RUNTIME_STATIC
        assert tree.root.tier == Tier.BUILD_STATIC

    def test_siblings_keep_declaration_order(self):
        @producer("slow")
        async def slow(scope, delay, label):
            await asyncio.sleep(delay)
            return label

        tree = node(
            "page",
            node("a", producer=slow, args={"delay": 0.03, "label": "a"}),
            node("b", producer=slow, args={"delay": 0.01, "label": "b"}),
            node("c", producer=slow, args={"delay": 0.0, "label": "c"}),
        )
        rendered = _render(tree)
        assert [child.payload for child in rendered.root.children] == ["a", "b", "c"]

    def test_concurrency_is_bounded(self):
        active = 0
        peak = 0

        @producer("work")
        async def work(scope, i):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return i

        tree = node("page", *(node("w", producer=work, args={"i": i}) for i in range(6)))
        rendered = _render(tree, executor=_executor(max_concurrency=2))
        assert [c.payload for c in rendered.root.children] == list(range(6))
        assert peak <= 2


class TestPlaceholders:
    def test_placeholder_carries_ctor_args_verbatim(self):
        like = placeholder("like", bundle="widgets/like.js")
        tree = _render(
            node(
                "page",
                node("like", producer=like, args={"slug": "hello", "count": 3}),
            )
        )
        ph = tree.get("page@0/like@0")
        assert ph.kind == NodeKind.PLACEHOLDER
        assert ph.payload == ActivationDescriptor(
            bundle_locator="widgets/like.js", ctor_args={"slug": "hello", "count": 3}
        )
        assert tree.placeholders() == [ph]

    def test_placeholder_subtree_is_not_expanded(self, caplog):
        widget = placeholder("widget")
        with caplog.at_level(logging.WARNING, logger="canopy.render.executor"):
            tree = _render(
                node("page", node("w", node("inner", payload=1), producer=widget))
            )
        assert "page@0/w@0: dropping 1 declared children" in caplog.text
        ph = tree.get("page@0/w@0")
        assert ph.children == ()
        assert ph.activation.bundle_locator == "widget"
        assert tree.get("page@0/w@0/inner@0") is None


class TestFailures:
    def test_failing_producer_becomes_error_node(self):
        @producer("broken")
        def broken(scope):
            raise RuntimeError("backend down")

        tree = _render(
            node(
                "page",
                node("broken", node("child", payload=1), producer=broken),
                node("ok", payload="fine"),
            )
        )
        failed = tree.get("page@0/broken@0")
        assert failed.error is not None
        assert failed.error.kind == "producer_failure"
        assert failed.error.producer == "broken"
        assert "backend down" in failed.error.message
        assert failed.payload is None
        assert failed.children == ()
        assert tree.get("page@0/ok@1").payload == "fine"
        assert tree.errors() == [failed]

    def test_fatal_producer_fails_render(self):
        @producer("critical", fatal_on_error=True)
        def critical(scope):
            raise RuntimeError("no data")

        with pytest.raises(ProducerFailure) as exc_info:
            _render(node("page", node("critical", producer=critical)))
        assert exc_info.value.node_id == "page@0/critical@0"
        assert exc_info.value.producer == "critical"
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_timeout_becomes_error_node(self):
        @producer("sluggish", timeout=0.01)
        async def sluggish(scope):
            await asyncio.sleep(1)

        tree = _render(node("page", node("s", producer=sluggish)))
        assert tree.get("page@0/s@0").error.kind == "timeout"

    def test_executor_wide_timeout(self):
        @producer("sluggish")
        async def sluggish(scope):
            await asyncio.sleep(1)

        tree = _render(
            node("page", node("s", producer=sluggish)),
            executor=_executor(producer_timeout=0.01),
        )
        assert tree.get("page@0/s@0").error.kind == "timeout"

    def test_unencodable_value_is_serialization_error(self):
        @producer("opaque")
        def opaque(scope):
            return object()

        tree = _render(
            node("page", node("o", producer=opaque), node("s", payload={1, 2}))
        )
        assert tree.get("page@0/o@0").error.kind == "serialization_error"
        assert tree.get("page@0/s@1").error.kind == "serialization_error"

    def test_failed_producer_is_retried_next_render(self):
        attempts = 0

        @producer("flaky")
        def flaky(scope):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("first try fails")
            return "ok"

        executor = _executor()
        tree = node("page", node("f", producer=flaky))

        async def run():
            first = await executor.render(tree)
            second = await executor.render(tree)
            return first.get("page@0/f@0"), second.get("page@0/f@0")

        first, second = asyncio.run(run())
        assert first.is_error
        assert second.payload == "ok"

    def test_cycle_detected_before_any_producer_runs(self):
        calls = 0

        def body(scope):
            nonlocal calls
            calls += 1
            return 1

        a = producer("a", depends_on=["b"])(body)
        b = producer("b", depends_on=["a"])(body)

        with pytest.raises(CacheCoherenceViolation):
            _render(node("page", node("a", producer=a), node("b", producer=b)))
        assert calls == 0


class TestCancellation:
    def test_abandoned_render_cancels_dynamic_work_but_not_shared_cache(self):
        shared_calls = 0
        live_cancelled = False
        shared_started = asyncio.Event()
        live_started = asyncio.Event()
        release = asyncio.Event()

        @producer("catalog")
        async def catalog(scope):
            nonlocal shared_calls
            shared_calls += 1
            shared_started.set()
            await release.wait()
            return ["a", "b"]

        @producer("ticker", kind=ProducerKind.ALWAYS_FRESH)
        async def ticker(scope):
            nonlocal live_cancelled
            live_started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                live_cancelled = True
                raise
            return 0

        executor = _executor()
        abandoned_tree = node(
            "page",
            node("catalog", producer=catalog),
            node("ticker", producer=ticker),
        )
        surviving_tree = node("page", node("catalog", producer=catalog))

        async def run():
            abandoned = asyncio.ensure_future(executor.render(abandoned_tree))
            surviving = asyncio.ensure_future(executor.render(surviving_tree))
            await shared_started.wait()
            await live_started.wait()
            await asyncio.sleep(0.01)

            abandoned.cancel()
            with pytest.raises(asyncio.CancelledError):
                await abandoned

            release.set()
            tree = await surviving
            return tree, len(executor.store)

        tree, stored = asyncio.run(run())
        assert live_cancelled
        assert shared_calls == 1
        assert tree.get("page@0/catalog@0").payload == ["a", "b"]
        assert stored == 1
