"""Tests for route and node tier classification."""

import pytest

from canopy.core.models import RouteDescriptor, Tier
from canopy.render import classify, resolve_tier


class TestClassify:
    @pytest.mark.parametrize(
        "route, expected",
        [
            (RouteDescriptor(enumerable_params=True), Tier.BUILD_STATIC),
            (RouteDescriptor(), Tier.RUNTIME_STATIC),
            (RouteDescriptor(reads_ambient_request_data=True), Tier.DYNAMIC),
            (RouteDescriptor(forced_dynamic=True), Tier.DYNAMIC),
            (
                RouteDescriptor(enumerable_params=True, reads_ambient_request_data=True),
                Tier.DYNAMIC,
            ),
            (RouteDescriptor(enumerable_params=True, forced_dynamic=True), Tier.DYNAMIC),
        ],
    )
    def test_classify(self, route, expected):
        assert classify(route) == expected


class TestTierOrdering:
    def test_combine_picks_more_dynamic(self):
        assert Tier.BUILD_STATIC.combine(Tier.RUNTIME_STATIC) == Tier.RUNTIME_STATIC
        assert Tier.DYNAMIC.combine(Tier.BUILD_STATIC) == Tier.DYNAMIC
        assert Tier.RUNTIME_STATIC.combine(Tier.RUNTIME_STATIC) == Tier.RUNTIME_STATIC

    def test_cacheable(self):
        assert Tier.BUILD_STATIC.cacheable
        assert not Tier.DYNAMIC.cacheable


class TestResolveTier:
    def test_no_hint_uses_route_tier(self):
        assert resolve_tier(Tier.BUILD_STATIC, None, False) == Tier.BUILD_STATIC

    def test_hint_can_only_make_node_more_dynamic(self):
        assert resolve_tier(Tier.BUILD_STATIC, Tier.RUNTIME_STATIC, False) == Tier.RUNTIME_STATIC
        assert resolve_tier(Tier.RUNTIME_STATIC, Tier.BUILD_STATIC, False) == Tier.RUNTIME_STATIC

    def test_request_reader_is_dynamic(self):
        assert resolve_tier(Tier.BUILD_STATIC, None, True) == Tier.DYNAMIC
