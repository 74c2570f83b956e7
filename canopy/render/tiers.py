"""Tier classification for routes and nodes.

Classification is advisory: it picks a caching strategy, but correctness
never depends on it. A producer classified too optimistically is still
caught by the cache store's request-data guard and recomputed per caller.
"""

import logging

from ..core.models import RouteDescriptor, Tier

logger = logging.getLogger(__name__)


def classify(route: RouteDescriptor) -> Tier:
    """Decide the caching lifetime of a route.

    - forced dynamic, or reads per-request ambient data -> DYNAMIC
    - every parameter enumerable ahead of time -> BUILD_STATIC
    - otherwise -> RUNTIME_STATIC
    """
    if route.forced_dynamic or route.reads_ambient_request_data:
        tier = Tier.DYNAMIC
    elif route.enumerable_params:
        tier = Tier.BUILD_STATIC
    else:
        tier = Tier.RUNTIME_STATIC
    logger.debug(f"[RENDER] Route {route.path} classified as {tier.value}")
    return tier


def resolve_tier(route_tier: Tier, node_hint: Tier | None, reads_request: bool) -> Tier:
    """Effective tier for one node: the more dynamic of route and hint.

    A node that reads request data is always dynamic.
    """
    if reads_request:
        return Tier.DYNAMIC
    if node_hint is None:
        return route_tier
    return route_tier.combine(node_hint)
